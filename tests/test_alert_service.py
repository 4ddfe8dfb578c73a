from unittest.mock import MagicMock, Mock, patch

from leadflow.services.alert_service import alert_error, alert_sweep_errors, alert_warning, send_alert


class TestSendAlert:
    @patch("leadflow.services.alert_service.settings")
    def test_returns_false_when_not_configured(self, mock_settings):
        mock_settings.alert_bot_token = ""
        mock_settings.alert_chat_id = ""
        assert send_alert("ERROR", "Test message") is False

    @patch("leadflow.services.alert_service.settings")
    @patch("leadflow.services.alert_service.httpx.Client")
    def test_sends_alert_to_telegram(self, mock_client_class, mock_settings):
        mock_settings.alert_bot_token = "test-token"
        mock_settings.alert_chat_id = "test-chat"
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200)

        assert send_alert("ERROR", "Sweep failed", {"campaign_id": "c-1"}) is True

        url = mock_client.post.call_args[0][0]
        json_data = mock_client.post.call_args[1]["json"]
        assert "api.telegram.org/bottest-token" in url
        assert json_data["chat_id"] == "test-chat"
        assert "ERROR" in json_data["text"]
        assert "campaign_id: c-1" in json_data["text"]

    @patch("leadflow.services.alert_service.settings")
    @patch("leadflow.services.alert_service.httpx.Client")
    def test_returns_false_on_telegram_error(self, mock_client_class, mock_settings):
        mock_settings.alert_bot_token = "test-token"
        mock_settings.alert_chat_id = "test-chat"
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=400)

        assert send_alert("ERROR", "Test message") is False

    @patch("leadflow.services.alert_service.settings")
    @patch("leadflow.services.alert_service.httpx.Client")
    def test_returns_false_on_exception(self, mock_client_class, mock_settings):
        mock_settings.alert_bot_token = "test-token"
        mock_settings.alert_chat_id = "test-chat"
        mock_client_class.return_value.__enter__.side_effect = Exception("Network error")

        assert send_alert("ERROR", "Test message") is False


class TestAlertShortcuts:
    @patch("leadflow.services.alert_service.send_alert")
    def test_alert_warning(self, mock_send):
        alert_warning("Test warning", {"key": "value"})
        mock_send.assert_called_once_with("WARNING", "Test warning", {"key": "value"})

    @patch("leadflow.services.alert_service.send_alert")
    def test_alert_error(self, mock_send):
        alert_error("Test error")
        mock_send.assert_called_once_with("ERROR", "Test error", None)

    @patch("leadflow.services.alert_service.send_alert")
    def test_alert_sweep_errors_includes_samples(self, mock_send):
        totals = {"campaigns": 2, "moved": 1, "stale": 3, "errors": 1}
        errors = [{"campaign_id": "c-1", "card_id": "7", "error": "move_failed", "response": {"big": "body"}}]

        alert_sweep_errors(totals, errors)

        level, message, context = mock_send.call_args[0]
        assert level == "ERROR"
        assert "sweep" in message.lower()
        assert context["moved"] == 1
        assert "error=move_failed" in context["sample_0"]
        assert "response" not in context["sample_0"]
