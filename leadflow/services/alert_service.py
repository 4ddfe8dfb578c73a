"""Operator alerts delivered through a Telegram bot."""

from typing import Optional

import httpx

from leadflow.config import settings
from leadflow.logging_config import get_logger

logger = get_logger("alert_service")

LEVEL_MARKS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send an alert to the configured chat.

    Returns False when alerting is not configured or delivery failed; an
    alert never raises into the caller.
    """
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning("Alert not configured", extra={"context": {"level": level, "alert": message}})
        return False

    text = f"{LEVEL_MARKS.get(level, '📢')} *{level}*\n\n{message}"
    if context:
        lines = "\n".join(f"  {key}: {value}" for key, value in context.items())
        text += f"\n\n```\n{lines}\n```"

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{settings.alert_bot_token}/sendMessage",
                json={"chat_id": settings.alert_chat_id, "text": text, "parse_mode": "Markdown"},
            )
            return response.status_code == 200
    except Exception as e:
        logger.error("Failed to send alert", extra={"context": {"error": str(e)}})
        return False


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_sweep_errors(totals: dict, errors: list[dict]) -> bool:
    """Report a sweep that finished with errors; includes the first few error samples."""
    context = {key: totals.get(key) for key in ("campaigns", "moved", "stale", "errors")}
    for index, error in enumerate(errors[:3]):
        context[f"sample_{index}"] = ", ".join(f"{k}={v}" for k, v in error.items() if k != "response")
    return alert_error("Expiration sweep finished with errors", context)
