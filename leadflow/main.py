from fastapi import FastAPI

from leadflow.config import settings
from leadflow.logging_config import setup_logging
from leadflow.routers import campaigns, crm, routing, sweep

setup_logging(settings.log_level)

app = FastAPI(
    title="LeadFlow API",
    description="Campaign routing and expiration engine for CRM lead cards",
    version="0.1.0",
)

app.include_router(routing.router)
app.include_router(sweep.router)
app.include_router(campaigns.router)
app.include_router(crm.router)


@app.get("/health")
def health():
    return {"status": "ok"}
