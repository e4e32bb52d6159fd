from __future__ import annotations

from fastapi import FastAPI

from study_billing.core.logging_config import configure_logging
from study_billing.core.settings import S
from study_billing.metrics import metrics_endpoint, metrics_middleware, set_app_info
from study_billing.routers.misc import router as misc_router
from study_billing.routers.webhook import router as webhook_router

def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Study Billing Webhooks", version="0.1.0")

    if S.metrics_enabled:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.include_router(webhook_router)
    app.include_router(misc_router)

    return app

app = create_app()
