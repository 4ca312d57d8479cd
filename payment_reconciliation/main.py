"""
Payment Reconciliation Service — FastAPI Application.

This is the entry point for the application.
All routers are registered here.
"""

from fastapi import FastAPI

from payment_reconciliation.config import get_settings
from payment_reconciliation.api.health import router as health_router
from payment_reconciliation.api.payment import router as payment_router
from payment_reconciliation.api.admin import router as admin_router

settings = get_settings()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Bank-transfer top-ups reconciled against provider webhooks",
)

# Register routers
app.include_router(health_router)
app.include_router(payment_router)
app.include_router(admin_router)
