# room_audit/main.py
from fastapi import FastAPI

from room_audit.api.routes import audits, health
from room_audit.core.config import get_settings
from room_audit.core.logging import configure_logging


def create_app() -> FastAPI:
    """
    Application factory for the Room Audit service.
    """
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Audits meeting room calendars in Microsoft 365: finds meetings whose\n"
            "organizer account is disabled or unknown, and large rooms booked for\n"
            "very few people."
        ),
        version="0.1.0",
    )

    app.include_router(health.router)
    app.include_router(audits.router)

    return app


app = create_app()
