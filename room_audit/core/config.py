# room_audit/core/config.py
from functools import lru_cache
from typing import List

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_NOTIFICATION_SUBJECT = "Please review your booking of $room on $start"
DEFAULT_NOTIFICATION_BODY = (
    "Hello,\n\n"
    "You are listed on the meeting \"$subject\" in $room ($room_address), "
    "scheduled from $start to $end.\n\n"
    "The organizer of this meeting ($organizer) could not be confirmed as an "
    "active account (status: $status). If the meeting is still needed, please "
    "ask someone with an active account to book the room again; otherwise the "
    "booking may be removed.\n\n"
    "Regards,\n"
    "Room Audit"
)


def split_addresses(value: str | None) -> List[str]:
    """
    Split a comma-separated address list, dropping blanks.
    """
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Global application configuration.

    Values are loaded from environment variables (or a local `.env` file) at
    runtime. They cover:
    - Graph API client credentials and query limits
    - The organization suffix used for identity classification
    - Audit window and thresholds
    - Notification templates and SMTP delivery
    - Internal API key
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Room Audit"
    APP_ENV: str = Field("local", description="Environment name: local/dev/stage/prod")
    LOG_LEVEL: str = Field("INFO", description="Root logging level.")

    # --- Graph API ---
    GRAPH_TENANT_ID: str | None = None
    GRAPH_CLIENT_ID: str | None = None
    GRAPH_CLIENT_SECRET: str | None = None
    GRAPH_BASE_URL: AnyHttpUrl | None = None
    GRAPH_MAX_ITEMS_PER_QUERY: int = Field(
        default=1000,
        ge=1,
        description=(
            "Maximum number of calendar items a single window query may return "
            "before the fetcher falls back to month-sized chunks."
        ),
    )

    # --- Identity classification ---
    ORGANIZATION_SUFFIX: str | None = Field(
        default=None,
        description="Internal mail domain, e.g. 'corp.com'. Addresses outside it are external.",
    )

    # --- Audit window and thresholds ---
    MONTHS_AHEAD: int = Field(default=3, description="Months after today to audit (clamped to 0..36).")
    MONTHS_BEHIND: int = Field(default=0, description="Months before today to audit (clamped to 0..12).")
    ROOM_ADDRESSES: str | None = Field(
        default=None,
        description="Optional comma-separated allow-list of room addresses to audit.",
    )
    MIN_CAPACITY: int = Field(
        default=6,
        ge=0,
        description="Rooms with at least this capacity are checked for underutilization.",
    )
    MAX_PARTICIPANTS: int = Field(
        default=2,
        ge=0,
        description="Bookings with at most this many participants count as underutilized.",
    )

    # --- Ghost meeting notifications ---
    NOTIFICATIONS_ENABLED: bool = Field(
        default=False,
        description="Whether ghost meeting audits emit notifications to attendees.",
    )
    NOTIFICATION_FROM_ADDRESS: str | None = Field(
        default=None,
        description="Sender address used for ghost meeting notifications.",
    )
    NOTIFICATION_SUBJECT_TEMPLATE: str = DEFAULT_NOTIFICATION_SUBJECT
    NOTIFICATION_BODY_TEMPLATE: str = DEFAULT_NOTIFICATION_BODY

    # --- SMTP / Email configuration ---
    SMTP_HOST: str | None = Field(
        default=None,
        description="SMTP server hostname for sending emails.",
    )
    SMTP_PORT: int = Field(
        default=587,
        description="SMTP server port (usually 587 for TLS).",
    )
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_USE_TLS: bool = Field(
        default=True,
        description="Whether to use STARTTLS when connecting to SMTP.",
    )

    INTERNAL_API_KEY: str | None = Field(
        default=None,
        description="API key required for hitting /internal endpoints",
    )

    @property
    def room_addresses(self) -> List[str]:
        return split_addresses(self.ROOM_ADDRESSES)

    @property
    def graph_configured(self) -> bool:
        return bool(self.GRAPH_TENANT_ID and self.GRAPH_CLIENT_ID and self.GRAPH_CLIENT_SECRET)


@lru_cache()
def get_settings() -> Settings:
    """
    Cached accessor for application settings.

    Settings are read and validated once per process.
    """
    return Settings()
