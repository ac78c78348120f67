"""Service configuration."""

import os
from dataclasses import dataclass
from datetime import tzinfo
from zoneinfo import ZoneInfo

from clinic_queue.errors import FieldValidationError


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class QueueConfig:
    """Configuration for the queue engine and its API layer."""

    timezone: str | None = None  # IANA name, None means host local time
    enqueue_max_attempts: int = 3
    session_timeout_minutes: int = 480  # One clinic shift
    bootstrap_admin: str | None = None
    seed_demo: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.enqueue_max_attempts < 1:
            raise FieldValidationError("enqueue_max_attempts must be at least 1")
        if self.session_timeout_minutes < 1:
            raise FieldValidationError("session_timeout_minutes must be at least 1")

    def get_tzinfo(self) -> tzinfo | None:
        """Return the clinic timezone, or None for the host's local time."""
        if not self.timezone:
            return None
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> "QueueConfig":
        """Build configuration from CLINIC_* environment variables."""
        return cls(
            timezone=os.getenv("CLINIC_TIMEZONE") or None,
            enqueue_max_attempts=int(os.getenv("CLINIC_ENQUEUE_MAX_ATTEMPTS", "3")),
            session_timeout_minutes=int(os.getenv("CLINIC_SESSION_TIMEOUT_MINUTES", "480")),
            bootstrap_admin=os.getenv("CLINIC_BOOTSTRAP_ADMIN") or None,
            seed_demo=_env_flag("CLINIC_SEED_DEMO"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
