import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass
class Settings:
    """Runtime settings for the order service"""

    database_url: str = "sqlite:///./data/app.db"
    environment: str = "development"
    log_level: str = "INFO"
    cron_secret: Optional[str] = None
    order_retention_minutes: int = 60
    enforce_transitions: bool = False
    seed_catalog: bool = True
    order_number_retries: int = 5
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        cron_secret = (os.getenv("CRON_SECRET") or "").strip() or None
        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./data/app.db"),
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            cron_secret=cron_secret,
            order_retention_minutes=_env_int("ORDER_RETENTION_MINUTES", 60),
            enforce_transitions=_env_bool("ENFORCE_TRANSITIONS", False),
            seed_catalog=_env_bool("SEED_CATALOG", True),
            order_number_retries=_env_int("ORDER_NUMBER_RETRIES", 5),
            cors_origins=origins or ["*"],
        )
