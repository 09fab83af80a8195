from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from the project root so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Scheduling rules
    default_appointment_duration_minutes: int = 30
    slot_duration_minutes: int = 30
    business_start_hour: int = 8
    business_end_hour: int = 18  # exclusive, last slot ends at 18:00

    # Duplicate detection
    duplicate_likely_threshold: float = 0.9
    duplicate_possible_threshold: float = 0.6
    duplicate_candidate_pool_limit: int = 200

    # Identity normalization
    phone_min_digits: int = 10
    phone_max_digits: int = 13
    document_validation: str = "cpf"  # "cpf" or "none"

    # Notifications. Leave the webhook empty to only log events.
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 5.0

    # Env
    env: str = "development"
    auto_create_tables: bool = False

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def webhook_enabled(self) -> bool:
        return bool(self.notification_webhook_url)


settings = Settings()
