from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from pydantic import field_validator, model_validator
from typing import Annotated, Any, ClassVar
import json
from pathlib import Path
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore", case_sensitive=True)

    API_V1_STR: str = "/api/v1"

    # JWT configuration (provide a fallback for local development)
    SECRET_KEY: str = "fallback_secret_for_dev_only"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Database URL
    # Use an absolute path so running the app from different directories
    # (e.g., repo root or backend/) always resolves the same DB file.
    BASE_DIR: ClassVar[Path] = Path(__file__).resolve().parents[2]
    SQLALCHEMY_DATABASE_URL: str = f"sqlite:///{BASE_DIR / 'disputes.db'}"

    # CORS origins
    CORS_ORIGINS: Annotated[list[str], NoDecode] = ["http://localhost:3000"]
    CORS_ALLOW_ALL: bool = False

    LOG_LEVEL: str = "INFO"

    # Dispute timers
    DISPUTE_RESPONSE_WINDOW_HOURS: int = 48
    DISPUTE_INACTIVITY_DAYS: int = 7
    DISPUTE_SCAN_INTERVAL_SECONDS: int = 300
    DISPUTE_SCAN_ENABLED: bool = True

    # Optimistic concurrency: total write attempts per action before Conflict
    DISPUTE_MAX_WRITE_ATTEMPTS: int = 3

    # Attachments on chat messages
    DISPUTE_ATTACHMENT_UPLOAD_TIMEOUT: float = 10.0
    DISPUTE_MAX_ATTACHMENTS: int = 5
    DISPUTE_MAX_ATTACHMENT_BYTES: int = 10 * 1024 * 1024

    # Recipient key used for the admin team in notification intents
    ADMIN_NOTIFICATION_RECIPIENT: str = "admins"
    # Optional notification service endpoint that receives intents as JSON
    NOTIFICATION_WEBHOOK_URL: str = ""

    # R2 / S3-compatible storage configuration (Cloudflare R2)
    R2_ACCOUNT_ID: str = ""
    R2_ACCESS_KEY_ID: str = ""
    R2_SECRET_ACCESS_KEY: str = ""
    R2_BUCKET: str = ""
    # Example: https://<account_id>.r2.cloudflarestorage.com or EU endpoint
    R2_S3_ENDPOINT: str = ""
    # Public custom domain for reads (e.g., https://media.example.com)
    R2_PUBLIC_BASE_URL: str = ""

    @field_validator("CORS_ORIGINS", mode="before")
    def split_origins(cls, v: Any) -> list[str]:
        """Parse comma-separated or JSON list of origins from environment."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return parsed
            except json.JSONDecodeError:
                pass
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator(
        "SECRET_KEY",
        "R2_ACCOUNT_ID",
        "R2_BUCKET",
        "R2_S3_ENDPOINT",
        "R2_PUBLIC_BASE_URL",
        mode="before",
    )
    def strip_whitespace(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("LOG_LEVEL", mode="before")
    def upper_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper() or "INFO"
        return v

    @model_validator(mode="after")
    def allow_all_if_requested(cls, values: "Settings") -> "Settings":
        if values.CORS_ALLOW_ALL:
            values.CORS_ORIGINS = ["*"]
        return values

    @model_validator(mode="after")
    def check_dispute_timers(cls, values: "Settings") -> "Settings":
        if values.DISPUTE_RESPONSE_WINDOW_HOURS <= 0:
            raise ValueError("DISPUTE_RESPONSE_WINDOW_HOURS must be positive")
        if values.DISPUTE_INACTIVITY_DAYS <= 0:
            raise ValueError("DISPUTE_INACTIVITY_DAYS must be positive")
        if values.DISPUTE_MAX_WRITE_ATTEMPTS < 1:
            raise ValueError("DISPUTE_MAX_WRITE_ATTEMPTS must be at least 1")
        return values


def load_settings() -> "Settings":
    return Settings(_env_file=os.getenv("ENV_FILE", str(Path(__file__).resolve().parents[3] / ".env")))


settings = load_settings()
