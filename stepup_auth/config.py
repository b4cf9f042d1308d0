"""Configuration settings for the step-up authentication engine."""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="STEPUP_",
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    SERVICE_NAME: str = "stepup-auth"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Security
    SECRET_KEY: str = Field(..., min_length=16)
    ENCRYPTION_KEY: str = Field(..., min_length=16)
    ENCRYPTION_SALT: str = "stepup-factor-secrets"
    ALGORITHM: str = "HS256"

    # Challenges
    CHALLENGE_TTL_SECONDS: int = Field(default=300, gt=0)
    CHALLENGE_MAX_ATTEMPTS: int = Field(default=3, gt=0)
    CHALLENGE_TOKEN_BYTES: int = Field(default=32, ge=32)
    CHALLENGE_REQUIRE_TOKEN: bool = True

    # Step-up assertions
    ASSERTION_TTL_SECONDS: int = Field(default=600, ge=60, le=900)

    # Secondary password / recovery codes
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_HASH_TIME_COST: int = 3
    PASSWORD_HASH_MEMORY_COST: int = 65536
    PASSWORD_HASH_PARALLELISM: int = 4
    HASH_WORKERS: int = 4
    BACKUP_CODE_COUNT: int = Field(default=8, gt=0)
    BACKUP_CODE_LENGTH: int = Field(default=8, ge=8)

    # TOTP
    TOTP_ISSUER: str = "StepUp"
    TOTP_DIGITS: int = 6
    TOTP_INTERVAL: int = 30
    TOTP_VALID_WINDOW: int = Field(default=1, ge=0)
    TOTP_SECRET_BYTES: int = Field(default=20, ge=20)
    TOTP_REPLAY_PROTECTION: bool = True

    # SMS
    ENABLE_SMS: bool = True
    SMS_CODE_LENGTH: int = 6
    SMS_CODE_TTL_SECONDS: int = 600
    SMS_SEND_TIMEOUT_SECONDS: float = 10.0
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./stepup.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    @field_validator("ALGORITHM")
    @classmethod
    def check_algorithm(cls, v):
        if not v.startswith("HS"):
            raise ValueError("only HMAC signing algorithms are supported")
        return v

    @property
    def twilio_configured(self) -> bool:
        return bool(
            self.TWILIO_ACCOUNT_SID and self.TWILIO_AUTH_TOKEN and self.TWILIO_FROM_NUMBER
        )


# Create settings instance
settings = Settings()
