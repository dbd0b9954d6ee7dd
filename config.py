from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # "development" exposes OTP codes and error details in responses
    ENVIRONMENT: str = "development"

    # Database
    STORE_BACKEND: str = "mongo"  # "mongo" or "memory"
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "hojaega"
    ENABLE_INDEX_CREATION: bool = True

    # bcrypt cost factor for PINs and OTP codes
    PIN_HASH_ROUNDS: int = 10

    # One-time passcodes
    OTP_DEFAULT_LENGTH: int = 6
    OTP_MIN_LENGTH: int = 4
    OTP_MAX_LENGTH: int = 8
    OTP_DEFAULT_TTL_SECONDS: int = 300
    OTP_MIN_TTL_SECONDS: int = 60
    OTP_MAX_TTL_SECONDS: int = 900
    # 0 means a code may be retried until it expires
    OTP_MAX_ATTEMPTS: int = 0
    OTP_SMS_DELIVERY: bool = False
    OTP_MESSAGE_TEMPLATE: str = "Your Hojaega verification code is {code}. It expires in {minutes} minutes."

    # TextBee SMS gateway
    TEXTBEE_API_URL: str = "https://api.textbee.dev/api/v1"
    TEXTBEE_DEVICE_ID: str = ""
    TEXTBEE_API_KEY: str = ""

    # Subscriptions
    SUBSCRIPTION_DEFAULT_MONTHS: int = 1
    # 0 disables the background sweep; expiry is still applied lazily on /sp-pending
    SUBSCRIPTION_SWEEP_INTERVAL_SECONDS: int = 0

    # Negotiation
    OFFER_DEFAULT_VALIDITY_HOURS: int = 24

    # File storage configuration
    FILE_STORAGE_PROVIDER: str = "local"  # "s3" or "local"
    UPLOAD_DIR: str = "screenshots"
    AWS_S3_BUCKET: str | None = None
    AWS_S3_PUBLIC_BASE_URL: str | None = None
    MAX_SCREENSHOT_BYTES: int = 5 * 1024 * 1024

    CORS_ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "https://hojaega.pk",
        "https://www.hojaega.pk",
    ]

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "hojaega_api.log"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


settings = Settings()
