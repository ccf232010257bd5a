from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration settings for the Notification Dispatcher"""

    # Application settings
    service_name: str = "notification-dispatcher"
    log_level: str = "INFO"
    environment: str = "dev"

    # Firebase settings
    firebase_secret: Optional[str] = None  # service account JSON, ADC when unset
    firebase_project_id: Optional[str] = None

    # Firestore layout
    users_collection: str = "users"
    notifications_collection: str = "notifications"
    tokens_field: str = "fcmTokens"

    # FCM allows up to 500 tokens per multicast request
    fcm_batch_size: int = Field(default=500, ge=1, le=500)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


# Create settings instance
settings = Settings()
