"""Application configuration."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings."""

    # Notification server
    NOTIFICATION_API_URL: str = "http://localhost:5000/api/notifications"
    SOCKET_URL: str = "http://localhost:5000"
    REQUEST_TIMEOUT_SECONDS: float = 10.0
    SOCKET_RECONNECT_DELAY: float = 1.0

    # Auth (bearer credential); storage key is checked first
    AUTH_TOKEN: str = ""
    AUTH_TOKEN_STORAGE_KEY: str = "authToken"

    # Paging
    INITIAL_PAGE_SIZE: int = 50
    DEFAULT_PAGE_SIZE: int = 20

    # Shared storage (cross-tab sync)
    STORAGE_URL: str = "sqlite:///./notification_storage.db"
    STORAGE_POLL_INTERVAL: float = 1.0
    SYNC_STORAGE_KEY: str = "notificationUpdate"

    # CORS
    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Environment
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def cors_origins(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


settings = Settings()
