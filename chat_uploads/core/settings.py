# chat_uploads/core/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    APP_ENV: str = "development"

    # --- Object storage (S3 / MinIO) ---
    S3_BUCKET_NAME: str = "chat-uploads"
    CDN_URL: str = "http://localhost:9000"
    S3_ENDPOINT: Optional[str] = None  # MinIO in dev, leeg voor AWS
    AWS_REGION: str = "us-east-1"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    S3_CONNECT_TIMEOUT: int = 3
    S3_READ_TIMEOUT: int = 30
    S3_MAX_ATTEMPTS: int = 3

    # --- Antivirus (clamd) ---
    ANTIVIRUS_ENABLED: bool = True
    CLAMD_SOCKET: str = "/var/run/clamav/clamd.ctl"
    CLAMD_HOST: str = "localhost"
    CLAMD_PORT: int = 3310
    CLAMD_TIMEOUT: float = 60.0
    # None = afleiden uit APP_ENV (production -> hard falen)
    SCANNER_FAIL_HARD: Optional[bool] = None

    # --- Media processing ---
    TEMP_DIR: str = "/tmp/uploads"
    FFMPEG_BINARY: str = "ffmpeg"
    FFPROBE_BINARY: str = "ffprobe"
    MEDIA_COMMAND_TIMEOUT_SECONDS: float = 120.0

    # --- Auth / DB / worker ---
    JWT_SECRET: str = "change-me"
    DATABASE_URL: str = "sqlite:///./chat_uploads.db"
    REDIS_URL: str = "redis://localhost:6379/0"
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() in ("prod", "production")

    @property
    def scanner_fail_hard(self) -> bool:
        if self.SCANNER_FAIL_HARD is not None:
            return self.SCANNER_FAIL_HARD
        return self.is_production


settings = Settings()  # leest .env
