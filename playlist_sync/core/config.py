from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    ENV: str = "dev"
    LOG_DIR: str = "logs"
    DATABASE_URL: str = ""

    INTERNAL_ALLOWED_IPS: List[str] = []
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_BASE: str = "http://localhost:8000"

    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_MAX_PER_KEY: int = 120
    RATE_LIMIT_MAX_PER_USER: int = 60

    ALLOWED_REDIRECT_HOSTS: List[str] = ["localhost", "127.0.0.1"]
    ENCRYPTION_KEY: str = ""
    API_INTERNAL_KEY: str = ""

    # CORS: default to disabled; set via env when needed
    CORS_ORIGINS: List[str] = []

    # playlist naming
    PRODUCT_NAME: str = "Culturia"
    PRODUCT_URL: str = "https://culturia.xyz"
    PLAYLIST_PRIVACY_STATUS: str = "public"

    # sync engine
    TOKEN_SAFETY_MARGIN_SECONDS: int = 30
    LEASE_TTL_SECONDS: int = 300
    LEASE_WAIT_SECONDS: float = 30.0
    YOUTUBE_HTTP_TIMEOUT_SECONDS: float = 15.0

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("ALLOWED_REDIRECT_HOSTS", "CORS_ORIGINS", "INTERNAL_ALLOWED_IPS", mode="before")
    @classmethod
    def split_csv(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

settings = Settings()
