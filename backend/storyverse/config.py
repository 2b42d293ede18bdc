from __future__ import annotations
import os
from pydantic import BaseModel

class Settings(BaseModel):
    environment: str = os.getenv("ENVIRONMENT", "dev")
    app_name: str = os.getenv("APP_NAME", "storyverse-api")
    app_display_name: str = os.getenv("APP_DISPLAY_NAME", "Storyverse")
    app_version: str = os.getenv("APP_VERSION", "0.1.0")
    git_sha: str = os.getenv("GIT_SHA", "dev")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    database_url: str = os.getenv("DATABASE_URL", "postgresql+asyncpg://postgres:postgres@db:5432/storyverse_dev")
    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    access_ttl_min: int = int(os.getenv("ACCESS_TTL_MIN", "15"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Coin ledger
    # Daily reward caps reset at local midnight in this zone.
    coin_day_timezone: str = os.getenv("COIN_DAY_TIMEZONE", "UTC")
    history_limit: int = int(os.getenv("HISTORY_LIMIT", "200"))

    # Chapter gate
    chapter_unlock_cost: int = int(os.getenv("CHAPTER_UNLOCK_COST", "100"))
    free_chapters: int = int(os.getenv("FREE_CHAPTERS", "2"))
    total_steps: int = int(os.getenv("TOTAL_STEPS", "5"))

settings = Settings()
