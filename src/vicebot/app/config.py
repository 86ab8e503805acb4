"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env and data/ from the project root regardless of CWD
_ROOT = Path(__file__).resolve().parents[3]
_ENV_FILE = _ROOT / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./vicebot.db"

    # AI
    gemini_api_key: str = ""
    interpreter_model: str = "gemini-3-flash-preview"
    vision_model: str = "gemini-3-flash-preview"
    classifier_model: str = "gemini-3-flash-preview"

    # Catalogs
    place_catalog_path: str = str(_ROOT / "data" / "places.json")
    destinations_path: str = str(_ROOT / "data" / "destinations.json")

    # Dispatch
    dispatch_webhook_url: str = ""
    dispatch_webhook_token: str = ""

    # Media
    attachments_dir: str = "./attachments"
    max_pending_media: int = 10

    # Session timing (seconds)
    session_ttl_seconds: int = 15 * 60
    media_batch_window_seconds: float = 8.0
    ask_place_cooldown_seconds: float = 15.0
    history_limit: int = 50

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
