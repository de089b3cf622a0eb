"""Application configuration using pydantic-settings."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[3] / ".env"),
        case_sensitive=False,
    )

    # Application
    log_level: str = "INFO"
    logistics_db_path: str = "./data/logistics.db"
    seed_default_catalog: bool = True

    # Auth / actor resolution
    auth_enabled: bool = False
    user_tokens: str = ""
    default_user_id: str = "ADMIN_001"

    # Identity stamped on system-generated audit rows
    system_actor_id: str = "SYSTEM_BOT"
    system_actor_name: str = "Auto-Pricing Bot"

    # Job numbering and pricing
    job_id_prefix: str = "JRS"
    price_tie_break: str = "cheapest"

    # Telegram pending-work summary
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_base_url: str = "https://api.telegram.org"
    telegram_timeout_seconds: float = 10.0
    notification_max_chars: int = 3500

    def normalized_tie_break(self) -> str:
        mode = (self.price_tie_break or "").strip().lower()
        return mode if mode in {"cheapest", "catalog_order"} else "cheapest"

    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token.strip() and self.telegram_chat_id.strip())


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
