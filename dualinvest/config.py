"""Application configuration via environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

from dualinvest.schemas.strategy import StrategyConfig

PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    # Exchange
    api_key: str = ""
    api_secret: str = ""
    base_url: str = "https://api.binance.com"
    http_timeout_seconds: float = 10.0
    dry_run: bool = False  # Log subscriptions instead of placing them

    # Storage
    ledger_path: str = str(PROJECT_ROOT / "data" / "positions.json")
    database_url: str = f"sqlite:///{PROJECT_ROOT / 'data' / 'journal.db'}"
    strategy_file: str = ""  # Optional JSON override for StrategyConfig

    # Logging
    log_level: str = "INFO"
    log_file: str = ""

    # Scheduling
    cycle_interval_minutes: int = 3
    cycle_timeout_seconds: float = 150.0

    # Telegram
    telegram_bot_token: str = ""
    telegram_chat_ids: list[int] = []

    model_config = {"env_prefix": "DI_", "env_file": ".env"}

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)


settings = Settings()


@lru_cache(maxsize=1)
def get_strategy() -> StrategyConfig:
    """Load the strategy once; defaults unless DI_STRATEGY_FILE points at a JSON file."""
    if settings.strategy_file:
        return StrategyConfig.model_validate_json(Path(settings.strategy_file).read_text())
    return StrategyConfig()
