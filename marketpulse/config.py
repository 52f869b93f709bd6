"""Configuration management using python-dotenv."""
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env file from project root
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)


def _split_csv(value: str) -> List[str]:
    return [part.strip().upper() for part in value.split(",") if part.strip()]


class ClickHouseConfig:
    """ClickHouse connection configuration."""
    HOST: str = os.getenv("CLICKHOUSE_HOST", "localhost")
    PORT: int = int(os.getenv("CLICKHOUSE_PORT", "9000"))
    DATABASE: str = os.getenv("CLICKHOUSE_DB", "marketpulse")
    USER: str = os.getenv("CLICKHOUSE_USER", "default")
    PASSWORD: str = os.getenv("CLICKHOUSE_PASSWORD", "")


class AppConfig:
    """Application configuration."""
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    # "clickhouse" or "memory"
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "clickhouse")
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ]


class MarketDataConfig:
    """Market data cache and upstream provider configuration."""
    CACHE_TTL_SECONDS: float = float(os.getenv("CACHE_TTL_SECONDS", "60"))
    FETCH_TIMEOUT_SECONDS: float = float(os.getenv("FETCH_TIMEOUT_SECONDS", "10"))
    DEFAULT_EXCHANGE_SUFFIX: str = os.getenv("DEFAULT_EXCHANGE_SUFFIX", ".NS")
    ALPHA_VANTAGE_API_KEY: str = os.getenv("ALPHA_VANTAGE_API_KEY", "")
    BATCH_MAX_SYMBOLS: int = int(os.getenv("BATCH_MAX_SYMBOLS", "50"))
    TRACKED_SYMBOLS: List[str] = _split_csv(
        os.getenv(
            "TRACKED_SYMBOLS",
            "NIFTY,SENSEX,BANKNIFTY,RELIANCE,TCS,HDFCBANK,INFY",
        )
    )


class SchedulerConfig:
    """Periodic job intervals."""
    ALERT_CHECK_INTERVAL_SECONDS: float = float(
        os.getenv("ALERT_CHECK_INTERVAL_SECONDS", "60")
    )
    MARKET_BROADCAST_INTERVAL_SECONDS: float = float(
        os.getenv("MARKET_BROADCAST_INTERVAL_SECONDS", "30")
    )
    PREFETCH_INTERVAL_SECONDS: float = float(
        os.getenv("PREFETCH_INTERVAL_SECONDS", "120")
    )
    EXPIRY_SWEEP_HOUR: int = int(os.getenv("EXPIRY_SWEEP_HOUR", "0"))


class EmailConfig:
    """SMTP configuration for alert emails."""
    HOST: str = os.getenv("EMAIL_HOST", "")
    PORT: int = int(os.getenv("EMAIL_PORT", "587"))
    USER: str = os.getenv("EMAIL_USER", "")
    PASSWORD: str = os.getenv("EMAIL_PASS", "")
    FROM_ADDRESS: str = os.getenv("EMAIL_FROM", "") or os.getenv("EMAIL_USER", "")

    # "user_id:address" pairs, comma separated, for the static user directory
    USER_CONTACTS: str = os.getenv("USER_CONTACTS", "")

    @property
    def enabled(self) -> bool:
        return bool(self.HOST and self.USER and self.PASSWORD)


# Singleton instances
clickhouse_config = ClickHouseConfig()
app_config = AppConfig()
market_data_config = MarketDataConfig()
scheduler_config = SchedulerConfig()
email_config = EmailConfig()
