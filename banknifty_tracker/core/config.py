"""
Configuration management for Bank Nifty Tracker.
Uses pydantic-settings for environment variable management.
"""

import os
from typing import Dict, List, Optional, Tuple
from pydantic import Field, validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application metadata
    app_name: str = Field(default="Bank Nifty Tracker", env="APP_NAME")
    app_version: str = Field(default="1.0.0", env="APP_VERSION")
    debug: bool = Field(default=False, env="DEBUG")
    server_host: str = Field(default="0.0.0.0", env="SERVER_HOST")
    server_port: int = Field(default=3000, env="SERVER_PORT")

    # Storage configuration
    environment: str = Field(default="development", env="ENVIRONMENT")
    data_dir: str = Field(default=".", env="DATA_DIR")
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")

    # PIN override, always wins over a persisted PIN
    multiplier_pin: Optional[str] = Field(default=None, env="MULTIPLIER_PIN")
    default_pin: str = Field(default="1234", env="DEFAULT_PIN")

    # Cache TTL settings (in seconds)
    batch_cache_ttl: float = Field(default=5, env="BATCH_CACHE_TTL")
    quote_cache_ttl: float = Field(default=5, env="QUOTE_CACHE_TTL")
    supplementary_cache_ttl: float = Field(default=300, env="SUPPLEMENTARY_CACHE_TTL")  # 5 minutes

    # Upstream timeouts (in seconds)
    primary_timeout: float = Field(default=10.0, env="PRIMARY_TIMEOUT")
    secondary_timeout: float = Field(default=8.0, env="SECONDARY_TIMEOUT")
    supplementary_timeout: float = Field(default=5.0, env="SUPPLEMENTARY_TIMEOUT")
    upstream_retries: int = Field(default=1, env="UPSTREAM_RETRIES")

    # NSE session validity (in seconds)
    session_validity_seconds: int = Field(default=900, env="SESSION_VALIDITY_SECONDS")  # 15 minutes

    # Background task intervals (in seconds)
    constituent_refresh_interval: int = Field(default=86400, env="CONSTITUENT_REFRESH_INTERVAL")  # 24 hours
    history_interval: int = Field(default=300, env="HISTORY_INTERVAL")  # 5 minutes
    history_startup_delay: float = Field(default=10, env="HISTORY_STARTUP_DELAY")
    history_max_points: int = Field(default=1000, env="HISTORY_MAX_POINTS")

    # Market window for historical logging
    market_timezone: str = Field(default="Asia/Kolkata", env="MARKET_TIMEZONE")
    market_open: str = Field(default="09:15", env="MARKET_OPEN")
    market_close: str = Field(default="15:30", env="MARKET_CLOSE")
    history_weekdays_only: bool = Field(default=True, env="HISTORY_WEEKDAYS_ONLY")

    # Logging configuration
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")

    @validator('log_level')
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = {'json', 'text'}
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {', '.join(valid_formats)}")
        return v.lower()

    @validator('market_open', 'market_close')
    def validate_market_time(cls, v: str) -> str:
        """Validate HH:MM market window bounds."""
        parts = v.strip().split(':')
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError("market window bounds must be HH:MM")
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError("market window bounds must be HH:MM")
        return f"{hour:02d}:{minute:02d}"

    @validator('multiplier_pin')
    def validate_multiplier_pin(cls, v: Optional[str]) -> Optional[str]:
        """Treat a blank PIN override as absent."""
        if v is None or not v.strip():
            return None
        return v.strip()

    def get_storage_dir(self) -> str:
        """Directory for the local JSON fallback documents."""
        if self.environment.lower() == "production":
            return "/tmp"
        return self.data_dir

    def get_multipliers_file(self) -> str:
        return os.path.join(self.get_storage_dir(), "multipliers.json")

    def get_metadata_file(self) -> str:
        return os.path.join(self.get_storage_dir(), "metadata.json")

    def get_history_file(self) -> str:
        return os.path.join(self.get_storage_dir(), "history.json")

    def get_market_window(self) -> Tuple[Tuple[int, int], Tuple[int, int]]:
        """Get the daily logging window as ((open_h, open_m), (close_h, close_m))."""
        open_h, open_m = (int(p) for p in self.market_open.split(':'))
        close_h, close_m = (int(p) for p in self.market_close.split(':'))
        return (open_h, open_m), (close_h, close_m)

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()


# Market configuration
class MarketConfig:
    """Static tables for the tracked basket and its upstream sources."""

    # Index constituents in display order
    DEFAULT_CONSTITUENTS: List[Tuple[str, str]] = [
        ('HDFCBANK', 'HDFC Bank'),
        ('ICICIBANK', 'ICICI Bank'),
        ('AXISBANK', 'Axis Bank'),
        ('SBIN', 'State Bank of India'),
        ('KOTAKBANK', 'Kotak Mahindra Bank'),
        ('FEDERALBNK', 'Federal Bank'),
        ('INDUSINDBK', 'IndusInd Bank'),
        ('IDFCFIRSTB', 'IDFC First Bank'),
        ('BANKBARODA', 'Bank of Baroda'),
        ('CANBK', 'Canara Bank'),
        ('PNB', 'Punjab National Bank'),
        ('AUBANK', 'AU Small Finance Bank'),
    ]

    # Symbols that always get a multiplier entry, including former constituents
    # kept so previously saved multipliers stay addressable
    BUFFER_SYMBOLS: List[str] = [
        'HDFCBANK', 'ICICIBANK', 'SBIN', 'KOTAKBANK', 'AXISBANK', 'INDUSINDBK',
        'CANBK', 'FEDERALBNK', 'IDFCFIRSTB', 'PNB', 'BANKBARODA', 'AUBANK',
        'BANDHANBNK',
    ]

    SYMBOL_NAMES: Dict[str, str] = {
        'HDFCBANK': 'HDFC Bank',
        'ICICIBANK': 'ICICI Bank',
        'SBIN': 'State Bank of India',
        'KOTAKBANK': 'Kotak Mahindra Bank',
        'AXISBANK': 'Axis Bank',
        'INDUSINDBK': 'IndusInd Bank',
        'CANBK': 'Canara Bank',
        'FEDERALBNK': 'Federal Bank',
        'IDFCFIRSTB': 'IDFC First Bank',
        'PNB': 'Punjab National Bank',
        'BANKBARODA': 'Bank of Baroda',
        'AUBANK': 'AU Small Finance Bank',
        'BANDHANBNK': 'Bandhan Bank',
        'RBLBANK': 'RBL Bank',
        'YESBANK': 'Yes Bank',
        'IDBI': 'IDBI Bank',
        'UNIONBANK': 'Union Bank of India',
        'IOB': 'Indian Overseas Bank',
        'CENTRALBK': 'Central Bank of India',
        'INDIANB': 'Indian Bank',
        'MAHABANK': 'Maharashtra Bank',
        'UCOBANK': 'UCO Bank',
        'BANKINDIA': 'Bank of India',
        'PSB': 'Punjab & Sind Bank',
    }

    # Last known issued share counts, used when the NSE quote lookup fails
    ISSUED_SHARES: Dict[str, int] = {
        'HDFCBANK': 7651744860,
        'ICICIBANK': 7127698000,
        'SBIN': 8925059000,
        'KOTAKBANK': 1988180000,
        'AXISBANK': 3097850000,
        'INDUSINDBK': 779050000,
        'CANBK': 9070660000,
        'FEDERALBNK': 2456570000,
        'IDFCFIRSTB': 7325680000,
        'PNB': 11492960000,
        'BANKBARODA': 5171360000,
        'AUBANK': 745110000,
        'BANDHANBNK': 1611000000,
    }

    INDEX_NAME = 'NIFTY BANK'
    INDEX_SYMBOL = 'BANKNIFTY'
    YAHOO_INDEX_SYMBOL = '^NSEBANK'
    YAHOO_SUFFIX = '.NS'
    MIN_CONSTITUENTS = 10

    NSE_BASE_URL = 'https://www.nseindia.com'
    NSE_INDEX_PATH = '/api/equity-stockIndices'
    NSE_QUOTE_PATH = '/api/quote-equity'

    # Persistence keys for Redis
    REDIS_KEYS = {
        'multipliers': 'bank_nifty_multipliers',
        'metadata': 'bank_nifty_metadata',
        'history': 'bank_nifty_history',
    }
