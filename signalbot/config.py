"""
Configuration management for the crowd-signal campaign bot.

This module handles all configuration loading from environment variables
and provides type-safe access to configuration values throughout the application.
Trading parameters live in the CampaignConfig dataclass so they can be passed
explicitly into the pure sizing and decision functions.
"""

import os
from dataclasses import dataclass
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


MIN_POLL_INTERVAL_SECONDS = 10


class Config:
    """
    Centralized configuration class for the campaign bot.

    All configuration values are loaded from environment variables with
    sensible defaults where appropriate. API keys must be provided via
    environment variables for security.
    """

    # API Keys (required)
    ANTHROPIC_API_KEY: Optional[str] = os.getenv("ANTHROPIC_API_KEY")
    TWITTER_BEARER_TOKEN: Optional[str] = os.getenv("TWITTER_BEARER_TOKEN")
    TWITTER_USER_ACCESS_TOKEN: Optional[str] = os.getenv("TWITTER_USER_ACCESS_TOKEN")
    TWITTER_USER_ID: Optional[str] = os.getenv("TWITTER_USER_ID")
    TRADING_API_KEY: Optional[str] = os.getenv("TRADING_API_KEY")

    # Service endpoints
    TWITTER_API_URL: str = os.getenv("TWITTER_API_URL", "https://api.twitter.com/2")
    POLYMARKET_GAMMA_URL: str = os.getenv(
        "POLYMARKET_GAMMA_URL",
        "https://gamma-api.polymarket.com"
    )
    TRADING_API_URL: Optional[str] = os.getenv("TRADING_API_URL")
    TRADE_MANAGER_URL: str = os.getenv("TRADE_MANAGER_URL", "http://127.0.0.1:19000")

    # AI Model Configuration
    CLAUDE_MODEL: str = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-5-20250929")
    CLAUDE_TEMPERATURE: float = float(os.getenv("CLAUDE_TEMPERATURE", "0.2"))
    CLAUDE_MAX_TOKENS: int = int(os.getenv("CLAUDE_MAX_TOKENS", "1000"))

    # Request Timeouts (seconds)
    API_TIMEOUT: int = int(os.getenv("API_TIMEOUT", "30"))

    # Database Configuration
    DB_PATH: Path = Path(os.getenv("DB_PATH", "data/campaign.db"))

    # Scheduler Configuration
    SCHEDULER_TIMEZONE: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")

    # Telegram Configuration (optional mirror of published threads)
    TELEGRAM_BOT_TOKEN: Optional[str] = os.getenv("TELEGRAM_BOT_TOKEN")
    TELEGRAM_CHAT_ID: Optional[str] = os.getenv("TELEGRAM_CHAT_ID")

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[Path] = Path(os.getenv("LOG_FILE", "logs/campaign.log")) if os.getenv("LOG_FILE") else None

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate that all required configuration values are present.

        Returns:
            tuple: (is_valid, list_of_errors)
        """
        errors: list[str] = []

        if not cls.ANTHROPIC_API_KEY:
            errors.append("ANTHROPIC_API_KEY is required but not set")

        if not cls.TWITTER_BEARER_TOKEN:
            errors.append("TWITTER_BEARER_TOKEN is required but not set")

        if not cls.TWITTER_USER_ACCESS_TOKEN:
            errors.append("TWITTER_USER_ACCESS_TOKEN is required but not set")

        if not cls.TWITTER_USER_ID:
            errors.append("TWITTER_USER_ID is required but not set")

        if not cls.TRADING_API_URL:
            errors.append("TRADING_API_URL is required but not set")

        if not cls.TRADING_API_KEY:
            errors.append("TRADING_API_KEY is required but not set")

        if cls.API_TIMEOUT < 1:
            errors.append("API_TIMEOUT must be at least 1 second")

        if not (0.0 <= cls.CLAUDE_TEMPERATURE <= 1.0):
            errors.append("CLAUDE_TEMPERATURE must be between 0.0 and 1.0")

        return (len(errors) == 0, errors)

    @classmethod
    def ensure_directories(cls) -> None:
        """
        Ensure all required directories exist.

        Creates directories for the database and logs if they don't exist.
        """
        cls.DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        if cls.LOG_FILE:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)


@dataclass
class CampaignConfig:
    """
    Trading parameters for a campaign.

    Percentages are fractions of bankroll (0.02 = 2%). The sizing and
    decision functions receive this object explicitly instead of reading
    the environment.
    """
    bankroll: float = 10_000.0
    twitter_handle: str = "VincentPlays"

    # Position sizing
    base_position_pct: float = 0.02
    max_position_pct: float = 0.05
    min_position_usd: float = 50.0

    # Portfolio constraints
    max_open_positions: int = 10
    max_theme_exposure_pct: float = 0.15
    cash_reserve_pct: float = 0.20
    drawdown_breaker_pct: float = 0.50

    # Exit rules
    take_profit_multiple: float = 2.0
    stop_loss_percent: float = 0.40

    # Signal thresholds
    min_signals_to_act: int = 5
    min_edge_score: float = 0.3
    min_account_age_days: int = 30
    min_followers: int = 50
    max_signals_per_user_per_day: int = 5
    min_signals_to_publish_pass: Optional[int] = None

    # Sensemaking
    cluster_window_hours: int = 24
    signal_strength_normalizer: float = 20.0
    top_opportunities_per_tick: int = 3
    market_fetch_limit: int = 200
    markets_in_prompt: int = 50
    market_cache_minutes: int = 15

    # Timing
    poll_interval_seconds: int = 60
    digest_hour_start_utc: int = 20
    digest_hour_end_utc: int = 22

    def __post_init__(self) -> None:
        if self.min_signals_to_publish_pass is None:
            self.min_signals_to_publish_pass = self.min_signals_to_act
        self.poll_interval_seconds = max(MIN_POLL_INTERVAL_SECONDS, int(self.poll_interval_seconds))

    @classmethod
    def from_env(cls) -> "CampaignConfig":
        """Build a config from defaults with environment overrides."""
        defaults = cls()
        return cls(
            bankroll=float(os.getenv("CAMPAIGN_BANKROLL", str(defaults.bankroll))),
            twitter_handle=os.getenv("CAMPAIGN_TWITTER_HANDLE", defaults.twitter_handle),
            poll_interval_seconds=int(os.getenv("POLL_INTERVAL_SECONDS", str(defaults.poll_interval_seconds))),
        )

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate numeric ranges of the trading parameters.

        Returns:
            tuple: (is_valid, list_of_errors)
        """
        errors: list[str] = []

        if self.bankroll <= 0:
            errors.append("bankroll must be positive")

        for name in ("base_position_pct", "max_position_pct", "max_theme_exposure_pct",
                     "cash_reserve_pct", "drawdown_breaker_pct", "stop_loss_percent"):
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0):
                errors.append(f"{name} must be between 0.0 and 1.0")

        if self.base_position_pct > self.max_position_pct:
            errors.append("base_position_pct must be <= max_position_pct")

        if self.take_profit_multiple <= 1.0:
            errors.append("take_profit_multiple must be greater than 1.0")

        if self.signal_strength_normalizer <= 0:
            errors.append("signal_strength_normalizer must be positive")

        if self.top_opportunities_per_tick < 1:
            errors.append("top_opportunities_per_tick must be at least 1")

        if not (0 <= self.digest_hour_start_utc < self.digest_hour_end_utc <= 24):
            errors.append("digest hour window must satisfy 0 <= start < end <= 24")

        return (len(errors) == 0, errors)
