# config.py
"""
Configuration management for the MLM commission engine.
Loads from .env, validates and normalizes the commission tables.
"""
import os
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


# Default commission tables
DEFAULT_MATRIX_CAPACITY = {1: 5, 2: 25, 3: 125, 4: 625, 5: 3125, 6: 15625, 7: 78125}
DEFAULT_MATRIX_REWARDS = {1: 5, 2: 4, 3: 3, 4: 2, 5: 2, 6: 2, 7: 2}
DEFAULT_RANK_CONFIG = {
    "bronze": {"membersRequired": 25, "reward": "500", "displayName": "Bronze"},
    "silver": {"membersRequired": 50, "reward": "1000", "displayName": "Silver"},
    "gold": {"membersRequired": 100, "reward": "2500", "displayName": "Gold"},
    "ruby": {"membersRequired": 200, "reward": "10000", "displayName": "Ruby"},
    "diamond": {"membersRequired": 400, "reward": "15000", "displayName": "Diamond"},
    "platinum": {"membersRequired": 800, "reward": "25000", "displayName": "Platinum"},
    "king": {"membersRequired": 1600, "reward": "60000", "displayName": "King"},
}


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        amount = Config.get(Config.SELF_INCOME_AMOUNT)

        # Override for tuning or tests
        Config.set(Config.DAILY_INCOME_AMOUNT, Decimal("7"))
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Fixed income amounts
    SELF_INCOME_AMOUNT = "SELF_INCOME_AMOUNT"
    DIRECT_INCOME_AMOUNT = "DIRECT_INCOME_AMOUNT"
    DAILY_INCOME_AMOUNT = "DAILY_INCOME_AMOUNT"

    # Matrix tables (level -> value)
    MATRIX_CAPACITY = "MATRIX_CAPACITY"
    MATRIX_REWARDS = "MATRIX_REWARDS"

    # Ranks (rank value -> requirements)
    RANK_CONFIG = "RANK_CONFIG"

    # Withdrawals
    MIN_WITHDRAWAL = "MIN_WITHDRAWAL"

    # Investments
    INVESTMENT_AMOUNT = "INVESTMENT_AMOUNT"
    INVESTMENT_RETURN = "INVESTMENT_RETURN"
    INVESTMENT_TERM_DAYS = "INVESTMENT_TERM_DAYS"

    # Ledger retry policy
    LEDGER_MAX_RETRIES = "LEDGER_MAX_RETRIES"
    LEDGER_RETRY_BASE_DELAY = "LEDGER_RETRY_BASE_DELAY"

    # Scheduler
    SCHEDULER_TIMEZONE = "SCHEDULER_TIMEZONE"

    # ═══════════════════════════════════════════════════════════════════════
    # CRITICAL KEYS (must be present)
    # ═══════════════════════════════════════════════════════════════════════

    CRITICAL_KEYS = [
        DATABASE_URL,
        MATRIX_CAPACITY,
        MATRIX_REWARDS,
        RANK_CONFIG,
    ]

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from environment (and .env file if present).

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv("DATABASE_URL", "sqlite:///mlm.db")

            # Fixed amounts
            cls._config[cls.SELF_INCOME_AMOUNT] = _decimal(os.getenv("SELF_INCOME_AMOUNT", "10"))
            cls._config[cls.DIRECT_INCOME_AMOUNT] = _decimal(os.getenv("DIRECT_INCOME_AMOUNT", "20"))
            cls._config[cls.DAILY_INCOME_AMOUNT] = _decimal(os.getenv("DAILY_INCOME_AMOUNT", "5"))

            # Matrix tables
            cls._config[cls.MATRIX_CAPACITY] = _level_table(
                os.getenv("MATRIX_CAPACITY"), DEFAULT_MATRIX_CAPACITY, int
            )
            cls._config[cls.MATRIX_REWARDS] = _level_table(
                os.getenv("MATRIX_REWARDS"), DEFAULT_MATRIX_REWARDS, _decimal
            )

            # Ranks
            rank_str = os.getenv("RANK_CONFIG")
            cls._config[cls.RANK_CONFIG] = json.loads(rank_str) if rank_str else dict(DEFAULT_RANK_CONFIG)

            # Withdrawals
            cls._config[cls.MIN_WITHDRAWAL] = _decimal(os.getenv("MIN_WITHDRAWAL", "150"))

            # Investments
            cls._config[cls.INVESTMENT_AMOUNT] = _decimal(os.getenv("INVESTMENT_AMOUNT", "5999"))
            cls._config[cls.INVESTMENT_RETURN] = _decimal(os.getenv("INVESTMENT_RETURN", "15000"))
            cls._config[cls.INVESTMENT_TERM_DAYS] = int(os.getenv("INVESTMENT_TERM_DAYS", "35"))

            # Ledger retries
            cls._config[cls.LEDGER_MAX_RETRIES] = int(os.getenv("LEDGER_MAX_RETRIES", "5"))
            cls._config[cls.LEDGER_RETRY_BASE_DELAY] = float(os.getenv("LEDGER_RETRY_BASE_DELAY", "0.05"))

            # Scheduler
            cls._config[cls.SCHEDULER_TIMEZONE] = os.getenv("SCHEDULER_TIMEZONE", "UTC")

            logger.info("Configuration loaded from environment successfully")

        except (ValueError, InvalidOperation, json.JSONDecodeError) as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    @classmethod
    def validate_critical_keys(cls) -> None:
        """
        Validate that all critical configuration keys are present and
        that the matrix tables describe the same levels.

        Raises:
            ConfigurationError: If any critical key is missing or inconsistent
        """
        missing = []
        for key in cls.CRITICAL_KEYS:
            if not cls.get(key):
                missing.append(key)

        if missing:
            error_msg = f"Missing critical configuration keys: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ConfigurationError(error_msg)

        capacity = cls.get(cls.MATRIX_CAPACITY)
        rewards = cls.get(cls.MATRIX_REWARDS)
        if sorted(capacity) != sorted(rewards):
            raise ConfigurationError(
                f"MATRIX_CAPACITY levels {sorted(capacity)} do not match "
                f"MATRIX_REWARDS levels {sorted(rewards)}"
            )

        logger.info("All critical configuration keys validated ✓")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value.

        Args:
            key: Configuration key
            value: Value to set
            source: Source of value (for logging)
        """
        old_value = cls._config.get(key)
        cls._config[key] = value

        if old_value != value:
            logger.debug(f"Config updated from {source}: {key} = {value}")


def _decimal(value: Any) -> Decimal:
    """Parse a money value, rejecting garbage early."""
    return Decimal(str(value))


def _level_table(raw: str, default: Dict[int, Any], cast) -> Dict[int, Any]:
    """
    Parse a JSON level table like {"1": 5, "2": 25}.

    Returns:
        Dict with int level keys (1-based)
    """
    source = json.loads(raw) if raw else default
    table = {int(level): cast(value) for level, value in source.items()}

    expected = list(range(1, len(table) + 1))
    if sorted(table) != expected:
        raise ValueError(f"Level table must cover levels {expected}, got {sorted(table)}")

    return table
