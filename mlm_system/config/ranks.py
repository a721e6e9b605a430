# mlm_system/config/ranks.py
"""
MLM ranks configuration.
Rank thresholds (direct active referrals) and one-time bonuses load from Config.
"""
from enum import Enum
from decimal import Decimal
from typing import Dict, Any, List, Optional
import logging

logger = logging.getLogger(__name__)


class Rank(Enum):
    """MLM rank enumeration, declared in ascending order."""
    NEWCOMER = "newcomer"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    RUBY = "ruby"
    DIAMOND = "diamond"
    PLATINUM = "platinum"
    KING = "king"


RANK_ORDER: List[Rank] = list(Rank)


def rank_index(rank: Optional[str]) -> int:
    """
    Position of a rank value in the ascending order.
    Unknown or empty values count as NEWCOMER.
    """
    try:
        return RANK_ORDER.index(Rank(rank))
    except ValueError:
        return 0


def compare_ranks(rank1: Optional[str], rank2: Optional[str]) -> int:
    """
    Compare two rank values.

    Returns:
        -1 if rank1 < rank2, 0 if equal, 1 if rank1 > rank2
    """
    idx1, idx2 = rank_index(rank1), rank_index(rank2)
    if idx1 < idx2:
        return -1
    if idx1 > idx2:
        return 1
    return 0


def get_rank_config() -> Dict[Rank, Dict[str, Any]]:
    """
    Get rank configuration from Config module.

    Returns:
        Dictionary mapping Rank enum to configuration dict, ascending order

    Raises:
        ValueError: If RANK_CONFIG not loaded
    """
    from config import Config

    raw_config = Config.get(Config.RANK_CONFIG)

    if not raw_config:
        logger.error("RANK_CONFIG not loaded!")
        raise ValueError("RANK_CONFIG must be loaded before use")

    rank_config = {}

    for rank_key, rank_data in raw_config.items():
        try:
            rank_enum = Rank(rank_key)

            rank_config[rank_enum] = {
                "membersRequired": int(rank_data["membersRequired"]),
                "reward": Decimal(str(rank_data["reward"])),
                "displayName": rank_data.get("displayName", rank_enum.value.title())
            }

        except (ValueError, KeyError) as e:
            logger.error(f"Invalid rank configuration for '{rank_key}': {e}")
            continue

    return dict(sorted(rank_config.items(), key=lambda item: RANK_ORDER.index(item[0])))


# Lazy-loaded configuration cache
_RANK_CONFIG_CACHE: Dict[Rank, Dict[str, Any]] = {}


def get_rank_config_cached() -> Dict[Rank, Dict[str, Any]]:
    """
    Get rank configuration with caching.
    Loads from Config on first access, then returns cached version.
    """
    global _RANK_CONFIG_CACHE

    if not _RANK_CONFIG_CACHE:
        _RANK_CONFIG_CACHE = get_rank_config()
        logger.info(f"Loaded RANK_CONFIG: {len(_RANK_CONFIG_CACHE)} ranks")

    return _RANK_CONFIG_CACHE


def reset_rank_config_cache() -> None:
    """Drop cached rank table (after Config.set of RANK_CONFIG)."""
    global _RANK_CONFIG_CACHE
    _RANK_CONFIG_CACHE = {}


# Public accessor - use this everywhere instead of a module constant
def RANK_CONFIG():
    """Get current rank configuration."""
    return get_rank_config_cached()
