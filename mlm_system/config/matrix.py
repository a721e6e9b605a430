# mlm_system/config/matrix.py
"""
Matrix configuration - per-level capacity and one-time reward.
Capacity at level L is 5^L by default; rewards decay with depth.
"""
from decimal import Decimal
from typing import Dict

from config import Config

# Depth of the matrix (and of every upline walk)
MATRIX_LEVELS = 7


def get_matrix_capacity() -> Dict[int, int]:
    """Active descendants required to complete each level."""
    return Config.get(Config.MATRIX_CAPACITY)


def get_matrix_rewards() -> Dict[int, Decimal]:
    """One-time (and daily maintenance) reward per level."""
    return Config.get(Config.MATRIX_REWARDS)


def get_max_depth() -> int:
    """Number of configured levels, never deeper than MATRIX_LEVELS."""
    capacity = get_matrix_capacity() or {}
    return min(len(capacity), MATRIX_LEVELS)
