"""
Database models for the MLM commission engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.wallet import Wallet
from models.matrix_level import MatrixLevel, MatrixPropagation
from models.user import User
from models.wallet_transaction import WalletTransaction
from models.activation_code import ActivationCode
from models.withdrawal import Withdrawal
from models.investment import Investment

# MLM models
from models.mlm.rank_achievement import RankAchievement

# Event listeners
from models.listeners import register_all_listeners

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'User',
    'Wallet',
    'WalletTransaction',
    'MatrixLevel',
    'MatrixPropagation',
    'ActivationCode',
    'Withdrawal',
    'Investment',

    # MLM
    'RankAchievement',

    # Listeners
    'register_all_listeners',
]
