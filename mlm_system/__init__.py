# mlm_system/__init__.py
"""
MLM System - activation commissions, matrix, ranks and daily batches.
"""

# Services
from mlm_system.services.ledger_service import LedgerService
from mlm_system.services.commission_service import CommissionService
from mlm_system.services.matrix_service import MatrixService
from mlm_system.services.rank_service import RankService
from mlm_system.services.daily_income_service import DailyIncomeService
from mlm_system.services.withdrawal_service import WithdrawalService
from mlm_system.services.investment_service import InvestmentService
from mlm_system.services.member_service import MemberService

# Models and configuration
from mlm_system.config.ranks import Rank, RANK_CONFIG
from mlm_system.config.income import IncomeCategory, TransactionType

# Utilities
from mlm_system.utils.time_machine import timeMachine
from mlm_system.utils.member_locks import MemberLocks, memberLocks
from mlm_system.utils.referral_graph import ReferralGraph

# Events
from mlm_system.events.event_bus import eventBus, MLMEvents

__all__ = [
    # Services
    'LedgerService',
    'CommissionService',
    'MatrixService',
    'RankService',
    'DailyIncomeService',
    'WithdrawalService',
    'InvestmentService',
    'MemberService',

    # Config
    'Rank',
    'RANK_CONFIG',
    'IncomeCategory',
    'TransactionType',

    # Utils
    'timeMachine',
    'MemberLocks',
    'memberLocks',
    'ReferralGraph',

    # Events
    'eventBus',
    'MLMEvents',
]
