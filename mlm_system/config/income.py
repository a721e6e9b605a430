# mlm_system/config/income.py
"""
Income categories and journal transaction types.
"""
from enum import Enum
from decimal import Decimal

from config import Config


class IncomeCategory(Enum):
    """Wallet earnings counters. Value is the Wallet column name."""
    SELF_INCOME = "selfIncome"
    DIRECT_INCOME = "directIncome"
    MATRIX_INCOME = "matrixIncome"
    DAILY_INCOME = "dailyIncome"
    DAILY_TEAM_INCOME = "dailyTeamIncome"
    RANK_REWARDS = "rankRewards"
    INVESTMENT_INCOME = "investmentIncome"


class TransactionType(Enum):
    """Journal entry types."""
    SELF_INCOME = "self_income"
    DIRECT_INCOME = "direct_income"
    MATRIX_INCOME = "matrix_income"
    DAILY_INCOME = "daily_income"
    DAILY_MATRIX_INCOME = "daily_matrix_income"
    RANK_REWARD = "rank_reward"
    INVESTMENT_MATURITY = "investment_maturity"
    WITHDRAWAL = "withdrawal"
    INVESTMENT_PURCHASE = "investment_purchase"
    REFUND = "refund"


# Default journal type for each earnings category
CATEGORY_TRANSACTION_TYPES = {
    IncomeCategory.SELF_INCOME: TransactionType.SELF_INCOME,
    IncomeCategory.DIRECT_INCOME: TransactionType.DIRECT_INCOME,
    IncomeCategory.MATRIX_INCOME: TransactionType.MATRIX_INCOME,
    IncomeCategory.DAILY_INCOME: TransactionType.DAILY_INCOME,
    IncomeCategory.DAILY_TEAM_INCOME: TransactionType.DAILY_MATRIX_INCOME,
    IncomeCategory.RANK_REWARDS: TransactionType.RANK_REWARD,
    IncomeCategory.INVESTMENT_INCOME: TransactionType.INVESTMENT_MATURITY,
}


def self_income_amount() -> Decimal:
    return Config.get(Config.SELF_INCOME_AMOUNT)


def direct_income_amount() -> Decimal:
    return Config.get(Config.DIRECT_INCOME_AMOUNT)


def daily_income_amount() -> Decimal:
    return Config.get(Config.DAILY_INCOME_AMOUNT)
