# models/wallet.py
"""
Wallet model - cached balance and per-category earnings of one member.

Mutated only by LedgerService. Invariants:
    totalEarnings == sum of category counters
    balance == totalEarnings - withdrawnAmount == SUM(journal amounts)
"""
from decimal import Decimal
from sqlalchemy import Column, Integer, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from models.base import Base, _get_current_time

EARNING_COLUMNS = (
    "selfIncome",
    "directIncome",
    "matrixIncome",
    "dailyIncome",
    "dailyTeamIncome",
    "rankRewards",
    "investmentIncome",
)


class Wallet(Base):
    __tablename__ = 'wallets'

    walletID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), unique=True, nullable=False)

    # Spendable amount
    balance = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)

    # Cumulative earnings per category
    selfIncome = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)
    directIncome = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)
    matrixIncome = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)
    dailyIncome = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)
    dailyTeamIncome = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)
    rankRewards = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)
    investmentIncome = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)
    totalEarnings = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)

    # Net amount debited (withdrawals, purchases) minus refunds
    withdrawnAmount = Column(DECIMAL(18, 2), default=Decimal("0"), nullable=False)

    # Optimistic locking - every UPDATE checks and bumps it
    version = Column(Integer, nullable=False, default=1)

    updatedAt = Column(DateTime, default=_get_current_time, onupdate=_get_current_time)

    # Relationships
    user = relationship('User', back_populates='wallet')

    __mapper_args__ = {"version_id_col": version}

    def __init__(self, **kwargs):
        for column in EARNING_COLUMNS + ("balance", "totalEarnings", "withdrawnAmount"):
            kwargs.setdefault(column, Decimal("0"))
        super().__init__(**kwargs)

    def __repr__(self):
        return f"<Wallet(user={self.userID}, balance={self.balance}, earned={self.totalEarnings})>"
