# models/wallet_transaction.py
"""
WalletTransaction model - append-only journal of every wallet movement.
SUM(amount) per user always equals Wallet.balance.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class WalletTransaction(Base, AuditMixin):
    __tablename__ = 'wallet_transactions'

    # Primary key
    transactionID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    sourceUserID = Column(Integer, ForeignKey('users.userID'), nullable=True)  # downline that triggered it

    # Transaction details
    type = Column(String, nullable=False, index=True)  # TransactionType value
    amount = Column(DECIMAL(18, 2), nullable=False)  # positive = credit, negative = debit
    level = Column(Integer, nullable=True)  # matrix level 1..7
    status = Column(String, default='done')

    # Transaction metadata
    reason = Column(String, nullable=True)  # withdrawal=12, investment=3, activation
    notes = Column(String, nullable=True)

    # Exactly-once guard: self_income:5, direct_income:2:5, matrix_income:2:L1 ...
    idempotencyKey = Column(String, unique=True, nullable=True)

    # Note: createdAt, updatedAt, ownerEmail - from AuditMixin

    # Relationships
    user = relationship('User', foreign_keys=[userID], backref='wallet_transactions')
    sourceUser = relationship('User', foreign_keys=[sourceUserID])

    def __repr__(self):
        return (
            f"<WalletTransaction(id={self.transactionID}, user={self.userID}, "
            f"type={self.type}, amount={self.amount})>"
        )
