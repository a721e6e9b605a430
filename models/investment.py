# models/investment.py
"""
Investment model - fixed package bought from the wallet, paid out once at maturity.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Investment(Base, AuditMixin):
    __tablename__ = 'investments'

    investmentID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Terms
    amount = Column(DECIMAL(18, 2), nullable=False)
    returnAmount = Column(DECIMAL(18, 2), nullable=False)
    termDays = Column(Integer, nullable=False)

    # Lifecycle
    status = Column(String, default="active", index=True)  # active, matured
    startDate = Column(DateTime, nullable=False)
    maturedAt = Column(DateTime, nullable=True)

    # Journal links
    purchaseTransactionID = Column(Integer, ForeignKey('wallet_transactions.transactionID'), nullable=True)
    maturityTransactionID = Column(Integer, ForeignKey('wallet_transactions.transactionID'), nullable=True)

    # Note: createdAt, updatedAt, ownerEmail - from AuditMixin

    # Relationships
    user = relationship('User', backref='investments')

    def __repr__(self):
        return f"<Investment(id={self.investmentID}, user={self.userID}, status={self.status})>"
