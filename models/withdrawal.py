# models/withdrawal.py
"""
Withdrawal model - a payout request. Funds are debited when the request is
created and refunded if it is rejected.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Withdrawal(Base, AuditMixin):
    __tablename__ = 'withdrawals'

    withdrawalID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Request details
    amount = Column(DECIMAL(18, 2), nullable=False)
    paymentMethod = Column(String, nullable=False)  # upi, bank
    paymentDetails = Column(JSON, nullable=True)
    # {"upiId": "..."} or
    # {"bankDetails": {"accountNumber": "...", "ifscCode": "...",
    #                  "accountHolderName": "...", "bankName": "..."}}

    status = Column(String, default="pending", index=True)  # pending, approved, rejected

    # Journal links
    debitTransactionID = Column(Integer, ForeignKey('wallet_transactions.transactionID'), nullable=True)
    refundTransactionID = Column(Integer, ForeignKey('wallet_transactions.transactionID'), nullable=True)

    # Processing
    processedAt = Column(DateTime, nullable=True)
    rejectionReason = Column(String, nullable=True)
    transactionRef = Column(String, nullable=True)  # external payout reference

    # Note: createdAt, updatedAt, ownerEmail - from AuditMixin

    # Relationships
    user = relationship('User', backref='withdrawals')

    def __repr__(self):
        return f"<Withdrawal(id={self.withdrawalID}, user={self.userID}, amount={self.amount}, status={self.status})>"
