# models/activation_code.py
"""
ActivationCode model - one-time TPIN that activates a member.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class ActivationCode(Base, AuditMixin):
    __tablename__ = 'activation_codes'

    codeID = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String, unique=True, nullable=False)

    # Relations
    ownerID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    usedByID = Column(Integer, ForeignKey('users.userID'), nullable=True)

    # Lifecycle
    status = Column(String, default="approved")  # pending, approved, rejected
    isUsed = Column(Boolean, default=False, nullable=False)
    usedAt = Column(DateTime, nullable=True)
    notes = Column(String, nullable=True)

    # Note: createdAt, updatedAt, ownerEmail - from AuditMixin

    # Relationships
    owner = relationship('User', foreign_keys=[ownerID], backref='activation_codes')
    usedBy = relationship('User', foreign_keys=[usedByID])

    def __repr__(self):
        return f"<ActivationCode(code={self.code}, owner={self.ownerID}, used={self.isUsed})>"
