# models/user.py
"""
User model - a member of the referral network.
Every user owns exactly one Wallet and one MatrixLevel row per matrix level,
created together with the user.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from models.base import Base, _get_current_time
from models.wallet import Wallet
from models.matrix_level import MatrixLevel


class User(Base):
    __tablename__ = 'users'

    # Primary identification
    userID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False)
    createdAt = Column(DateTime, default=_get_current_time)

    # Referral tree edge - set once at registration, never changed
    upline = Column(Integer, ForeignKey('users.userID'), nullable=True, index=True)
    referralCode = Column(String, unique=True, nullable=True)

    # Personal information
    firstname = Column(String, nullable=True)
    surname = Column(String, nullable=True)

    # System fields
    status = Column(String, default="active")  # active, blocked
    notes = Column(Text, nullable=True)

    # MLM state
    isActive = Column(Boolean, default=False, nullable=False, index=True)  # true after first TPIN
    activatedAt = Column(DateTime, nullable=True)
    rank = Column(String, default="newcomer", nullable=False, index=True)  # never downgraded

    # Daily income batch marker (last credited timestamp)
    lastDailyIncomeAt = Column(DateTime, nullable=True)

    # Relationships
    referrer = relationship('User', remote_side=[userID], backref='referrals')
    wallet = relationship(Wallet, uselist=False, back_populates='user', cascade='all')
    matrixLevels = relationship(
        MatrixLevel,
        back_populates='user',
        order_by=MatrixLevel.level,
        cascade='all'
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        if self.wallet is None:
            self.wallet = Wallet()
        if not self.matrixLevels:
            from mlm_system.config.matrix import MATRIX_LEVELS
            self.matrixLevels = [MatrixLevel(level=level) for level in range(1, MATRIX_LEVELS + 1)]

    @property
    def isBlocked(self) -> bool:
        return self.status == "blocked"

    def __repr__(self):
        return f"<User(userID={self.userID}, email={self.email}, active={self.isActive}, rank={self.rank})>"
