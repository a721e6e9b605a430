# models/mlm/rank_achievement.py
"""
RankAchievement model - append-only set of ranks that already paid a bonus.
"""
from sqlalchemy import Column, Integer, String, DECIMAL, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from models.base import Base, _get_current_time


class RankAchievement(Base):
    __tablename__ = 'rank_achievements'
    __table_args__ = (
        UniqueConstraint('userID', 'rank', name='uq_rank_achievement_user_rank'),
    )

    achievementID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=_get_current_time)

    # Relations
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)

    # Rank details
    previousRank = Column(String, nullable=True)
    rank = Column(String, nullable=False)

    # Qualification metrics at time of achievement
    directActiveReferrals = Column(Integer, nullable=True)
    bonusAmount = Column(DECIMAL(18, 2), nullable=True)
    transactionID = Column(Integer, ForeignKey('wallet_transactions.transactionID'), nullable=True)

    notes = Column(Text, nullable=True)

    # Relationships
    user = relationship('User', backref='rank_achievements')

    def __repr__(self):
        return f"<RankAchievement(user={self.userID}, rank={self.rank}, date={self.createdAt})>"
