# models/matrix_level.py
"""
Matrix models.

MatrixLevel - per (member, level) counter of active descendants and the
one-way completion flag.
MatrixPropagation - marks that an activated member was added to the upline
counters, so counters move exactly once per activation.
"""
from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from models.base import Base, _get_current_time


class MatrixLevel(Base):
    __tablename__ = 'matrix_levels'
    __table_args__ = (
        UniqueConstraint('userID', 'level', name='uq_matrix_level_user_level'),
    )

    levelID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), nullable=False, index=True)
    level = Column(Integer, nullable=False)  # 1..7

    # Active members exactly `level` hops below, through active referrals only
    activeCount = Column(Integer, nullable=False, default=0)

    # false -> true once, never reversed
    completed = Column(Boolean, nullable=False, default=False)
    completedAt = Column(DateTime, nullable=True)

    # Daily team income batch marker
    lastDailyCreditAt = Column(DateTime, nullable=True)

    # Relationships
    user = relationship('User', back_populates='matrixLevels')

    def __init__(self, **kwargs):
        kwargs.setdefault("activeCount", 0)
        kwargs.setdefault("completed", False)
        super().__init__(**kwargs)

    def __repr__(self):
        return (
            f"<MatrixLevel(user={self.userID}, level={self.level}, "
            f"count={self.activeCount}, completed={self.completed})>"
        )


class MatrixPropagation(Base):
    __tablename__ = 'matrix_propagations'

    propagationID = Column(Integer, primary_key=True, autoincrement=True)
    userID = Column(Integer, ForeignKey('users.userID'), unique=True, nullable=False)
    ancestorsUpdated = Column(Integer, nullable=False, default=0)
    createdAt = Column(DateTime, default=_get_current_time)

    def __repr__(self):
        return f"<MatrixPropagation(user={self.userID}, ancestors={self.ancestorsUpdated})>"
