"""
資料模型

帳本（ledger）的持久化結構：
- Round：一個下注回合
- Bet：一位參與者在一個回合的下注
- LedgerOperation：帳本操作紀錄（handle 即交易代號）
"""
import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, BigInteger, String, Boolean, DateTime, Enum, JSON,
    ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoundStatus(str, enum.Enum):
    NONE = "NONE"
    OPEN = "OPEN"
    LOCKED = "LOCKED"
    SETTLED = "SETTLED"


class RoundResult(str, enum.Enum):
    PENDING = "PENDING"
    UP = "UP"
    DOWN = "DOWN"
    TIE = "TIE"


class Direction(str, enum.Enum):
    UP = "UP"
    DOWN = "DOWN"


class OperationKind(str, enum.Enum):
    RESOLVE = "RESOLVE"
    START = "START"
    PLACE_BET = "PLACE_BET"
    CLAIM = "CLAIM"


class OperationStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class Round(Base):
    __tablename__ = "rounds"

    # 回合編號由帳本依序指定（前一回合 + 1），不使用 autoincrement
    id = Column(Integer, primary_key=True, autoincrement=False)
    status = Column(Enum(RoundStatus), nullable=False, default=RoundStatus.OPEN)
    result = Column(Enum(RoundResult), nullable=False, default=RoundResult.PENDING)

    # 8 位小數定點數的 raw 值
    start_price = Column(BigInteger, nullable=False)
    end_price = Column(BigInteger, nullable=True)

    start_time = Column(BigInteger, nullable=False)
    lock_time = Column(BigInteger, nullable=False)
    end_time = Column(BigInteger, nullable=False)

    total_up_pool = Column(BigInteger, nullable=False, default=0)
    total_down_pool = Column(BigInteger, nullable=False, default=0)

    created_at = Column(DateTime, default=_utcnow)

    bets = relationship("Bet", back_populates="round")


class Bet(Base):
    __tablename__ = "bets"
    __table_args__ = (
        UniqueConstraint("round_id", "participant", name="uq_bet_round_participant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    round_id = Column(Integer, ForeignKey("rounds.id"), nullable=False, index=True)
    participant = Column(String, nullable=False, index=True)
    direction = Column(Enum(Direction), nullable=False)
    amount = Column(BigInteger, nullable=False)
    claimed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=_utcnow)

    round = relationship("Round", back_populates="bets")


class LedgerOperation(Base):
    __tablename__ = "ledger_operations"

    handle = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    kind = Column(Enum(OperationKind), nullable=False)
    round_id = Column(Integer, nullable=False, index=True)
    status = Column(Enum(OperationStatus), nullable=False, default=OperationStatus.PENDING)
    detail = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=_utcnow)
