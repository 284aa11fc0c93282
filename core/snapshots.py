"""
回合與下注的唯讀快照

Ledger Gateway 回傳的都是快照，不是 ORM 物件：
狀態機、計分服務與 projection 只依賴這些不可變的資料結構。
"""
from dataclasses import dataclass
from typing import Optional

from core.fixed_point import FixedPoint
from models import Round, Bet, RoundStatus, RoundResult, Direction


@dataclass(frozen=True)
class RoundSnapshot:
    round_id: int
    status: RoundStatus
    result: RoundResult
    start_price: FixedPoint
    end_price: Optional[FixedPoint]
    start_time: int
    lock_time: int
    end_time: int
    total_up_pool: int = 0
    total_down_pool: int = 0

    @property
    def total_pool(self) -> int:
        return self.total_up_pool + self.total_down_pool

    def pool_for(self, direction: Direction) -> int:
        return self.total_up_pool if direction == Direction.UP else self.total_down_pool

    @classmethod
    def empty(cls) -> "RoundSnapshot":
        """roundId = 0：帳本上還沒有任何回合"""
        return cls(
            round_id=0,
            status=RoundStatus.NONE,
            result=RoundResult.PENDING,
            start_price=FixedPoint(0),
            end_price=None,
            start_time=0,
            lock_time=0,
            end_time=0,
        )

    @classmethod
    def from_model(cls, round_obj: Round) -> "RoundSnapshot":
        return cls(
            round_id=round_obj.id,
            status=round_obj.status,
            result=round_obj.result,
            start_price=FixedPoint(round_obj.start_price),
            end_price=FixedPoint(round_obj.end_price) if round_obj.end_price is not None else None,
            start_time=round_obj.start_time,
            lock_time=round_obj.lock_time,
            end_time=round_obj.end_time,
            total_up_pool=round_obj.total_up_pool,
            total_down_pool=round_obj.total_down_pool,
        )


@dataclass(frozen=True)
class BetSnapshot:
    round_id: int
    participant: str
    direction: Direction
    amount: int
    claimed: bool = False

    @classmethod
    def from_model(cls, bet: Bet) -> "BetSnapshot":
        return cls(
            round_id=bet.round_id,
            participant=bet.participant,
            direction=bet.direction,
            amount=bet.amount,
            claimed=bet.claimed,
        )
