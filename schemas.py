"""
API request / response schemas
"""
from typing import Optional

from pydantic import BaseModel, Field

from models import RoundStatus, RoundResult, Direction


# ============ Trigger ============

class ManageRoundResponse(BaseModel):
    action: str
    # action = "none"
    round_id: Optional[int] = None
    status: Optional[RoundStatus] = None
    end_time: Optional[int] = None
    time_left: Optional[int] = None
    # action = "started" / "resolved_and_started"
    start_handle: Optional[str] = None
    resolved_round_id: Optional[int] = None
    resolve_handle: Optional[str] = None
    result: Optional[RoundResult] = None


# ============ Round projection ============

class BetResponse(BaseModel):
    round_id: int
    participant: str
    direction: Direction
    amount: int
    claimed: bool


class RoundProjectionResponse(BaseModel):
    round_id: int
    status: RoundStatus
    result: RoundResult
    start_price: int
    start_price_display: str
    end_price: Optional[int] = None
    start_time: int
    lock_time: int
    end_time: int
    total_up_pool: int
    total_down_pool: int
    total_pool: int
    is_locked: bool
    time_left: int
    can_bet: bool
    can_resolve: bool
    can_claim: Optional[bool] = None
    implied_up_multiplier: Optional[float] = None
    implied_down_multiplier: Optional[float] = None
    bet: Optional[BetResponse] = None
    payout: Optional[int] = None


# ============ Bets / claims ============

class BetSubmit(BaseModel):
    participant: str = Field(..., min_length=1)
    direction: Direction
    amount: int = Field(..., gt=0)


class BetPlacedResponse(BaseModel):
    handle: str
    round_id: int


class ClaimSubmit(BaseModel):
    participant: str = Field(..., min_length=1)


class ClaimResponse(BaseModel):
    handle: str
    round_id: int
    amount: int


class ClaimableRoundResponse(BaseModel):
    round_id: int
    result: RoundResult
    direction: Direction
    stake: int
    amount: int
