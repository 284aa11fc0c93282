"""
Round projection service.

Builds the read-only snapshot the display layer consumes: every round
field plus the flags derived by the state machine and the payout engine.
"""
from typing import Any, Dict, Optional

from core.snapshots import RoundSnapshot, BetSnapshot
from core.state_machine import derive, effective_status, can_bet, can_resolve
from models import Direction
from services.payout_service import calculate_payout, implied_multiplier, DEFAULT_FEE_BPS


def build_round_projection(
    round_snap: RoundSnapshot,
    now: int,
    participant: Optional[str] = None,
    bet: Optional[BetSnapshot] = None,
    fee_bps: int = DEFAULT_FEE_BPS,
) -> Dict[str, Any]:
    """
    Project a round for display.

    Without a participant, `can_bet` only reflects the round's timing and
    `can_claim` / `bet` / `payout` are None. With a participant, `can_bet`
    also requires that they have not bet yet.
    """
    flags = derive(round_snap, now)

    projection: Dict[str, Any] = {
        "round_id": round_snap.round_id,
        "status": effective_status(round_snap, now),
        "result": round_snap.result,
        "start_price": round_snap.start_price.raw,
        "start_price_display": str(round_snap.start_price),
        "end_price": round_snap.end_price.raw if round_snap.end_price is not None else None,
        "start_time": round_snap.start_time,
        "lock_time": round_snap.lock_time,
        "end_time": round_snap.end_time,
        "total_up_pool": round_snap.total_up_pool,
        "total_down_pool": round_snap.total_down_pool,
        "total_pool": round_snap.total_pool,
        "is_locked": flags.is_locked if round_snap.round_id > 0 else False,
        "time_left": flags.time_left,
        "can_bet": can_bet(round_snap, bet, now),
        "can_resolve": can_resolve(round_snap, now),
        "can_claim": None,
        "implied_up_multiplier": implied_multiplier(round_snap, Direction.UP, fee_bps),
        "implied_down_multiplier": implied_multiplier(round_snap, Direction.DOWN, fee_bps),
        "bet": None,
        "payout": None,
    }

    if participant is not None:
        payout = calculate_payout(round_snap, bet, fee_bps)
        projection["can_claim"] = payout > 0
        projection["payout"] = payout if bet is not None else None
        if bet is not None:
            projection["bet"] = {
                "round_id": bet.round_id,
                "participant": bet.participant,
                "direction": bet.direction,
                "amount": bet.amount,
                "claimed": bet.claimed,
            }

    return projection
