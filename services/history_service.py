"""
Round history service.

Responsible for building the recent-round history and the list of
rounds a participant can still claim, so the frontend can render
them directly from the server instead of querying round by round.
"""
from typing import List, Dict, Any, Optional

from core.ledger import LedgerGateway
from services.payout_service import calculate_payout, DEFAULT_FEE_BPS
from services.projection_service import build_round_projection


def get_round_history(
    ledger: LedgerGateway,
    now: int,
    participant: Optional[str] = None,
    limit: int = 10,
    fee_bps: int = DEFAULT_FEE_BPS,
) -> List[Dict[str, Any]]:
    """
    Return projections of the latest `limit` rounds, newest first.

    When a participant is given, each entry carries their bet and payout.
    """
    history: List[Dict[str, Any]] = []

    for round_snap in ledger.list_rounds(limit):
        bet = ledger.read_bet(round_snap.round_id, participant) if participant else None
        history.append(
            build_round_projection(round_snap, now, participant=participant, bet=bet, fee_bps=fee_bps)
        )

    return history


def get_claimable_rounds(
    ledger: LedgerGateway,
    participant: str,
    limit: int = 10,
    fee_bps: int = DEFAULT_FEE_BPS,
) -> List[Dict[str, Any]]:
    """
    Return the unclaimed, payable rounds among the latest `limit` rounds.

    Rounds the participant did not bet on, lost, or already claimed are skipped.
    """
    claimable: List[Dict[str, Any]] = []

    for round_snap in ledger.list_rounds(limit):
        bet = ledger.read_bet(round_snap.round_id, participant)
        amount = calculate_payout(round_snap, bet, fee_bps)
        if amount <= 0:
            continue

        claimable.append({
            "round_id": round_snap.round_id,
            "result": round_snap.result,
            "direction": bet.direction,
            "stake": bet.amount,
            "amount": amount,
        })

    return claimable
