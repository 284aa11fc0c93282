"""
Round API Endpoints

重點：
1. POST /manage-round 是唯一的 trigger，冪等、不需要任何參數
2. 所有「能不能下注 / 結算 / 領取」的判斷都來自 state_machine 與 payout_service
3. 下注與領取違反不變條件時回傳 400，並附上具體原因
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

import logging

from database import Settings, get_settings
from schemas import (
    ManageRoundResponse,
    RoundProjectionResponse,
    BetSubmit,
    BetPlacedResponse,
    ClaimSubmit,
    ClaimResponse,
    ClaimableRoundResponse,
)
from api.dependencies import get_clock, get_ledger, get_oracle
from core.exceptions import (
    RoundNotFound,
    InvariantViolation,
    OrchestrationError,
    TransientFetchError,
)
from core.ledger import PlaceBetOperation, ClaimOperation
from core.orchestrator import LifecycleOrchestrator, NoAction, Started
from core.sql_ledger import SqlLedgerGateway
from services.history_service import get_round_history, get_claimable_rounds
from services.payout_service import calculate_payout
from services.projection_service import build_round_projection

router = APIRouter(prefix="/api", tags=["rounds"])
logger = logging.getLogger(__name__)


@router.post("/manage-round", response_model=ManageRoundResponse, response_model_exclude_unset=True)
def manage_round(
    ledger: SqlLedgerGateway = Depends(get_ledger),
    oracle=Depends(get_oracle),
    clock=Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    """
    讓帳本的回合狀態跟上目前時間（由排程定期呼叫）

    返回（三選一）：
        - {action: "none", round_id, status, end_time, time_left}
        - {action: "started", start_handle}
        - {action: "resolved_and_started", resolved_round_id, resolve_handle, start_handle, result}

    handle 欄位一定會出現；already_applied 且帳本不知道原本的 handle 時為 null

    失敗時回傳 500，detail 包含嘗試的動作與原因
    """
    orchestrator = LifecycleOrchestrator(
        ledger,
        oracle,
        now_fn=clock,
        confirmation_timeout_s=settings.confirmation_timeout_s
    )

    try:
        outcome = orchestrator.run()
    except OrchestrationError as e:
        logger.error(f"manage-round error: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"manage-round failed unexpectedly: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")

    if isinstance(outcome, NoAction):
        return ManageRoundResponse(
            action=outcome.action,
            round_id=outcome.round_id,
            status=outcome.status,
            end_time=outcome.end_time,
            time_left=outcome.time_left
        )
    if isinstance(outcome, Started):
        return ManageRoundResponse(action=outcome.action, start_handle=outcome.start_handle)
    return ManageRoundResponse(
        action=outcome.action,
        resolved_round_id=outcome.resolved_round_id,
        resolve_handle=outcome.resolve_handle,
        start_handle=outcome.start_handle,
        result=outcome.result
    )


@router.get("/rounds/current", response_model=RoundProjectionResponse)
def get_current_round(
    participant: Optional[str] = Query(None),
    ledger: SqlLedgerGateway = Depends(get_ledger),
    clock=Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    """
    取得目前回合的 projection

    還沒有任何回合時 round_id = 0、status = NONE
    """
    try:
        current = ledger.read_current_round()
        bet = ledger.read_bet(current.round_id, participant) if participant else None
        return RoundProjectionResponse(**build_round_projection(
            current, clock(), participant=participant, bet=bet, fee_bps=settings.fee_bps
        ))

    except TransientFetchError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get current round: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds/history", response_model=List[RoundProjectionResponse])
def get_history(
    participant: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=100),
    ledger: SqlLedgerGateway = Depends(get_ledger),
    clock=Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    """最近 N 個回合（預設 history_size），由新到舊"""
    try:
        history = get_round_history(
            ledger,
            clock(),
            participant=participant,
            limit=limit or settings.history_size,
            fee_bps=settings.fee_bps
        )
        return [RoundProjectionResponse(**entry) for entry in history]

    except TransientFetchError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get round history: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/rounds/{round_id}", response_model=RoundProjectionResponse)
def get_round(
    round_id: int,
    participant: Optional[str] = Query(None),
    ledger: SqlLedgerGateway = Depends(get_ledger),
    clock=Depends(get_clock),
    settings: Settings = Depends(get_settings),
):
    try:
        round_snap = ledger.read_round(round_id)
        bet = ledger.read_bet(round_id, participant) if participant else None
        return RoundProjectionResponse(**build_round_projection(
            round_snap, clock(), participant=participant, bet=bet, fee_bps=settings.fee_bps
        ))

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except TransientFetchError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to get round {round_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/bets", response_model=BetPlacedResponse)
def place_bet(
    round_id: int,
    bet_data: BetSubmit,
    ledger: SqlLedgerGateway = Depends(get_ledger),
):
    """
    下注

    前置條件（state_machine.can_bet）：
    - 回合是 OPEN 且尚未鎖定
    - 參與者在此回合尚未下注
    - 金額 >= min_bet
    """
    try:
        handle = ledger.submit(PlaceBetOperation(
            round_id=round_id,
            participant=bet_data.participant,
            direction=bet_data.direction,
            amount=bet_data.amount
        ))
        logger.info(
            f"Bet placed by {bet_data.participant} on round {round_id}: "
            f"{bet_data.direction.value} {bet_data.amount}"
        )
        return BetPlacedResponse(handle=handle, round_id=round_id)

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except InvariantViolation as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to place bet: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/rounds/{round_id}/claim", response_model=ClaimResponse)
def claim(
    round_id: int,
    claim_data: ClaimSubmit,
    ledger: SqlLedgerGateway = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    """
    領取獎金

    帳本會以相同的 payout_service 計算金額，並以原子操作將 claimed 設為 True
    """
    try:
        round_snap = ledger.read_round(round_id)
        bet = ledger.read_bet(round_id, claim_data.participant)
        amount = calculate_payout(round_snap, bet, settings.fee_bps)

        handle = ledger.submit(ClaimOperation(round_id=round_id, participant=claim_data.participant))
        return ClaimResponse(handle=handle, round_id=round_id, amount=amount)

    except RoundNotFound:
        raise HTTPException(status_code=404, detail="Round not found")
    except InvariantViolation as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to claim: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/participants/{participant}/claimable", response_model=List[ClaimableRoundResponse])
def get_claimable(
    participant: str,
    ledger: SqlLedgerGateway = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    """最近 history_size 個回合中，尚未領取且可領取的回合"""
    try:
        rounds = get_claimable_rounds(
            ledger, participant, limit=settings.history_size, fee_bps=settings.fee_bps
        )
        return [ClaimableRoundResponse(**entry) for entry in rounds]

    except TransientFetchError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to list claimable rounds: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
