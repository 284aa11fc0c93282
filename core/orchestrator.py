"""
Lifecycle Orchestrator：讓帳本上的回合狀態跟上牆上時鐘

每次執行（由 HTTP trigger 或 keeper 觸發）：
1. 讀取目前回合
2. 由狀態機決定需要的動作（NONE / START / RESOLVE_AND_START）
3. 需要時取得價格、提交操作、等待確認後才進行下一個操作

設計重點：
- 不保存任何跨執行的狀態，所有狀態都在帳本
- 同一次執行內的操作嚴格依序（start 依賴 resolve 已經確認）
- 任何失敗都中止這次執行，不在執行內重試；重試交給下一次觸發
- 帳本回覆「目標狀態已經成立」（already_applied）視為成功

可以安全地重複執行：如果 resolve 成功但 start 失敗，
下一次執行會看到 SETTLED，只會再送出 START。
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union

from core.clock import unix_now
from core.exceptions import (
    TickShotException,
    SubmissionRejected,
    OperationReverted,
    OrchestrationError,
)
from core.ledger import LedgerGateway, ResolveOperation, StartOperation
from core.snapshots import RoundSnapshot
from core.state_machine import (
    RoundAction,
    needs_action,
    derive,
    effective_status,
    determine_result,
)
from models import RoundStatus, RoundResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NoAction:
    round_id: int
    status: RoundStatus
    end_time: int
    time_left: int
    action = "none"


@dataclass(frozen=True)
class Started:
    start_handle: Optional[str]
    action = "started"


@dataclass(frozen=True)
class ResolvedAndStarted:
    resolved_round_id: int
    resolve_handle: Optional[str]
    start_handle: Optional[str]
    result: RoundResult
    action = "resolved_and_started"


OrchestratorResult = Union[NoAction, Started, ResolvedAndStarted]


class LifecycleOrchestrator:
    """回合生命週期的唯一驅動者"""

    def __init__(
        self,
        ledger: LedgerGateway,
        oracle,
        now_fn: Callable[[], int] = unix_now,
        confirmation_timeout_s: float = 30.0,
    ):
        self._ledger = ledger
        self._oracle = oracle
        self._now = now_fn
        self._confirmation_timeout = confirmation_timeout_s

    def run(self) -> OrchestratorResult:
        """
        執行一次

        返回：
            NoAction / Started / ResolvedAndStarted

        異常：
            OrchestrationError: 訊息包含嘗試的動作與原因（__cause__ 為原始異常）
        """
        try:
            current = self._ledger.read_current_round()
        except TickShotException as e:
            raise OrchestrationError("read current round", e) from e

        now = self._now()
        action = needs_action(current, now)

        if action == RoundAction.RESOLVE_AND_START:
            return self._resolve_and_start(current)

        if action == RoundAction.START:
            handle = self._start(current.round_id)
            return Started(start_handle=handle)

        flags = derive(current, now)
        return NoAction(
            round_id=current.round_id,
            status=effective_status(current, now),
            end_time=current.end_time,
            time_left=flags.time_left,
        )

    def _resolve_and_start(self, current: RoundSnapshot) -> ResolvedAndStarted:
        round_id = current.round_id

        end_price = self._fetch_price(f"resolve round {round_id}")
        resolve_handle = self._submit_and_confirm(
            ResolveOperation(round_id=round_id, price=end_price),
            f"resolve round {round_id}"
        )
        # 結果以帳本為準：already_applied 時結算價格是別人送出的，不是 end_price
        try:
            settled = self._ledger.read_round(round_id)
        except TickShotException as e:
            raise OrchestrationError(f"read resolved round {round_id}", e) from e
        result = settled.result
        if result == RoundResult.PENDING and settled.end_price is not None:
            result = determine_result(settled.start_price, settled.end_price)
        logger.info(
            f"Resolved round {round_id}: start={settled.start_price} end={settled.end_price} "
            f"result={result.value} handle={resolve_handle}"
        )

        start_handle = self._start(round_id)
        return ResolvedAndStarted(
            resolved_round_id=round_id,
            resolve_handle=resolve_handle,
            start_handle=start_handle,
            result=result,
        )

    def _start(self, previous_round_id: int) -> Optional[str]:
        description = f"start round {previous_round_id + 1}"
        price = self._fetch_price(description)
        handle = self._submit_and_confirm(
            StartOperation(price=price, previous_round_id=previous_round_id),
            description
        )
        logger.info(f"Started round {previous_round_id + 1} at {price} handle={handle}")
        return handle

    def _fetch_price(self, description: str):
        try:
            return self._oracle.get_price()
        except TickShotException as e:
            raise OrchestrationError(f"fetch price to {description}", e) from e

    def _submit_and_confirm(self, operation, description: str) -> Optional[str]:
        """
        提交操作並等待確認

        返回：
            handle；already_applied 且帳本不知道原本的 handle 時為 None
        """
        try:
            handle = self._ledger.submit(operation)
        except SubmissionRejected as e:
            if e.already_applied:
                logger.warning(f"{description}: {e.reason}; treating as already applied")
                return e.existing_handle
            raise OrchestrationError(description, e) from e
        except TickShotException as e:
            raise OrchestrationError(description, e) from e

        try:
            confirmed = self._ledger.await_confirmation(handle, self._confirmation_timeout)
        except TickShotException as e:
            raise OrchestrationError(description, e) from e

        if not confirmed:
            raise OrchestrationError(description, OperationReverted(handle))
        return handle
