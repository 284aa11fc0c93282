"""
SQL Ledger：以 SQLAlchemy 實作的參考帳本

職責：
1. 提供 LedgerGateway 的讀取介面（回合、下注、歷史）
2. 以 compare-and-swap 的方式套用 resolve / start / place_bet / claim
3. 每個成功的操作都寫入 LedgerOperation，handle 即交易代號

CAS 規則：
- resolve：UPDATE ... WHERE status IN (OPEN, LOCKED)，沒更新到 = 已經結算（already_applied）
- start：previous_round_id 必須是最新回合；已經有更新的回合 = already_applied；
         同時插入同一個 id 會撞 primary key，同樣視為 already_applied
- place_bet：(round_id, participant) unique constraint，防止重複下注
- claim：UPDATE ... WHERE claimed = False，防止重複領取
"""
import logging
import time
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from database import Settings, transactional
from models import (
    Round, Bet, LedgerOperation, RoundStatus, RoundResult, Direction,
    OperationKind, OperationStatus
)
from core.clock import unix_now
from core.exceptions import (
    SubmissionRejected,
    ConfirmationTimeout,
    LedgerReadError,
    RoundNotFound,
    BettingClosed,
    BetAlreadyPlaced,
    InvalidBetAmount,
    NothingToClaim,
)
from core.ledger import (
    LedgerGateway,
    ResolveOperation,
    StartOperation,
    PlaceBetOperation,
    ClaimOperation,
)
from core.locks import with_round_lock, with_latest_round_lock, with_bet_lock
from core.snapshots import RoundSnapshot, BetSnapshot
from core.state_machine import ACTIVE_STATUSES, can_bet, can_resolve, determine_result
from services.payout_service import calculate_payout, ineligibility_reason, DEFAULT_FEE_BPS

logger = logging.getLogger(__name__)


def _find_confirmed_operation(db: Session, kind: OperationKind, round_id: int) -> Optional[LedgerOperation]:
    return db.query(LedgerOperation).filter(
        LedgerOperation.kind == kind,
        LedgerOperation.round_id == round_id,
        LedgerOperation.status == OperationStatus.CONFIRMED
    ).first()


def _record_operation(db: Session, kind: OperationKind, round_id: int, detail: dict) -> str:
    operation = LedgerOperation(
        kind=kind,
        round_id=round_id,
        status=OperationStatus.CONFIRMED,
        detail=detail
    )
    db.add(operation)
    db.flush()  # 取得 handle
    return operation.handle


@transactional
def apply_resolve(db: Session, op: ResolveOperation, now: int) -> str:
    """
    結算回合（OPEN/LOCKED -> SETTLED）

    前置條件：
    1. 回合存在
    2. 回合仍是 OPEN/LOCKED（否則 already_applied）
    3. now >= end_time

    返回：
        操作 handle
    """
    round_obj = with_round_lock(op.round_id, db).first()
    if round_obj is None:
        raise SubmissionRejected("resolve", f"round {op.round_id} does not exist")

    if round_obj.status == RoundStatus.SETTLED:
        existing = _find_confirmed_operation(db, OperationKind.RESOLVE, op.round_id)
        raise SubmissionRejected(
            "resolve",
            f"round {op.round_id} is already settled",
            already_applied=True,
            existing_handle=existing.handle if existing else None
        )

    snapshot = RoundSnapshot.from_model(round_obj)
    if not can_resolve(snapshot, now):
        raise SubmissionRejected(
            "resolve",
            f"round {op.round_id} has not ended (end_time={snapshot.end_time}, now={now})"
        )

    result = determine_result(snapshot.start_price, op.price)

    # CAS：只有仍在 OPEN/LOCKED 的回合會被更新
    updated = db.query(Round).filter(
        Round.id == op.round_id,
        Round.status.in_(ACTIVE_STATUSES)
    ).update(
        {
            Round.status: RoundStatus.SETTLED,
            Round.result: result,
            Round.end_price: op.price.raw,
        },
        synchronize_session=False
    )
    if updated != 1:
        raise SubmissionRejected(
            "resolve", f"round {op.round_id} is already settled", already_applied=True
        )

    handle = _record_operation(db, OperationKind.RESOLVE, op.round_id, {
        "price": op.price.raw,
        "result": result.value,
    })
    logger.info(f"Round {op.round_id} settled at {op.price} with result {result.value}")
    return handle


@transactional
def apply_start(db: Session, op: StartOperation, now: int,
                lock_duration: int, round_duration: int) -> str:
    """
    開新回合（建立 previous_round_id + 1，狀態 OPEN）

    前置條件：
    1. previous_round_id 是目前最新的回合（0 表示沒有任何回合）
    2. 最新回合已結算

    返回：
        操作 handle
    """
    latest = with_latest_round_lock(db).first()
    latest_id = latest.id if latest is not None else 0

    if latest_id > op.previous_round_id:
        existing = _find_confirmed_operation(db, OperationKind.START, latest_id)
        raise SubmissionRejected(
            "start",
            f"round {latest_id} already started after round {op.previous_round_id}",
            already_applied=True,
            existing_handle=existing.handle if existing else None
        )
    if latest_id < op.previous_round_id:
        raise SubmissionRejected("start", f"round {op.previous_round_id} does not exist")
    if latest is not None and latest.status != RoundStatus.SETTLED:
        raise SubmissionRejected("start", f"round {latest_id} is not settled")

    new_round = Round(
        id=latest_id + 1,
        status=RoundStatus.OPEN,
        result=RoundResult.PENDING,
        start_price=op.price.raw,
        end_price=None,
        start_time=now,
        lock_time=now + lock_duration,
        end_time=now + round_duration,
        total_up_pool=0,
        total_down_pool=0
    )
    db.add(new_round)
    db.flush()  # 同時插入同一個 id 會在這裡拋出 IntegrityError

    handle = _record_operation(db, OperationKind.START, new_round.id, {"price": op.price.raw})
    logger.info(f"Started round {new_round.id} at {op.price}")
    return handle


@transactional
def apply_place_bet(db: Session, op: PlaceBetOperation, now: int, min_bet: int) -> str:
    """
    下注

    前置條件（與 state_machine.can_bet 完全相同）：
    1. 回合是 OPEN 且 now < lock_time
    2. 參與者在此回合尚未下注
    另外金額必須 >= min_bet
    """
    if op.amount < max(min_bet, 1):
        raise InvalidBetAmount(f"bet amount must be at least {max(min_bet, 1)}, got {op.amount}")

    round_obj = with_round_lock(op.round_id, db).first()
    if round_obj is None:
        raise RoundNotFound(op.round_id)

    existing = db.query(Bet).filter(
        Bet.round_id == op.round_id,
        Bet.participant == op.participant
    ).first()
    snapshot = RoundSnapshot.from_model(round_obj)
    existing_snapshot = BetSnapshot.from_model(existing) if existing else None

    if not can_bet(snapshot, existing_snapshot, now):
        if existing_snapshot is not None:
            raise BetAlreadyPlaced(
                f"participant {op.participant} already bet on round {op.round_id}"
            )
        raise BettingClosed(
            f"round {op.round_id} is not accepting bets "
            f"(status={snapshot.status.value}, lock_time={snapshot.lock_time}, now={now})"
        )

    db.add(Bet(
        round_id=op.round_id,
        participant=op.participant,
        direction=op.direction,
        amount=op.amount,
        claimed=False
    ))
    pool_column = Round.total_up_pool if op.direction == Direction.UP else Round.total_down_pool
    db.query(Round).filter(Round.id == op.round_id).update(
        {pool_column: pool_column + op.amount},
        synchronize_session=False
    )
    db.flush()  # 重複下注會撞 unique constraint

    return _record_operation(db, OperationKind.PLACE_BET, op.round_id, {
        "participant": op.participant,
        "direction": op.direction.value,
        "amount": op.amount,
    })


@transactional
def apply_claim(db: Session, op: ClaimOperation, fee_bps: int) -> str:
    """
    領取獎金

    流程：
    1. 以 payout_service 計算金額（必須 > 0）
    2. CAS 將 claimed 設為 True
    3. 記錄操作（detail 中包含 amount）
    """
    round_obj = db.query(Round).filter(Round.id == op.round_id).first()
    if round_obj is None:
        raise RoundNotFound(op.round_id)

    bet = with_bet_lock(op.round_id, op.participant, db).first()
    snapshot = RoundSnapshot.from_model(round_obj)
    bet_snapshot = BetSnapshot.from_model(bet) if bet else None

    reason = ineligibility_reason(snapshot, bet_snapshot)
    if reason is not None:
        raise NothingToClaim(f"cannot claim round {op.round_id}: {reason}")

    amount = calculate_payout(snapshot, bet_snapshot, fee_bps)
    if amount <= 0:
        raise NothingToClaim(f"cannot claim round {op.round_id}: payout is zero")

    updated = db.query(Bet).filter(
        Bet.id == bet.id,
        Bet.claimed == False  # noqa: E712
    ).update({Bet.claimed: True}, synchronize_session=False)
    if updated != 1:
        raise NothingToClaim(f"cannot claim round {op.round_id}: already claimed")

    handle = _record_operation(db, OperationKind.CLAIM, op.round_id, {
        "participant": op.participant,
        "amount": amount,
    })
    logger.info(f"Participant {op.participant} claimed {amount} from round {op.round_id}")
    return handle


class SqlLedgerGateway(LedgerGateway):
    """LedgerGateway 的 SQLAlchemy 實作（每個 request / keeper tick 一個 Session）"""

    def __init__(
        self,
        db: Session,
        lock_duration: int = 96,
        round_duration: int = 120,
        min_bet: int = 1,
        fee_bps: int = DEFAULT_FEE_BPS,
        now_fn: Callable[[], int] = unix_now,
        poll_interval_s: float = 0.5,
    ):
        if not 0 < lock_duration < round_duration:
            raise ValueError(
                f"lock_duration must satisfy 0 < lock_duration < round_duration, "
                f"got {lock_duration}/{round_duration}"
            )
        self._db = db
        self._lock_duration = lock_duration
        self._round_duration = round_duration
        self._min_bet = min_bet
        self._fee_bps = fee_bps
        self._now = now_fn
        self._poll_interval = poll_interval_s

    @classmethod
    def from_settings(cls, db: Session, settings: Settings,
                      now_fn: Callable[[], int] = unix_now) -> "SqlLedgerGateway":
        return cls(
            db,
            lock_duration=settings.lock_duration,
            round_duration=settings.round_duration,
            min_bet=settings.min_bet,
            fee_bps=settings.fee_bps,
            now_fn=now_fn,
            poll_interval_s=settings.confirmation_poll_s,
        )

    # ============ 讀取 ============

    def read_current_round(self) -> RoundSnapshot:
        try:
            round_obj = self._db.query(Round).order_by(Round.id.desc()).first()
        except SQLAlchemyError as e:
            raise LedgerReadError(f"Failed to read current round: {e}") from e
        if round_obj is None:
            return RoundSnapshot.empty()
        return RoundSnapshot.from_model(round_obj)

    def read_round(self, round_id: int) -> RoundSnapshot:
        try:
            round_obj = self._db.query(Round).filter(Round.id == round_id).first()
        except SQLAlchemyError as e:
            raise LedgerReadError(f"Failed to read round {round_id}: {e}") from e
        if round_obj is None:
            raise RoundNotFound(round_id)
        return RoundSnapshot.from_model(round_obj)

    def read_bet(self, round_id: int, participant: str) -> Optional[BetSnapshot]:
        try:
            bet = self._db.query(Bet).filter(
                Bet.round_id == round_id,
                Bet.participant == participant
            ).first()
        except SQLAlchemyError as e:
            raise LedgerReadError(f"Failed to read bet for round {round_id}: {e}") from e
        return BetSnapshot.from_model(bet) if bet else None

    def list_rounds(self, limit: int) -> List[RoundSnapshot]:
        try:
            rows = self._db.query(Round).order_by(Round.id.desc()).limit(limit).all()
        except SQLAlchemyError as e:
            raise LedgerReadError(f"Failed to list rounds: {e}") from e
        return [RoundSnapshot.from_model(r) for r in rows]

    def read_operation(self, handle: str) -> Optional[LedgerOperation]:
        try:
            return self._db.query(LedgerOperation).filter(LedgerOperation.handle == handle).first()
        except SQLAlchemyError as e:
            raise LedgerReadError(f"Failed to read operation {handle}: {e}") from e

    # ============ 提交 ============

    def submit(self, operation) -> str:
        """
        提交操作

        資料庫錯誤（例如 SQLite 的 database is locked）轉成 SubmissionRejected，
        already_applied=False：操作沒有生效，交給下一次觸發重試
        """
        try:
            return self._submit(operation)
        except SQLAlchemyError as e:
            raise SubmissionRejected(
                operation.kind.value.lower(), f"ledger database error: {e}"
            ) from e

    def _submit(self, operation) -> str:
        now = self._now()
        self._db.expire_all()  # 每次提交都以帳本最新狀態為準

        if isinstance(operation, ResolveOperation):
            return apply_resolve(self._db, operation, now)

        if isinstance(operation, StartOperation):
            try:
                return apply_start(
                    self._db, operation, now, self._lock_duration, self._round_duration
                )
            except IntegrityError as e:
                raise SubmissionRejected(
                    "start",
                    f"round {operation.previous_round_id + 1} was created concurrently",
                    already_applied=True
                ) from e

        if isinstance(operation, PlaceBetOperation):
            try:
                return apply_place_bet(self._db, operation, now, self._min_bet)
            except IntegrityError as e:
                raise BetAlreadyPlaced(
                    f"participant {operation.participant} already bet on round {operation.round_id}"
                ) from e

        if isinstance(operation, ClaimOperation):
            return apply_claim(self._db, operation, self._fee_bps)

        raise TypeError(f"Unsupported ledger operation: {type(operation).__name__}")

    def await_confirmation(self, handle: str, timeout_s: float) -> bool:
        deadline = time.monotonic() + timeout_s
        while True:
            self._db.expire_all()
            operation = self.read_operation(handle)
            if operation is None:
                raise LedgerReadError(f"Unknown operation {handle}")
            if operation.status == OperationStatus.CONFIRMED:
                return True
            if operation.status == OperationStatus.FAILED:
                return False
            if time.monotonic() >= deadline:
                raise ConfirmationTimeout(handle, timeout_s)
            time.sleep(self._poll_interval)
