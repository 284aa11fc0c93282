"""
回合狀態機：集中定義所有「依時間推導」的回合判斷

這是 can_bet / can_resolve / is_locked 唯一的定義處，
orchestrator、帳本、領獎檢查與 projection 全部共用，避免各自定義「鎖定」。

狀態：
    NONE -> OPEN -> (LOCKED) -> SETTLED

    - LOCKED 是推導出來的狀態：OPEN 且 now >= lock_time
    - SETTLED 是每個回合的終止狀態
    - 第一個 START 之前，回合不存在（round_id = 0）

純函式，不做任何 I/O。
"""
import enum
from dataclasses import dataclass
from typing import Optional

from core.fixed_point import FixedPoint
from core.snapshots import RoundSnapshot, BetSnapshot
from models import RoundStatus, RoundResult

ACTIVE_STATUSES = (RoundStatus.OPEN, RoundStatus.LOCKED)


class RoundAction(str, enum.Enum):
    NONE = "NONE"
    START = "START"
    RESOLVE_AND_START = "RESOLVE_AND_START"


@dataclass(frozen=True)
class RoundFlags:
    is_locked: bool
    is_settleable: bool
    time_left: int


def derive(round_snap: RoundSnapshot, now: int) -> RoundFlags:
    return RoundFlags(
        is_locked=now >= round_snap.lock_time,
        is_settleable=round_snap.status in ACTIVE_STATUSES and now >= round_snap.end_time,
        time_left=max(0, round_snap.end_time - now),
    )


def effective_status(round_snap: RoundSnapshot, now: int) -> RoundStatus:
    """帳本只存 OPEN；鎖定時間之後對外顯示為 LOCKED"""
    if round_snap.status == RoundStatus.OPEN and now >= round_snap.lock_time:
        return RoundStatus.LOCKED
    return round_snap.status


def can_bet(round_snap: RoundSnapshot, bet: Optional[BetSnapshot], now: int) -> bool:
    """
    檢查是否可以下注

    規則：
    - 回合狀態必須是 OPEN（儲存為 LOCKED 也不行）
    - now < lock_time
    - 參與者在此回合尚未下注（不能加碼或對沖）
    """
    return (
        round_snap.status == RoundStatus.OPEN
        and now < round_snap.lock_time
        and bet is None
    )


def can_resolve(round_snap: RoundSnapshot, now: int) -> bool:
    return (
        round_snap.round_id > 0
        and round_snap.status in ACTIVE_STATUSES
        and now >= round_snap.end_time
    )


def can_start(round_snap: RoundSnapshot) -> bool:
    return round_snap.round_id == 0 or round_snap.status == RoundStatus.SETTLED


def needs_action(round_snap: RoundSnapshot, now: int) -> RoundAction:
    """
    決定這次需要執行的動作

    結算優先於開新回合：舊回合必須先關閉，新回合才能開始。

    範例：
        round_id=0                         -> START
        OPEN，now >= end_time              -> RESOLVE_AND_START
        SETTLED                            -> START
        OPEN，now < end_time               -> NONE
    """
    if can_resolve(round_snap, now):
        return RoundAction.RESOLVE_AND_START
    if can_start(round_snap):
        return RoundAction.START
    return RoundAction.NONE


def determine_result(start_price: FixedPoint, end_price: FixedPoint) -> RoundResult:
    if end_price > start_price:
        return RoundResult.UP
    if end_price < start_price:
        return RoundResult.DOWN
    return RoundResult.TIE
