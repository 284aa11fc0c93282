"""
計分服務：Parimutuel 的 Payout 計算邏輯

純計算邏輯，全程整數運算（floor division），不使用浮點數。
只有顯示用的 implied multiplier 在最後才轉成 float。
"""
from fractions import Fraction
from typing import Optional

from core.snapshots import RoundSnapshot, BetSnapshot
from models import RoundStatus, RoundResult, Direction

DEFAULT_FEE_BPS = 300
BPS_DENOMINATOR = 10000

_WINNING_DIRECTION = {
    RoundResult.UP: Direction.UP,
    RoundResult.DOWN: Direction.DOWN,
}


def ineligibility_reason(round_snap: RoundSnapshot, bet: Optional[BetSnapshot]) -> Optional[str]:
    """
    回傳這筆下注無法領取的原因；可以領取時回傳 None

    用途：
        帳本的 claim 操作用來以具體原因拒絕領取
    """
    if bet is None:
        return "no bet"
    if round_snap.status != RoundStatus.SETTLED:
        return "round not settled"
    if bet.claimed:
        return "already claimed"
    if round_snap.result == RoundResult.TIE:
        return None
    if _WINNING_DIRECTION.get(round_snap.result) != bet.direction:
        return "bet lost"
    return None


def calculate_payout(round_snap: RoundSnapshot, bet: Optional[BetSnapshot],
                     fee_bps: int = DEFAULT_FEE_BPS) -> int:
    """
    計算一筆下注可領取的金額

    規則：
    ┌──────────────────────────────────┬─────────────────────────────────────────────┐
    │ 情況                             │ Payout                                       │
    ├──────────────────────────────────┼─────────────────────────────────────────────┤
    │ 已領取 / 未結算 / 輸了            │ 0                                            │
    │ TIE                              │ amount（全額退還，不收手續費）                 │
    │ 贏方 pool = 0 或 = total（沒有輸家）│ amount（全額退還，不收手續費）                 │
    │ 一般情況                          │ amount * (total - fee) // winning_pool        │
    └──────────────────────────────────┴─────────────────────────────────────────────┘

    fee = total * fee_bps // 10000

    因為是按比例分配再 floor，所有贏家的 payout 加總不會超過 total - fee；
    floor 產生的零頭留在 pool 裡。

    範例：
        total_up_pool=4000, total_down_pool=6000, result=UP, Up 下注 1000
        fee = 300, distributable = 9700
        payout = 1000 * 9700 // 4000 = 2425
    """
    if ineligibility_reason(round_snap, bet) is not None:
        return 0

    if round_snap.result == RoundResult.TIE:
        return bet.amount

    winning_pool = round_snap.pool_for(bet.direction)
    total_pool = round_snap.total_pool

    if winning_pool == 0 or winning_pool == total_pool:
        return bet.amount

    fee_amount = total_pool * fee_bps // BPS_DENOMINATOR
    distributable = total_pool - fee_amount
    return bet.amount * distributable // winning_pool


def implied_multiplier(round_snap: RoundSnapshot, direction: Direction,
                       fee_bps: int = DEFAULT_FEE_BPS) -> Optional[float]:
    """
    顯示用的預估倍數：total * (1 - fee) / pool(direction)

    注意：
        - 只供顯示，實際領取金額以 calculate_payout 為準
        - pool 為 0 時無法計算，回傳 None
    """
    pool = round_snap.pool_for(direction)
    if pool == 0:
        return None
    ratio = Fraction(round_snap.total_pool * (BPS_DENOMINATOR - fee_bps), BPS_DENOMINATOR * pool)
    return float(ratio)
