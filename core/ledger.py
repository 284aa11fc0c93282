"""
Ledger Gateway 介面

帳本是外部的交易式儲存：操作提交後回傳 handle，
之後再等待確認（成功 / 失敗 / 逾時）。

實作必須明確提供 compare-and-swap 語意：
- resolve 只在回合仍為 OPEN/LOCKED 時成功；已結算則以 already_applied 拒絕
- start 帶著觀察到的 previous_round_id；已經有更新的回合則以 already_applied 拒絕
不依賴 process 內的鎖，因為可能同時有多個 orchestrator 在執行。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from core.fixed_point import FixedPoint
from core.snapshots import RoundSnapshot, BetSnapshot
from models import Direction, OperationKind


@dataclass(frozen=True)
class ResolveOperation:
    round_id: int
    price: FixedPoint
    kind = OperationKind.RESOLVE


@dataclass(frozen=True)
class StartOperation:
    price: FixedPoint
    previous_round_id: int
    kind = OperationKind.START


@dataclass(frozen=True)
class PlaceBetOperation:
    round_id: int
    participant: str
    direction: Direction
    amount: int
    kind = OperationKind.PLACE_BET


@dataclass(frozen=True)
class ClaimOperation:
    round_id: int
    participant: str
    kind = OperationKind.CLAIM


class LedgerGateway(ABC):
    """帳本存取介面（orchestrator 與 API 都只透過這個介面）"""

    @abstractmethod
    def read_current_round(self) -> RoundSnapshot:
        """最新的回合；還沒有回合時回傳 RoundSnapshot.empty()"""

    @abstractmethod
    def read_round(self, round_id: int) -> RoundSnapshot:
        """異常：RoundNotFound"""

    @abstractmethod
    def read_bet(self, round_id: int, participant: str) -> Optional[BetSnapshot]:
        pass

    @abstractmethod
    def list_rounds(self, limit: int) -> List[RoundSnapshot]:
        """最新的 limit 個回合，由新到舊"""

    @abstractmethod
    def submit(self, operation) -> str:
        """
        提交操作並回傳 handle

        異常：
            SubmissionRejected: 帳本拒絕（already_applied 表示目標狀態已成立）
            InvariantViolation: 下注 / 領取違反不變條件
        """

    @abstractmethod
    def await_confirmation(self, handle: str, timeout_s: float) -> bool:
        """
        等待操作確認

        返回：
            True 成功，False 失敗

        異常：
            ConfirmationTimeout: 在 timeout_s 內沒有觀察到結果
        """
