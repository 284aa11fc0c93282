"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層與 keeper 統一處理
"""


class TickShotException(Exception):
    """所有業務異常的基類"""
    pass


# ============ 讀取失敗（可在下一次觸發重試） ============

class TransientFetchError(TickShotException):
    """讀取外部資料失敗，沒有任何狀態被改變"""
    pass


class PriceFetchError(TransientFetchError):
    """價格來源無法取得或無法解析"""
    pass


class LedgerReadError(TransientFetchError):
    """帳本讀取失敗"""
    pass


# ============ 帳本提交相關異常 ============

class SubmissionRejected(TickShotException):
    """
    帳本拒絕操作

    already_applied=True 表示目標狀態已經成立（例如另一個 orchestrator
    已經結算同一回合），呼叫者應視為成功。
    """
    def __init__(self, operation: str, reason: str, already_applied: bool = False,
                 existing_handle: str = None):
        self.operation = operation
        self.reason = reason
        self.already_applied = already_applied
        self.existing_handle = existing_handle
        super().__init__(f"{operation} rejected: {reason}")


class ConfirmationTimeout(TickShotException):
    """操作已提交，但在等待時間內沒有觀察到確認（結果未知）"""
    def __init__(self, handle: str, timeout_s: float):
        self.handle = handle
        self.timeout_s = timeout_s
        super().__init__(f"Operation {handle} not confirmed within {timeout_s}s")


class OperationReverted(TickShotException):
    """操作已提交，但確認結果為失敗"""
    def __init__(self, handle: str):
        self.handle = handle
        super().__init__(f"Operation {handle} failed on the ledger")


# ============ 不變條件違反（在邊界直接拒絕） ============

class InvariantViolation(TickShotException):
    """操作違反回合或下注的不變條件"""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class BettingClosed(InvariantViolation):
    """回合不是 OPEN 或已經鎖定"""
    pass


class BetAlreadyPlaced(InvariantViolation):
    """參與者在此回合已經下注過了"""
    pass


class InvalidBetAmount(InvariantViolation):
    """下注金額不合法（小於最小下注金額）"""
    pass


class NothingToClaim(InvariantViolation):
    """沒有可領取的金額（未結算、輸了、已領取或沒有下注）"""
    pass


# ============ Round 相關異常 ============

class RoundNotFound(TickShotException):
    """回合不存在"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


# ============ Orchestrator ============

class OrchestrationError(TickShotException):
    """一次 orchestrator 執行失敗，訊息包含嘗試的動作與原因"""
    def __init__(self, action: str, cause: Exception):
        self.action = action
        self.cause = cause
        super().__init__(f"{action} failed: {cause}")
