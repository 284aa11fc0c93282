"""
並發控制工具

提供 Database-level 的鎖定機制，防止多個 orchestrator 同時結算或開新回合

主要使用 PostgreSQL 的 SELECT ... FOR UPDATE 來實現悲觀鎖（Pessimistic Locking）；
SQLite 會忽略 FOR UPDATE，由資料庫層級的寫入序列化與 primary key 保證唯一性。
"""
from sqlalchemy.orm import Session, Query

from models import Round, Bet


def with_round_lock(round_id: int, db: Session) -> Query:
    """
    鎖定一個 Round（行級鎖）

    使用場景：
    - 結算回合時（防止重複結算）
    - 下注時更新 pool

    範例：
        round_obj = with_round_lock(round_id, db).first()
        if round_obj is None:
            raise RoundNotFound(round_id)

    注意：
        - nowait=False 表示如果鎖被佔用，會等待
        - 必須在 transaction 內使用（確保有 commit 或 rollback）
    """
    return db.query(Round).filter(
        Round.id == round_id
    ).with_for_update(nowait=False)


def with_latest_round_lock(db: Session) -> Query:
    """
    鎖定最新的 Round

    使用場景：
    - 開新回合前確認前一回合已結算
    """
    return db.query(Round).order_by(
        Round.id.desc()
    ).with_for_update(nowait=False)


def with_bet_lock(round_id: int, participant: str, db: Session) -> Query:
    """
    鎖定一筆 Bet

    使用場景：
    - 領取獎金時（檢查 claimed 並設為 True 必須是原子操作，防止重複領取）
    """
    return db.query(Bet).filter(
        Bet.round_id == round_id,
        Bet.participant == participant
    ).with_for_update(nowait=False)
