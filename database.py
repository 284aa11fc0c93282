from sqlalchemy import create_engine
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from pydantic import model_validator
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./tickshot.db"

    # 回合時間設定（秒）
    lock_duration: int = 96
    round_duration: int = 120

    # 手續費（basis points，300 = 3%）與最小下注金額
    fee_bps: int = 300
    min_bet: int = 1

    # 價格來源
    price_feed_url: str = "https://api.binance.com/api/v3/ticker/price"
    price_symbol: str = "BNBUSDT"
    oracle_timeout_s: float = 5.0

    # 交易確認
    confirmation_timeout_s: float = 30.0
    confirmation_poll_s: float = 0.5

    history_size: int = 10
    keeper_interval_s: float = 0.0
    log_level: str = "INFO"

    class Config:
        env_file = ".env"

    @model_validator(mode="after")
    def check_durations(self):
        if not 0 < self.lock_duration < self.round_duration:
            raise ValueError(
                f"lock_duration must satisfy 0 < lock_duration < round_duration, "
                f"got lock_duration={self.lock_duration}, round_duration={self.round_duration}"
            )
        if not 0 <= self.fee_bps < 10000:
            raise ValueError(f"fee_bps must be in [0, 10000), got {self.fee_bps}")
        return self


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()

# SQLite 需要特殊設定：connect_args={"check_same_thread": False}
# 這允許多執行緒存取同一個 SQLite 連線（FastAPI 與 keeper thread 都會用到）
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
    pool_pre_ping=True
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency：提供 Database Session

    使用 yield 確保 session 在請求結束後會被關閉
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator：確保帳本操作的原子性

    使用方式：
        @transactional
        def apply_something(db: Session, ...):
            # 所有 DB 操作都在一個 transaction 內
            db.add(...)
            # 不需要手動 commit，decorator 會處理

    如果函式內發生異常：
        - 自動 rollback
        - 異常會被重新拋出（讓上層處理）

    注意：
        - 第一個參數必須是 db: Session
        - 不要在函式內手動 commit（decorator 會處理）
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # 找出 db session（可能在 args 或 kwargs）
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except Exception as e:
            logger.debug(f"Transaction rolled back in {func.__name__}: {e}")
            db.rollback()
            raise

    return wrapper
