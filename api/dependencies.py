"""
FastAPI dependencies

測試時以 app.dependency_overrides 替換 clock / oracle / db
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from database import Settings, get_db, get_settings
from core.clock import unix_now
from core.sql_ledger import SqlLedgerGateway
from services.price_oracle import PriceOracleClient


def get_clock():
    return unix_now


def get_oracle(settings: Settings = Depends(get_settings)) -> PriceOracleClient:
    # 每個 request 各自一個 client（各自的 requests.Session），不跨 thread 共用
    return PriceOracleClient.from_settings(settings)


def get_ledger(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock=Depends(get_clock),
) -> SqlLedgerGateway:
    return SqlLedgerGateway.from_settings(db, settings, now_fn=clock)
