"""Shared fixtures: in-memory ledger, controllable clock, scripted oracle."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, Settings
from core.exceptions import PriceFetchError
from core.fixed_point import FixedPoint
from core.sql_ledger import SqlLedgerGateway

T0 = 1_700_000_000


class FakeClock:
    """Callable clock returning Unix seconds; tests move it explicitly."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


class FakeOracle:
    """Returns scripted prices in order, repeating the last one."""

    def __init__(self, *prices: str):
        self._prices = [FixedPoint.from_decimal(p) for p in (prices or ("600.00",))]
        self.calls = 0
        self.fail_with = None

    def get_price(self) -> FixedPoint:
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        index = min(self.calls - 1, len(self._prices) - 1)
        return self._prices[index]

    def fail(self, message: str = "feed unavailable") -> None:
        self.fail_with = PriceFetchError(message)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def oracle():
    return FakeOracle("600.00")


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        lock_duration=96,
        round_duration=120,
        fee_bps=300,
        min_bet=1,
        confirmation_timeout_s=1.0,
        confirmation_poll_s=0.0,
        history_size=10,
        keeper_interval_s=0.0,
    )


@pytest.fixture
def ledger(db, settings, clock):
    return SqlLedgerGateway.from_settings(db, settings, now_fn=clock)
