"""Tests for the SQLAlchemy reference ledger and its compare-and-swap rules."""
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from core import sql_ledger
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
from core.fixed_point import FixedPoint
from core.ledger import ResolveOperation, StartOperation, PlaceBetOperation, ClaimOperation
from core.sql_ledger import SqlLedgerGateway
from models import (
    Round, Bet, LedgerOperation, RoundStatus, RoundResult, Direction,
    OperationKind, OperationStatus
)

PRICE_600 = FixedPoint.from_decimal("600.00")
PRICE_610 = FixedPoint.from_decimal("610.00")


def start_round(ledger, previous_round_id=0, price=PRICE_600):
    handle = ledger.submit(StartOperation(price=price, previous_round_id=previous_round_id))
    assert ledger.await_confirmation(handle, timeout_s=1.0) is True
    return handle


def bet(ledger, participant, direction, amount, round_id=1):
    return ledger.submit(PlaceBetOperation(
        round_id=round_id, participant=participant, direction=direction, amount=amount
    ))


class TestReads:
    def test_empty_ledger_has_no_round(self, ledger):
        current = ledger.read_current_round()
        assert current.round_id == 0
        assert current.status == RoundStatus.NONE

    def test_unknown_round(self, ledger):
        with pytest.raises(RoundNotFound):
            ledger.read_round(42)

    def test_missing_bet_is_none(self, ledger):
        start_round(ledger)
        assert ledger.read_bet(1, "nobody") is None

    def test_list_rounds_newest_first(self, ledger, clock):
        start_round(ledger)
        for previous in (1, 2):
            clock.advance(120)
            ledger.submit(ResolveOperation(round_id=previous, price=PRICE_610))
            start_round(ledger, previous_round_id=previous)

        assert [r.round_id for r in ledger.list_rounds(2)] == [3, 2]


class TestStart:
    def test_first_start_creates_round_one(self, ledger, clock):
        start_round(ledger)

        current = ledger.read_current_round()
        assert current.round_id == 1
        assert current.status == RoundStatus.OPEN
        assert current.result == RoundResult.PENDING
        assert current.start_price == PRICE_600
        assert current.start_time == clock.now
        assert current.lock_time == clock.now + 96
        assert current.end_time == clock.now + 120
        assert current.start_time < current.lock_time < current.end_time
        assert current.total_up_pool == 0 and current.total_down_pool == 0

    def test_duplicate_start_is_already_applied(self, ledger):
        handle = start_round(ledger)

        with pytest.raises(SubmissionRejected) as exc_info:
            ledger.submit(StartOperation(price=PRICE_610, previous_round_id=0))

        assert exc_info.value.already_applied is True
        assert exc_info.value.existing_handle == handle
        assert ledger.read_current_round().round_id == 1

    def test_start_while_round_active_is_rejected(self, ledger):
        start_round(ledger)

        with pytest.raises(SubmissionRejected) as exc_info:
            ledger.submit(StartOperation(price=PRICE_610, previous_round_id=1))

        assert exc_info.value.already_applied is False
        assert "not settled" in exc_info.value.reason

    def test_start_from_unknown_round_is_rejected(self, ledger):
        with pytest.raises(SubmissionRejected) as exc_info:
            ledger.submit(StartOperation(price=PRICE_600, previous_round_id=7))
        assert exc_info.value.already_applied is False

    def test_invalid_durations_rejected(self, db):
        with pytest.raises(ValueError):
            SqlLedgerGateway(db, lock_duration=120, round_duration=120)

    def test_rows_are_timestamped(self, ledger, db):
        start_round(ledger)
        assert db.query(Round).one().created_at is not None
        assert db.query(LedgerOperation).one().created_at is not None

    def test_concurrent_insert_of_same_round_is_already_applied(
        self, session_factory, settings, clock, monkeypatch
    ):
        winner_db, loser_db = session_factory(), session_factory()
        try:
            start_round(SqlLedgerGateway.from_settings(winner_db, settings, now_fn=clock))

            # loser read the latest round before the winner committed
            monkeypatch.setattr(
                sql_ledger, "with_latest_round_lock",
                lambda db: db.query(Round).filter(Round.id < 0)
            )
            loser = SqlLedgerGateway.from_settings(loser_db, settings, now_fn=clock)
            with pytest.raises(SubmissionRejected) as exc_info:
                loser.submit(StartOperation(price=PRICE_610, previous_round_id=0))

            assert exc_info.value.already_applied is True
            assert "round 1 was created concurrently" in exc_info.value.reason

            monkeypatch.undo()
            current = loser.read_current_round()
            assert current.round_id == 1
            assert current.start_price == PRICE_600
        finally:
            winner_db.close()
            loser_db.close()


class TestResolve:
    def test_resolve_before_end_is_rejected(self, ledger, clock):
        start_round(ledger)
        clock.advance(119)

        with pytest.raises(SubmissionRejected) as exc_info:
            ledger.submit(ResolveOperation(round_id=1, price=PRICE_610))

        assert exc_info.value.already_applied is False
        assert ledger.read_round(1).status == RoundStatus.OPEN

    def test_resolve_settles_round(self, ledger, clock):
        start_round(ledger)
        clock.advance(120)

        handle = ledger.submit(ResolveOperation(round_id=1, price=PRICE_610))

        assert ledger.await_confirmation(handle, timeout_s=1.0) is True
        settled = ledger.read_round(1)
        assert settled.status == RoundStatus.SETTLED
        assert settled.result == RoundResult.UP
        assert settled.end_price == PRICE_610

    def test_second_resolve_is_already_applied(self, ledger, clock):
        start_round(ledger)
        clock.advance(120)
        handle = ledger.submit(ResolveOperation(round_id=1, price=PRICE_610))

        with pytest.raises(SubmissionRejected) as exc_info:
            ledger.submit(ResolveOperation(round_id=1, price=PRICE_600))

        assert exc_info.value.already_applied is True
        assert exc_info.value.existing_handle == handle
        assert ledger.read_round(1).end_price == PRICE_610

    def test_resolve_unknown_round(self, ledger):
        with pytest.raises(SubmissionRejected):
            ledger.submit(ResolveOperation(round_id=3, price=PRICE_600))


class TestPlaceBet:
    def test_bets_increment_pools(self, ledger):
        start_round(ledger)
        bet(ledger, "alice", Direction.UP, 4000)
        bet(ledger, "bob", Direction.DOWN, 6000)

        current = ledger.read_current_round()
        assert current.total_up_pool == 4000
        assert current.total_down_pool == 6000
        assert ledger.read_bet(1, "alice").direction == Direction.UP

    def test_second_bet_by_same_participant_rejected(self, ledger):
        start_round(ledger)
        bet(ledger, "alice", Direction.UP, 100)

        with pytest.raises(BetAlreadyPlaced):
            bet(ledger, "alice", Direction.DOWN, 100)

        assert ledger.read_current_round().total_down_pool == 0

    def test_bet_after_lock_rejected(self, ledger, clock):
        start_round(ledger)
        clock.advance(96)

        with pytest.raises(BettingClosed):
            bet(ledger, "alice", Direction.UP, 100)

    def test_bet_below_minimum_rejected(self, db, clock):
        ledger = SqlLedgerGateway(db, min_bet=10, now_fn=clock, poll_interval_s=0)
        start_round(ledger)

        with pytest.raises(InvalidBetAmount):
            bet(ledger, "alice", Direction.UP, 9)

    def test_bet_on_unknown_round(self, ledger):
        with pytest.raises(RoundNotFound):
            bet(ledger, "alice", Direction.UP, 100, round_id=9)


class TestClaim:
    @pytest.fixture
    def settled_round(self, ledger, clock):
        start_round(ledger)
        bet(ledger, "alice", Direction.UP, 1000)
        bet(ledger, "carol", Direction.UP, 3000)
        bet(ledger, "bob", Direction.DOWN, 6000)
        clock.advance(120)
        ledger.submit(ResolveOperation(round_id=1, price=PRICE_610))
        return ledger

    def test_winner_claims_payout_once(self, settled_round, db):
        handle = settled_round.submit(ClaimOperation(round_id=1, participant="alice"))

        operation = db.query(LedgerOperation).filter(LedgerOperation.handle == handle).one()
        assert operation.kind == OperationKind.CLAIM
        assert operation.status == OperationStatus.CONFIRMED
        assert operation.detail["amount"] == 2425
        assert settled_round.read_bet(1, "alice").claimed is True

        with pytest.raises(NothingToClaim, match="already claimed"):
            settled_round.submit(ClaimOperation(round_id=1, participant="alice"))

    def test_loser_cannot_claim(self, settled_round):
        with pytest.raises(NothingToClaim, match="bet lost"):
            settled_round.submit(ClaimOperation(round_id=1, participant="bob"))

    def test_claim_before_settlement(self, ledger):
        start_round(ledger)
        bet(ledger, "alice", Direction.UP, 1000)

        with pytest.raises(NothingToClaim, match="not settled"):
            ledger.submit(ClaimOperation(round_id=1, participant="alice"))

    def test_claim_without_bet(self, settled_round):
        with pytest.raises(NothingToClaim, match="no bet"):
            settled_round.submit(ClaimOperation(round_id=1, participant="dave"))

    def test_claim_leaves_other_bets_untouched(self, settled_round, db):
        settled_round.submit(ClaimOperation(round_id=1, participant="alice"))
        carol = db.query(Bet).filter(Bet.participant == "carol").one()
        assert carol.claimed is False


class TestConfirmation:
    def _insert_operation(self, db, status):
        operation = LedgerOperation(kind=OperationKind.START, round_id=1, status=status, detail={})
        db.add(operation)
        db.commit()
        return operation.handle

    def test_pending_operation_times_out(self, ledger, db):
        handle = self._insert_operation(db, OperationStatus.PENDING)
        with pytest.raises(ConfirmationTimeout):
            ledger.await_confirmation(handle, timeout_s=0.0)

    def test_failed_operation(self, ledger, db):
        handle = self._insert_operation(db, OperationStatus.FAILED)
        assert ledger.await_confirmation(handle, timeout_s=1.0) is False

    def test_unknown_handle(self, ledger):
        with pytest.raises(LedgerReadError):
            ledger.await_confirmation("does-not-exist", timeout_s=0.0)

    def test_operation_read_failure_is_a_ledger_read_error(self, ledger, db, monkeypatch):
        monkeypatch.setattr(db, "query", Mock(
            side_effect=OperationalError("SELECT", {}, Exception("disk I/O error"))))
        with pytest.raises(LedgerReadError, match="disk I/O error"):
            ledger.await_confirmation("any-handle", timeout_s=1.0)


class TestDatabaseErrors:
    def test_database_error_on_submit_is_a_rejection(self, ledger, monkeypatch):
        def locked(*args, **kwargs):
            raise OperationalError("INSERT INTO rounds", {}, Exception("database is locked"))

        monkeypatch.setattr(sql_ledger, "apply_start", locked)

        with pytest.raises(SubmissionRejected) as exc_info:
            ledger.submit(StartOperation(price=PRICE_600, previous_round_id=0))

        assert exc_info.value.operation == "start"
        assert exc_info.value.already_applied is False
        assert "database is locked" in exc_info.value.reason
        assert isinstance(exc_info.value.__cause__, OperationalError)
