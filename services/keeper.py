"""
Round keeper (threaded).

Invokes the lifecycle orchestrator at a fixed interval so rounds are
resolved and started without an external cron hitting /api/manage-round.
Each tick uses its own database session; nothing is carried between ticks.
"""
import logging
import threading
import time
from typing import Callable, Optional

from core.clock import unix_now
from core.exceptions import TickShotException
from core.orchestrator import LifecycleOrchestrator
from core.sql_ledger import SqlLedgerGateway

logger = logging.getLogger(__name__)


class RoundKeeper:
    """
    Periodically runs the orchestrator in a dedicated daemon thread.

    Failures are logged and left for the next tick; the orchestrator is
    safe to re-run because it re-reads the ledger every time.
    """

    def __init__(
        self,
        session_factory: Callable,
        oracle,
        settings,
        now_fn: Callable[[], int] = unix_now,
    ):
        self._session_factory = session_factory
        self._oracle = oracle
        self._settings = settings
        self._now = now_fn
        self._interval = settings.keeper_interval_s

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Stats
        self._tick_count = 0
        self._error_count = 0
        self._last_error: Optional[str] = None

    def start(self) -> None:
        """Start the keeper thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("RoundKeeper already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="Round-Keeper",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"RoundKeeper started, interval={self._interval}s")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the keeper thread."""
        self._stop_event.set()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("RoundKeeper did not stop in time")

        logger.info(f"RoundKeeper stopped. Ticks={self._tick_count}, Errors={self._error_count}")

    def _run_loop(self) -> None:
        next_tick = time.monotonic()

        while not self._stop_event.is_set():
            now = time.monotonic()
            if now < next_tick:
                if self._stop_event.wait(next_tick - now):
                    break

            next_tick = time.monotonic() + self._interval
            self.tick()

    def tick(self):
        """Single orchestrator run. Returns the outcome, or None on failure."""
        self._tick_count += 1
        db = self._session_factory()
        try:
            ledger = SqlLedgerGateway.from_settings(db, self._settings, now_fn=self._now)
            orchestrator = LifecycleOrchestrator(
                ledger,
                self._oracle,
                now_fn=self._now,
                confirmation_timeout_s=self._settings.confirmation_timeout_s,
            )
            outcome = orchestrator.run()
            if outcome.action != "none":
                logger.info(f"RoundKeeper: {outcome}")
            self._last_error = None
            return outcome

        except TickShotException as e:
            self._error_count += 1
            self._last_error = str(e)
            logger.warning(f"RoundKeeper: {e}")
            return None

        except Exception as e:
            self._error_count += 1
            self._last_error = str(e)
            logger.error(f"RoundKeeper: unexpected error: {e}", exc_info=True)
            return None

        finally:
            db.close()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def stats(self) -> dict:
        return {
            "ticks": self._tick_count,
            "errors": self._error_count,
            "last_error": self._last_error,
        }
