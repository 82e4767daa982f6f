"""Timer-driven staleness, daily reset and journal pruning sweeps."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from mission_control.squad.ledger import CostLedger
from mission_control.squad.liveness import LivenessMonitor
from mission_control.storage.common import utc_now
from mission_control.storage.store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepReport:
    """What one sweep tick changed."""

    went_offline: list[str] = field(default_factory=list)
    ledger_reset: bool = False
    pruned_changes: int = 0


class SweepScheduler:
    """Single-flight periodic maintenance.

    Overlapping ticks are skipped, and every step is idempotent, so running
    sweeps from several processes is safe.
    """

    def __init__(
        self,
        *,
        store: DocumentStore,
        liveness: LivenessMonitor,
        ledger: CostLedger,
        interval_seconds: float = 15.0,
        change_retention: timedelta = timedelta(hours=48),
    ) -> None:
        self.store = store
        self.liveness = liveness
        self.ledger = ledger
        self.interval_seconds = interval_seconds
        self.change_retention = change_retention
        self._in_flight = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self, *, now: datetime | None = None) -> SweepReport | None:
        """Run one tick; returns None when another tick is still running."""

        if not self._in_flight.acquire(blocking=False):
            logger.debug("Sweep skipped: previous tick still running")
            return None
        try:
            current = now or utc_now()
            report = SweepReport(
                went_offline=self.liveness.check_staleness(now=current),
                ledger_reset=self.ledger.reset_daily(now=current),
                pruned_changes=self.store.prune_changes(
                    older_than=self.change_retention,
                    now=current,
                ),
            )
        finally:
            self._in_flight.release()
        if report.pruned_changes:
            logger.info("Pruned %d change journal rows", report.pruned_changes)
        return report

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="squad-sweeps")
        self._thread.start()
        logger.info("Sweeps started every %ss", self.interval_seconds)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=15)
        self._thread = None
        logger.info("Sweeps stopped")

    def run_forever(self) -> None:
        """Blocking loop for the CLI; returns after :meth:`stop` is signalled."""

        self._loop()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Sweep tick failed")
            self._stop.wait(timeout=self.interval_seconds)
