from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Callable, Optional

from .alerts import AlertDispatcher
from .errors import StoreError
from .metrics import REJECTIONS_TOTAL, STORE_ERRORS_TOTAL, TRACKED_ORIGINS
from .security import FailureReason, ValidationOutcome, classify_credential
from .store import FailureEvent, FailureStore
from .tracker import ThresholdCrossing, WindowTracker

logger = logging.getLogger("failwatch.guard")


class GuardService:
    """Validates credentials, records rejections and raises threshold alerts.

    For every rejected request the failure is persisted first, then counted in
    the origin's window. The store write happens outside the tracker lock. A
    threshold crossing clears the origin's window immediately and hands the
    alert to the dispatcher; the window stays cleared whatever the delivery
    outcome.
    """

    def __init__(
        self,
        store: FailureStore,
        tracker: WindowTracker,
        dispatcher: AlertDispatcher,
        expected_token: str,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.dispatcher = dispatcher
        self._expected_token = expected_token
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._sweeper: Optional[asyncio.Task[None]] = None

    async def start(self) -> None:
        await self.dispatcher.start()
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_periodically(), name="failwatch-tracker-sweep")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None
        await self.dispatcher.stop()

    async def evaluate(self, origin: str, credential: Optional[str]) -> ValidationOutcome:
        outcome = classify_credential(credential, self._expected_token)
        if outcome.reason is None:
            return outcome

        REJECTIONS_TOTAL.labels(reason=outcome.reason.value).inc()
        await self.on_failure(origin, outcome.reason)
        return outcome

    async def on_failure(
        self,
        origin: str,
        reason: FailureReason,
        now: Optional[datetime] = None,
    ) -> Optional[ThresholdCrossing]:
        occurred_at = now or datetime.now(timezone.utc)
        event = FailureEvent(origin=origin, occurred_at=occurred_at, reason=reason)

        try:
            await asyncio.to_thread(self.store.append, event)
        except StoreError:
            STORE_ERRORS_TOTAL.labels(operation="append").inc()
            logger.exception(
                "Failed request could not be persisted",
                extra={"event": "store_append_failed", "origin": origin, "reason": reason.value},
            )

        crossing = self.tracker.record_and_check(origin, occurred_at.timestamp())
        if crossing is None:
            return None

        logger.warning(
            "Failed request threshold reached",
            extra={
                "event": "threshold_crossed",
                "origin": origin,
                "reason": reason.value,
                "count": crossing.count_at_crossing,
            },
        )
        self.dispatcher.submit(crossing)
        return crossing

    async def list_failures(self, origin: Optional[str] = None) -> list[FailureEvent]:
        try:
            return await asyncio.to_thread(self.store.list_all, origin)
        except StoreError:
            STORE_ERRORS_TOTAL.labels(operation="list").inc()
            raise

    def sweep(self) -> int:
        evicted = self.tracker.sweep(self._clock())
        TRACKED_ORIGINS.set(self.tracker.tracked_origins())
        return evicted

    async def _sweep_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                evicted = self.sweep()
            except Exception:
                logger.exception("Tracker sweep failed", extra={"event": "tracker_sweep_failed"})
                continue
            if evicted:
                logger.debug(
                    "Evicted idle origins from tracker",
                    extra={"event": "tracker_sweep", "count": evicted},
                )
