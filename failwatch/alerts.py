from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .errors import NotifyError
from .metrics import ALERTS_TOTAL
from .notifier import Notifier
from .tracker import ThresholdCrossing

logger = logging.getLogger("failwatch.alerts")


class AlertDispatcher:
    """Delivers threshold alerts off the request path.

    Request handlers only enqueue; a single worker task calls the notifier with
    a timeout. A failed or timed out delivery is logged and never retried.
    """

    def __init__(self, notifier: Notifier, timeout_seconds: float = 10.0, queue_size: int = 1000) -> None:
        self.notifier = notifier
        self._timeout = timeout_seconds
        self._queue_size = queue_size
        self._queue: Optional[asyncio.Queue[ThresholdCrossing]] = None
        self._worker: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._worker = asyncio.create_task(self._run(), name="failwatch-alert-dispatcher")

    async def stop(self) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout=self._timeout)
        except asyncio.TimeoutError:
            pending = self._queue.qsize() if self._queue else 0
            logger.warning(
                "Alert queue not drained before shutdown",
                extra={"event": "alert_queue_abandoned", "count": pending},
            )
        self._worker.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None
        self._queue = None

    def submit(self, crossing: ThresholdCrossing) -> bool:
        if self._queue is None:
            raise RuntimeError("AlertDispatcher.start() must be awaited before submitting alerts")
        try:
            self._queue.put_nowait(crossing)
        except asyncio.QueueFull:
            ALERTS_TOTAL.labels(outcome="dropped").inc()
            logger.warning(
                "Alert queue full, alert dropped",
                extra={"event": "alert_dropped", "origin": crossing.origin, "count": crossing.count_at_crossing},
            )
            return False
        return True

    async def drain(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    async def deliver(self, crossing: ThresholdCrossing) -> bool:
        channel = getattr(self.notifier, "channel", None)
        try:
            await asyncio.wait_for(self.notifier.notify(crossing.origin), timeout=self._timeout)
        except asyncio.TimeoutError:
            ALERTS_TOTAL.labels(outcome="timeout").inc()
            logger.warning(
                "Alert delivery timed out",
                extra={"event": "alert_timeout", "origin": crossing.origin, "channel": channel},
            )
            return False
        except NotifyError as exc:
            ALERTS_TOTAL.labels(outcome="failed").inc()
            logger.error(
                "Alert delivery failed",
                extra={"event": "alert_failed", "origin": crossing.origin, "channel": channel, "reason": str(exc)},
            )
            return False

        ALERTS_TOTAL.labels(outcome="delivered").inc()
        logger.info(
            "Alert delivered",
            extra={
                "event": "alert_delivered",
                "origin": crossing.origin,
                "channel": channel,
                "count": crossing.count_at_crossing,
            },
        )
        return True

    async def _run(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            crossing = await queue.get()
            try:
                await self.deliver(crossing)
            except Exception:
                ALERTS_TOTAL.labels(outcome="failed").inc()
                logger.exception(
                    "Unexpected alert delivery error",
                    extra={"event": "alert_failed", "origin": crossing.origin},
                )
            finally:
                queue.task_done()
