from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any

from clockapp.errors import SyncRunError
from clockapp.services.synchronizer import SyncRunResult

logger = logging.getLogger("clockapp.sync_trigger")

REASON_STARTUP = "startup"
REASON_INTERVAL = "interval"
REASON_CAPTURE = "capture"
REASON_MANUAL = "manual"
REASON_RETRY = "retry"


class SyncTrigger:
    """Schedules synchronizer runs from captures, a fixed interval and operator requests.

    At most one run is in flight. Requests that arrive while a run is executing
    collapse into a single follow-up run. After a failed run the next attempt
    is scheduled after ``retry_delay_seconds`` instead of the full interval.

    ``request`` and ``run_now`` must be called from the event loop that started
    the trigger.
    """

    def __init__(
        self,
        run_sync: Callable[[], SyncRunResult],
        *,
        interval_seconds: float,
        retry_delay_seconds: float,
        cleanup: Callable[[], int] | None = None,
    ) -> None:
        self._run_sync = run_sync
        self._interval_seconds = max(0.01, float(interval_seconds))
        self._retry_delay_seconds = max(0.01, float(retry_delay_seconds))
        self._cleanup = cleanup
        self._wakeup: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None
        self._pending_reasons: list[str] = []
        self._waiters: list[asyncio.Future[SyncRunResult]] = []
        self._next_delay_seconds = self._interval_seconds
        self._running = False
        self._run_count = 0
        self._failure_count = 0
        self._last_result: SyncRunResult | None = None
        self._last_error: str | None = None
        self._last_finished_at_utc: datetime | None = None

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def run_count(self) -> int:
        return self._run_count

    async def start(self, *, run_immediately: bool = True) -> None:
        if self.is_started:
            return
        self._wakeup = asyncio.Event()
        self._next_delay_seconds = self._interval_seconds
        if run_immediately:
            self._pending_reasons.append(REASON_STARTUP)
            self._wakeup.set()
        self._task = asyncio.create_task(self._worker_loop())
        logger.info(
            "sync_trigger_started",
            extra={
                "interval_seconds": self._interval_seconds,
                "retry_delay_seconds": self._retry_delay_seconds,
            },
        )

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        for waiter in self._waiters:
            if not waiter.done():
                waiter.cancel()
        self._waiters = []
        self._pending_reasons = []
        self._wakeup = None

    def request(self, reason: str) -> bool:
        if self._wakeup is None or not self.is_started:
            return False
        self._pending_reasons.append(reason)
        self._wakeup.set()
        return True

    async def run_now(self, reason: str = REASON_MANUAL) -> SyncRunResult:
        """Wait for the result of the next run that starts after this call."""
        if not self.is_started:
            raise SyncRunError("Sync worker is not running.")
        waiter: asyncio.Future[SyncRunResult] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self.request(reason)
        return await waiter

    def status(self) -> dict[str, Any]:
        return {
            "started": self.is_started,
            "running": self._running,
            "run_count": self._run_count,
            "failure_count": self._failure_count,
            "queued_requests": len(self._pending_reasons),
            "next_delay_seconds": self._next_delay_seconds,
            "last_finished_at_utc": (
                self._last_finished_at_utc.isoformat() if self._last_finished_at_utc else None
            ),
            "last_error": self._last_error,
            "last_result": (
                {
                    "synced_count": self._last_result.synced_count,
                    "failed_count": self._last_result.failed_count,
                }
                if self._last_result is not None
                else None
            ),
        }

    async def _worker_loop(self) -> None:
        wakeup = self._wakeup
        if wakeup is None:
            return
        while True:
            try:
                await asyncio.wait_for(wakeup.wait(), timeout=self._next_delay_seconds)
            except asyncio.TimeoutError:
                self._pending_reasons.append(
                    REASON_RETRY if self._next_delay_seconds == self._retry_delay_seconds else REASON_INTERVAL
                )
            wakeup.clear()

            reasons = sorted(set(self._pending_reasons)) or [REASON_INTERVAL]
            self._pending_reasons = []
            waiters = self._waiters
            self._waiters = []
            await self._execute(reasons, waiters)

    async def _execute(self, reasons: list[str], waiters: list[asyncio.Future[SyncRunResult]]) -> None:
        self._running = True
        self._run_count += 1
        try:
            result = await asyncio.to_thread(self._run_sync)
        except asyncio.CancelledError:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            raise
        except Exception as exc:
            self._failure_count += 1
            self._last_error = f"{exc.__class__.__name__}: {exc}"
            self._next_delay_seconds = self._retry_delay_seconds
            logger.exception(
                "sync_run_failed",
                extra={"reasons": reasons, "retry_in_seconds": self._retry_delay_seconds},
            )
            failure = exc if isinstance(exc, SyncRunError) else SyncRunError(str(exc) or exc.__class__.__name__)
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(failure)
            return
        finally:
            self._running = False
            self._last_finished_at_utc = datetime.now(timezone.utc)

        self._last_result = result
        self._last_error = None
        self._next_delay_seconds = self._interval_seconds
        logger.info(
            "sync_run_finished",
            extra={
                "reasons": reasons,
                "synced_count": result.synced_count,
                "failed_count": result.failed_count,
            },
        )

        if self._cleanup is not None:
            try:
                purged = await asyncio.to_thread(self._cleanup)
            except Exception:
                logger.exception("sync_cleanup_failed")
            else:
                if purged:
                    logger.info("sync_cleanup_purged", extra={"purged_count": purged})

        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(result)
