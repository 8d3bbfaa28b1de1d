"""In-process sweep loop for the API server.

Runs AccessSweep on a fixed interval as an asyncio task next to the HTTP
handlers, so hook, confirmation and sweep reconciliations share one lock
table. scheduler.py runs the same loop as a standalone process.

Shutdown: set the event (or call stop()); the loop stops waiting, the
running sweep stops scheduling subscribers and lets in-flight ones finish.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .domain.entities import SweepResult
from .use_cases.sweep import AccessSweep

logger = logging.getLogger(__name__)


class SweepState:
    """Shared state for health checks."""

    def __init__(self):
        self.started_at: datetime = datetime.now(timezone.utc)
        self.last_sweep_at: Optional[datetime] = None
        self.last_result: Optional[SweepResult] = None
        self.total_sweeps: int = 0
        self.failed_sweeps: int = 0

    def record(self, result: SweepResult) -> None:
        self.total_sweeps += 1
        self.last_sweep_at = datetime.now(timezone.utc)
        self.last_result = result
        if not result.success:
            self.failed_sweeps += 1

    @property
    def healthy(self) -> bool:
        return self.last_result is None or self.last_result.success

    def to_dict(self) -> dict:
        return {
            "status": "healthy" if self.healthy else "degraded",
            "uptime_seconds": round((datetime.now(timezone.utc) - self.started_at).total_seconds()),
            "total_sweeps": self.total_sweeps,
            "failed_sweeps": self.failed_sweeps,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_sweep": self.last_result.to_dict() if self.last_result else None,
        }


async def run_sweep(sweep: AccessSweep, state: SweepState) -> SweepResult:
    """Run one sweep, recording the outcome. Never raises."""
    try:
        result = await sweep.execute()
    except Exception as e:
        logger.error(f"Sweep cycle failed: {type(e).__name__}: {e}", exc_info=True)
        result = SweepResult(started_at=datetime.now(timezone.utc), failed=1, error_details=[str(e)])
    state.record(result)
    return result


async def sweep_loop(
    sweep: AccessSweep,
    interval_minutes: float,
    shutdown_event: asyncio.Event,
    state: SweepState,
    run_on_startup: bool = True,
    on_result: Optional[Callable[[SweepResult], None]] = None,
) -> None:
    """Run sweeps every interval_minutes until shutdown_event is set.

    on_result is called with every finished sweep.
    """
    interval_seconds = interval_minutes * 60

    if run_on_startup and not shutdown_event.is_set():
        logger.info("Running initial sweep on startup")
        result = await run_sweep(sweep, state)
        if on_result is not None:
            on_result(result)

    while not shutdown_event.is_set():
        next_run = datetime.now(timezone.utc) + timedelta(seconds=interval_seconds)
        logger.info(f"Next sweep at {next_run.isoformat()} (in {interval_minutes:g} minutes)")
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass

        result = await run_sweep(sweep, state)
        if on_result is not None:
            on_result(result)

    logger.info("Sweep loop stopped")


class BackgroundSweeper:
    """Owns the sweep loop task.

    Usage:
        sweeper = BackgroundSweeper(container.sweep, interval_minutes=60)
        sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        sweep: AccessSweep,
        interval_minutes: float = 60,
        run_on_startup: bool = True,
    ):
        self.sweep = sweep
        self.interval_minutes = interval_minutes
        self.run_on_startup = run_on_startup
        self.state = SweepState()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(
            sweep_loop(
                self.sweep,
                self.interval_minutes,
                self.sweep.shutdown_event,
                self.state,
                run_on_startup=self.run_on_startup,
            ),
            name="enforcement-sweep",
        )
        logger.info(f"Background sweep started (every {self.interval_minutes:g} minutes)")

    async def stop(self, timeout: float = 60.0) -> None:
        """Signal shutdown and wait for the running sweep to wind down."""
        self.sweep.shutdown_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Sweep did not finish within {timeout}s, cancelling")
            self._task.cancel()
        self._task = None
