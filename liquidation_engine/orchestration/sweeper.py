"""
Expiry Sweeper - periodic lifecycle jobs.

Jobs:
- expire_requests: fail pre-execution requests past their expiry
- expire_quotes: evict expired snapshots from the quote cache
- expire_review_holds: fail compliance reviews whose window elapsed
- retry_awaiting_liquidity: re-run matching for requests whose poll is due

Every job is idempotent; running one twice in a row changes nothing the
second time.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from liquidation_engine.domain import Clock, utc_now
from liquidation_engine.logging import get_logger
from liquidation_engine.orchestration.orchestrator import LiquidationOrchestrator
from liquidation_engine.pricing import QuoteService
from liquidation_engine.runtime.event_bus import Event, EventBus, EventType

logger = get_logger(__name__)

JobFn = Callable[[datetime], Awaitable[int]]


class SweeperConfig(BaseModel):
    """Sweep cadence."""

    interval_seconds: int = Field(default=30, ge=1)


@dataclass
class JobStatus:
    """Status of a sweep job."""

    name: str
    interval_seconds: int
    last_run: datetime | None = None
    next_run: datetime | None = None
    running: bool = False
    run_count: int = 0
    last_affected: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "running": self.running,
            "run_count": self.run_count,
            "last_affected": self.last_affected,
            "last_error": self.last_error,
        }


class ExpirySweeper:
    """
    Runs the lifecycle jobs on a fixed interval.

    `run_once()` runs every job immediately and is what tests drive; the
    background loop calls it every `interval_seconds`.
    """

    def __init__(
        self,
        orchestrator: LiquidationOrchestrator,
        quotes: QuoteService,
        config: SweeperConfig | None = None,
        clock: Clock = utc_now,
        event_bus: EventBus | None = None,
    ):
        self._orchestrator = orchestrator
        self._quotes = quotes
        self._config = config or SweeperConfig()
        self._clock = clock
        self._event_bus = event_bus

        self._task: asyncio.Task | None = None
        self._running = False

        interval = self._config.interval_seconds
        self._job_fns: dict[str, JobFn] = {
            "expire_requests": self._job_expire_requests,
            "expire_quotes": self._job_expire_quotes,
            "expire_review_holds": self._job_expire_review_holds,
            "retry_awaiting_liquidity": self._job_retry_awaiting_liquidity,
        }
        self.jobs: dict[str, JobStatus] = {
            name: JobStatus(name=name, interval_seconds=interval) for name in self._job_fns
        }

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Expiry sweeper started (every %ds)", self._config.interval_seconds)

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Expiry sweeper stopped")

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.interval_seconds)
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Sweeper loop error: %s", e)

    async def run_once(self) -> dict[str, int]:
        """Run every job once; returns the number of items each affected."""
        results: dict[str, int] = {}
        for name, job in self.jobs.items():
            if job.running:
                continue
            results[name] = await self._run_job(job)
        await self._publish(results)
        return results

    async def _run_job(self, job: JobStatus) -> int:
        now = self._clock()
        job.running = True
        job.last_run = now
        job.run_count += 1
        affected = 0
        try:
            affected = await self._job_fns[job.name](now)
            job.last_affected = affected
            job.last_error = None
            if affected:
                logger.info("Sweep job %s affected %d item(s)", job.name, affected)
        except Exception as e:
            job.last_error = str(e)[:200]
            logger.error("Sweep job %s failed: %s", job.name, e)
        finally:
            job.running = False
            job.next_run = self._clock() + timedelta(seconds=job.interval_seconds)
        return affected

    async def _job_expire_requests(self, now: datetime) -> int:
        return len(await self._orchestrator.expire_requests(now))

    async def _job_expire_quotes(self, now: datetime) -> int:
        return await self._quotes.sweep_expired(now)

    async def _job_expire_review_holds(self, now: datetime) -> int:
        return len(await self._orchestrator.expire_review_holds(now))

    async def _job_retry_awaiting_liquidity(self, now: datetime) -> int:
        return len(await self._orchestrator.retry_awaiting_liquidity(now))

    async def _publish(self, results: dict[str, int]) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(Event(type=EventType.SWEEP_COMPLETED, data=dict(results)))

    def get_status(self) -> dict[str, Any]:
        """Get sweeper status."""
        return {
            "running": self._running,
            "interval_seconds": self._config.interval_seconds,
            "jobs": {name: job.to_dict() for name, job in self.jobs.items()},
        }
