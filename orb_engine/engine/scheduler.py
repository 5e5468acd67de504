"""Session scheduler: maps wall-clock minutes to coordinator jobs.

Jobs per trading day (exchange time):
- reset at ``reset_time`` (09:28)
- opening range at ``range_end`` (09:45)
- tick every minute after ``range_end`` until the session close
- health check every ``health_interval_minutes`` after ``range_end``
- close-all at the session close (or the early close)
- daily summary one minute after the close

Once-per-day jobs fire on the first dispatch at or after their time, so a
scheduler started mid-session catches up on reset and range work.
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from loguru import logger

from .coordinator import Coordinator


class SessionScheduler:
    """Dispatch coordinator jobs for the current minute.

    Ticks run as independent tasks: a tick still running when the next minute
    starts makes that next tick a skipped sweep instead of a queued one.

    Example:
        >>> scheduler = SessionScheduler(coordinator)
        >>> tasks = scheduler.dispatch(now)
        >>> await asyncio.gather(*tasks)
    """

    def __init__(
        self,
        coordinator: Coordinator,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        health_interval_minutes: int = 15,
        summary_delay_minutes: int = 1,
    ) -> None:
        self.coordinator = coordinator
        self.calendar = coordinator.calendar
        self.session = coordinator.config.session
        self._clock = clock or coordinator.now
        self._sleep = sleep
        self.health_interval_minutes = health_interval_minutes
        self.summary_delay = timedelta(minutes=summary_delay_minutes)

        self._fired: Set[Tuple[date, str]] = set()
        self._tasks: Set[asyncio.Task] = set()
        self.last_summary: Optional[Dict[str, Any]] = None

    def due_jobs(self, now: datetime) -> List[str]:
        """Names of the jobs due at ``now`` that have not fired yet today."""
        session_date = self.calendar.session_date(now)
        if not self.calendar.is_trading_day(session_date):
            return []

        reset_at = self.calendar.at(session_date, self.session.reset_time)
        _, range_end = self.calendar.range_window(session_date)
        close = self.calendar.session_close(session_date)
        jobs: List[str] = []

        def once(name: str, due: bool) -> None:
            if due and (session_date, name) not in self._fired:
                jobs.append(name)

        once("reset", reset_at <= now < close)
        once("range", range_end <= now < close)

        if range_end < now < close:
            minute = self.calendar.local(now).strftime("%H:%M")
            once(f"tick@{minute}", True)

            elapsed = int((now - range_end).total_seconds() // 60)
            if elapsed % self.health_interval_minutes == 0:
                once(f"health@{minute}", True)

        once("close_all", now >= close)
        once("summary", now >= close + self.summary_delay)
        return jobs

    def dispatch(self, now: Optional[datetime] = None) -> List[asyncio.Task]:
        """Start every job due at ``now`` and return the launched tasks.

        The daily reset runs inline before anything else is launched.
        """
        now = now or self._clock()
        session_date = self.calendar.session_date(now)
        tasks: List[asyncio.Task] = []

        for job in self.due_jobs(now):
            self._fired.add((session_date, job))
            if job == "reset":
                self._prune(session_date)
                self.coordinator.reset_daily(now)
                continue
            tasks.append(self._launch(job, self._job(job, now)))
        return tasks

    def _job(self, job: str, now: datetime) -> Awaitable[Any]:
        if job == "range":
            return self.coordinator.compute_ranges(now=now)
        if job.startswith("tick@"):
            return self.coordinator.run_tick(now=now)
        if job.startswith("health@"):
            return self.coordinator.health_check(now=now)
        if job == "close_all":
            return self.coordinator.close_all()
        if job == "summary":
            return self._summary()
        raise ValueError(f"Unknown job: {job}")

    async def _summary(self) -> Dict[str, Any]:
        self.last_summary = self.coordinator.daily_summary()
        return self.last_summary

    def _launch(self, name: str, job: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(job)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(name, t))
        return task

    def _on_done(self, name: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Scheduled job {name} failed: {exc}")

    def _prune(self, session_date: date) -> None:
        self._fired = {key for key in self._fired if key[0] == session_date}

    async def bootstrap(self, now: Optional[datetime] = None) -> None:
        """Startup: reset, compute ranges if the window has passed, then sync positions."""
        now = now or self._clock()
        session_date = self.calendar.session_date(now)
        if not self.calendar.is_trading_day(session_date):
            logger.info(f"{session_date} is not a trading day; nothing to bootstrap")
            return

        self._fired.add((session_date, "reset"))
        self.coordinator.reset_daily(now)

        _, range_end = self.calendar.range_window(session_date)
        if range_end <= now < self.calendar.session_close(session_date):
            logger.info("Started after the range window; computing ranges retroactively")
            self._fired.add((session_date, "range"))
            await self.coordinator.compute_ranges(now=now)

        positions = await self.coordinator.sync_positions()
        open_symbols = [s for s, held in positions.items() if held]
        if open_symbols:
            logger.info(f"Open positions at startup: {open_symbols}")

    async def run_forever(self, stop: Optional[asyncio.Event] = None) -> None:
        """Dispatch once per minute until ``stop`` is set."""
        await self.bootstrap()
        while stop is None or not stop.is_set():
            now = self._clock()
            self.dispatch(now)
            local = self.calendar.local(now)
            await self._sleep(60 - local.second - local.microsecond / 1e6)

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
