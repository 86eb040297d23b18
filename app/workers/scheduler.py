from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from app.core.config import get_settings
from app.core.logger import get_logger
from app.services.session_store import get_session_store

log = get_logger(__name__)


# A housekeeping job returns how many items it cleared
HousekeepingCallable = Callable[[], Awaitable[int]]


@dataclass
class HousekeepingJob:
    name: str
    func: HousekeepingCallable
    interval_sec: float
    runs: int = 0
    cleared: int = 0


class PeriodicScheduler:
    """Runs named housekeeping jobs at a fixed interval until stop().

    Each job runs once right away, then every `interval_sec`. stop() wakes
    sleeping jobs immediately instead of waiting out their interval.
    """

    def __init__(self) -> None:
        self.jobs: Dict[str, HousekeepingJob] = {}
        self._tasks: list[asyncio.Task] = []
        self._stopping: Optional[asyncio.Event] = None

    async def start(self) -> None:
        self._stopping = asyncio.Event()

    async def stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()
        for t in self._tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    def schedule(self, name: str, func: HousekeepingCallable, interval_sec: float) -> HousekeepingJob:
        if self._stopping is None:
            raise RuntimeError("Scheduler must be started before scheduling jobs")
        stopping = self._stopping
        job = HousekeepingJob(name=name, func=func, interval_sec=interval_sec)
        self.jobs[name] = job

        async def _loop() -> None:
            while not stopping.is_set():
                try:
                    cleared = await job.func()
                except Exception:
                    log.exception("Housekeeping job %s failed", job.name)
                else:
                    job.runs += 1
                    job.cleared += cleared or 0
                try:
                    await asyncio.wait_for(stopping.wait(), timeout=job.interval_sec)
                except asyncio.TimeoutError:
                    pass

        self._tasks.append(asyncio.create_task(_loop(), name=f"housekeeping-{name}"))
        return job


_scheduler: Optional[PeriodicScheduler] = None


def get_scheduler() -> PeriodicScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = PeriodicScheduler()
    return _scheduler


# Housekeeping: scratch clips left behind by a crashed process
async def cleanup_tmp(max_age_sec: float = 3600) -> int:
    now = time.time()
    base = Path(get_settings().CHECKLANCE_TMP)
    if not base.exists():
        return 0
    removed = 0
    for p in base.glob("clip_*"):
        try:
            if p.is_file() and now - p.stat().st_mtime > max_age_sec:
                p.unlink(missing_ok=True)
                removed += 1
        except OSError:
            log.warning("Could not remove stale scratch file %s", p)
    if removed:
        log.info("Cleaned %d scratch files from %s", removed, base)
    return removed


def install_housekeeping(scheduler: PeriodicScheduler) -> None:
    """Idle-session expiry every minute; scratch-clip cleanup every hour."""
    scheduler.schedule("expire-sessions", lambda: get_session_store().expire_idle(), interval_sec=60)
    scheduler.schedule("scratch-cleanup", cleanup_tmp, interval_sec=3600)
