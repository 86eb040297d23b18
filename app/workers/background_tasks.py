from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from app.core.logger import get_logger
from app.services.session import SessionController

log = get_logger(__name__)


JobCallable = Callable[[], Awaitable[Any]]


class BackgroundTaskRunner:
    """Runs long-lived async jobs outside the request that started them.

    - submit(job_id, callable) starts the job as its own task; a job id
      already in flight is not started twice.
    - stop() cancels whatever is still running.

    Payment jobs mostly wait on the payer (scanning a PIX QR code, passing
    3-D Secure) for up to PAYMENT_POLL_TIMEOUT, so every job gets a task of
    its own rather than a slot in a fixed pool.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, asyncio.Task] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._jobs)

    async def start(self) -> None:
        self._running = True
        log.info("BackgroundTaskRunner started")

    async def stop(self) -> None:
        self._running = False
        tasks = list(self._jobs.values())
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._jobs.clear()
        log.info("BackgroundTaskRunner stopped (%d jobs cancelled)", len(tasks))

    async def submit(self, job_id: str, func: JobCallable) -> bool:
        if job_id in self._jobs:
            log.info("Background task %s already running", job_id)
            return False
        task = asyncio.create_task(self._run(job_id, func), name=job_id)
        self._jobs[job_id] = task
        task.add_done_callback(lambda t: self._forget(job_id, t))
        return True

    async def join(self) -> None:
        """Wait until every submitted job (including ones submitted meanwhile) is done."""
        while True:
            pending = [t for t in self._jobs.values() if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run(self, job_id: str, func: JobCallable) -> None:
        try:
            await func()
        except Exception:
            log.exception("Background task %s failed", job_id)

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._jobs.get(job_id) is task:
            del self._jobs[job_id]


_runner: Optional[BackgroundTaskRunner] = None


def get_task_runner() -> BackgroundTaskRunner:
    global _runner
    if _runner is None:
        _runner = BackgroundTaskRunner()
    return _runner


async def enqueue_payment_completion(controller: SessionController, payment_method: Optional[str] = None) -> str:
    """Settle an open payment in the background, then run the analysis.

    Returns the job_id assigned to this task.
    """
    session_id = controller.session.session_id
    job_id = f"pay-{session_id}-{controller.session.generation}"

    async def _job() -> None:
        await controller.complete_payment(payment_method)
        log.info("Payment job %s finished at step %s", job_id, controller.session.step.value)

    await get_task_runner().submit(job_id, _job)
    return job_id
