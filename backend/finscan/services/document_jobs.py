"""Background job runner for document processing.

``JobScheduler`` is the seam to the task-queue runtime: ``trigger`` starts a
run and returns its id, ``replay`` re-runs a recorded run with the same payload.
``InProcessJobScheduler`` runs handlers as asyncio tasks with at-least-once
retry and exponential backoff.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from finscan.core.config import get_settings

logger = logging.getLogger(__name__)

JobHandler = Callable[..., Awaitable[Any]]


class JobScheduler(abc.ABC):
    @abc.abstractmethod
    async def trigger(self, task_id: str, payload: dict[str, Any]) -> str:
        """Start a run of *task_id* and return its run id."""

    @abc.abstractmethod
    async def replay(self, run_id: str) -> str:
        """Start a new run with the payload of *run_id*; ``LookupError`` if unknown."""


@dataclass
class JobRun:
    run_id: str
    task_id: str
    payload: dict[str, Any]
    status: str = "QUEUED"
    attempt_count: int = 0
    last_error: Optional[str] = None
    output: Any = None
    replay_of: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)


def compute_backoff(attempt_count: int, *, base_seconds: float, max_seconds: float) -> float:
    # base, 2*base, 4*base, ... capped
    seconds = base_seconds * (2 ** max(0, attempt_count - 1))
    return max(0.0, min(max_seconds, seconds))


class InProcessJobScheduler(JobScheduler):
    def __init__(
        self,
        *,
        max_attempts: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        max_retained_runs: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.max_attempts = int(max(1, max_attempts if max_attempts is not None else settings.job_max_attempts))
        self.backoff_base_seconds = (
            backoff_base_seconds if backoff_base_seconds is not None else settings.job_backoff_base_seconds
        )
        self.backoff_max_seconds = (
            backoff_max_seconds if backoff_max_seconds is not None else settings.job_backoff_max_seconds
        )
        self.max_retained_runs = int(
            max(1, max_retained_runs if max_retained_runs is not None else settings.job_retained_runs)
        )
        self._handlers: dict[str, JobHandler] = {}
        self._runs: dict[str, JobRun] = {}

    def register(self, task_id: str, handler: JobHandler) -> None:
        """*handler* is awaited as ``handler(payload, run_id=...)``."""
        self._handlers[task_id] = handler

    def get_run(self, run_id: str) -> Optional[JobRun]:
        return self._runs.get(run_id)

    async def trigger(self, task_id: str, payload: dict[str, Any]) -> str:
        return self._start(task_id, dict(payload))

    async def replay(self, run_id: str) -> str:
        previous = self._runs.get(run_id)
        if previous is None:
            raise LookupError(f"Unknown run: {run_id}")
        return self._start(previous.task_id, dict(previous.payload), replay_of=run_id)

    def _start(self, task_id: str, payload: dict[str, Any], *, replay_of: Optional[str] = None) -> str:
        if task_id not in self._handlers:
            raise LookupError(f"No handler registered for task {task_id!r}")
        run = JobRun(
            run_id=f"run_{uuid.uuid4().hex}",
            task_id=task_id,
            payload=payload,
            replay_of=replay_of,
        )
        self._runs[run.run_id] = run
        run.task = asyncio.create_task(self._execute(run))
        self._prune()
        logger.info("Started %s run %s", task_id, run.run_id)
        return run.run_id

    async def _execute(self, run: JobRun) -> None:
        try:
            await self._attempt(run)
        finally:
            # finished runs become evictable
            run.task = None
            self._prune()

    def _prune(self) -> None:
        excess = len(self._runs) - self.max_retained_runs
        if excess <= 0:
            return
        finished = [run_id for run_id, run in self._runs.items() if run.task is None]
        for run_id in finished[:excess]:
            del self._runs[run_id]

    async def _attempt(self, run: JobRun) -> None:
        handler = self._handlers[run.task_id]
        while run.attempt_count < self.max_attempts:
            run.attempt_count += 1
            run.status = "RUNNING"
            try:
                run.output = await handler(run.payload, run_id=run.run_id)
            except asyncio.CancelledError:
                run.status = "CANCELLED"
                raise
            except Exception as exc:
                run.last_error = str(exc) or exc.__class__.__name__
                if run.attempt_count >= self.max_attempts:
                    run.status = "FAILED"
                    logger.error(
                        "Run %s (%s) failed after %d attempts: %s",
                        run.run_id,
                        run.task_id,
                        run.attempt_count,
                        run.last_error,
                    )
                    return
                run.status = "RETRY"
                delay = compute_backoff(
                    run.attempt_count,
                    base_seconds=self.backoff_base_seconds,
                    max_seconds=self.backoff_max_seconds,
                )
                logger.warning(
                    "Run %s attempt %d failed (%s); retrying in %.1fs",
                    run.run_id,
                    run.attempt_count,
                    run.last_error,
                    delay,
                )
                await asyncio.sleep(delay)
                continue

            run.status = "COMPLETED"
            run.last_error = None
            return

    async def wait(self, run_id: str) -> JobRun:
        run = self._runs[run_id]
        task = run.task
        if task is not None:
            await asyncio.shield(task)
        return run

    async def shutdown(self) -> None:
        pending = [r.task for r in self._runs.values() if r.task is not None and not r.task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
