"""APScheduler runtime for ledger sweep jobs."""

from __future__ import annotations

import asyncio
import inspect
import random
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger
from zoneinfo import ZoneInfo

from rcn_api.observability.scheduler import LedgerSchedulerStore, get_ledger_scheduler_store

from .config import LedgerJob, ScheduleConfig, load_schedule

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


def resolve_task(task: str) -> JobCallable:
    module_name, _, attr = task.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {task}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {task} not found")
    if not asyncio.iscoroutinefunction(func):
        raise TypeError(f"Task {task} must be an async function")
    return func


class LedgerJobScheduler:
    """Runs session expiry, referral expiry and integrity sweeps on cron triggers."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        config_path: Path,
        store: LedgerSchedulerStore | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._store = store or get_ledger_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def start(self) -> None:
        config = load_schedule(self._config_path)
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)
        for job in config.jobs:
            scheduler.add_job(
                self.build_runner(resolve_task(job.task), job),
                trigger=CronTrigger.from_crontab(job.cron, timezone=timezone),
                id=job.id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("Registered ledger job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._config = config
        self._scheduler = scheduler
        self._store.running = True
        logger.info("Ledger job scheduler started", jobs=len(config.jobs))

    async def stop(self) -> None:
        if self._scheduler is None:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        self._store.running = False
        logger.info("Ledger job scheduler stopped")

    def build_runner(self, func: JobCallable, job: LedgerJob) -> Callable[[], Awaitable[Any]]:
        """Wrap ``func`` with retry, backoff and metrics for ``job``."""

        async def _runner() -> Any:
            self._store.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()
            for attempt in range(1, job.max_attempts + 1):
                try:
                    summary = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    error = str(exc) or exc.__class__.__name__
                    self._store.record_attempt_failure(job.id, job.task, attempts=attempt, error=error)
                    if attempt >= job.max_attempts:
                        self._store.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error,
                        )
                        logger.exception("Ledger job failed after retries", job_id=job.id, attempts=attempt)
                        return None

                    delay = job.retry_delay(attempt)
                    if job.jitter_seconds:
                        delay += random.uniform(0, job.jitter_seconds)
                    self._store.record_retry(job.id, job.task, attempts=attempt + 1)
                    logger.warning("Ledger job retrying", job_id=job.id, attempt=attempt + 1, delay_seconds=delay)
                    if delay:
                        await asyncio.sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._store.record_success(
                    job.id,
                    job.task,
                    runtime_seconds=runtime_seconds,
                    attempts=attempt,
                    summary=summary if isinstance(summary, dict) else None,
                )
                logger.info("Ledger job completed", job_id=job.id, attempts=attempt, runtime_seconds=runtime_seconds)
                return summary
            return None

        return _runner

    def health(self) -> dict[str, object]:
        snapshot = self._store.snapshot()
        jobs = self._config.jobs if self._config else []
        return {
            "running": self.is_running,
            "configured_jobs": len(jobs),
            "totals": snapshot["totals"],
            "jobs": [
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "max_attempts": job.max_attempts,
                    "metrics": snapshot["jobs"].get(job.id),
                }
                for job in jobs
            ],
        }


__all__ = ["LedgerJobScheduler", "resolve_task"]
