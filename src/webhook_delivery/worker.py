"""Periodic sweeps inside an aiohttp application.

Usage::

    worker = BackgroundWorker(
        name="webhook_dispatcher",
        interval_seconds=30.0,
        tasks=[WorkerTask(name="webhook_dispatch", fn=dispatcher.dispatch_due)],
    )
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Sequence

import structlog
from aiohttp import web

logger = structlog.get_logger(__name__)

# Receives the sweep time (UTC); a non-empty return value is logged as the summary.
TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    name: str
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """Runs ``tasks`` every ``interval_seconds`` until stopped.

    A failing task is logged and does not prevent the remaining tasks of the
    sweep from running.
    """

    name: str = "background_worker"
    interval_seconds: float = 30.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)

    @property
    def _app_key(self) -> str:
        return f"__{self.name}_task__"

    async def start(self, app: web.Application) -> None:
        app[self._app_key] = asyncio.create_task(self._loop())

    async def stop(self, app: web.Application) -> None:
        task = app.get(self._app_key)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run_once(self, now: datetime | None = None) -> None:
        """One sweep over every task."""
        now = now or datetime.now(timezone.utc)
        log = logger.bind(worker=self.name)
        for task in self.tasks:
            try:
                summary = await task.fn(now)
            except Exception:
                log.exception("worker task failed", task=task.name)
                continue
            if summary:
                log.info("worker task completed", task=task.name, summary=summary)

    async def _loop(self) -> None:
        log = logger.bind(worker=self.name)
        log.info(
            "worker started",
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                await self.run_once()
            except asyncio.CancelledError:
                log.info("worker stopped")
                raise
            except Exception:
                log.exception("worker sweep failed")
