"""Interval scheduler: one daemon thread per repeating task."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class ScheduledTask:
    task_id: str
    handler: Callable[[], object]
    interval_s: float | None = None
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _thread: threading.Thread | None = field(default=None, repr=False)


class Scheduler:
    def __init__(self) -> None:
        self._tasks: dict[str, ScheduledTask] = {}
        self._lock = threading.Lock()
        self.running = False

    def schedule_task(
        self,
        task_id: str,
        handler: Callable[[], object],
        interval_s: float | None = None,
    ) -> str:
        """Register *handler*.  With *interval_s* it also runs every interval_s seconds."""
        self.cancel_task(task_id)
        task = ScheduledTask(task_id=task_id, handler=handler, interval_s=interval_s)
        with self._lock:
            self._tasks[task_id] = task
        if interval_s:
            task._thread = threading.Thread(
                target=self._run_every, args=(task, interval_s), name=f"sched-{task_id}", daemon=True
            )
            task._thread.start()
            self.running = True
        logger.debug("task scheduled: %s (interval_s=%s)", task_id, interval_s)
        return task_id

    def _run_every(self, task: ScheduledTask, interval_s: float) -> None:
        while not task._stop.wait(interval_s):
            self.execute_task(task.task_id)

    def execute_task(self, task_id: str) -> None:
        """Run a task once.  Handler exceptions are logged, never raised."""
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            return
        try:
            task.handler()
        except Exception:
            logger.exception("task execution failed: %s", task_id)

    def cancel_task(self, task_id: str) -> bool:
        with self._lock:
            task = self._tasks.pop(task_id, None)
        if task is None:
            return False
        task._stop.set()
        return True

    def upcoming_tasks(self) -> list[ScheduledTask]:
        with self._lock:
            return list(self._tasks.values())

    def shutdown(self) -> None:
        with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
        for task in tasks:
            task._stop.set()
        for task in tasks:
            if task._thread is not None and task._thread is not threading.current_thread():
                task._thread.join(timeout=5)
        self.running = False
        logger.debug("scheduler shut down (%d tasks)", len(tasks))
