"""
Async task runner for background operations.
"""
import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskResult:
    """Result of a background task."""

    def __init__(
        self,
        task_id: str,
        success: bool,
        result: Any = None,
        error: Optional[str] = None,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None
    ):
        self.task_id = task_id
        self.success = success
        self.result = result
        self.error = error
        self.started_at = started_at
        self.completed_at = completed_at
        self.duration = None
        if started_at and completed_at:
            self.duration = (completed_at - started_at).total_seconds()


class BackgroundTaskRunner:
    """
    Manages background coroutines on the running event loop.
    A task ID can be reused once its previous task has finished.
    """

    def __init__(self):
        self.tasks: Dict[str, asyncio.Task] = {}
        self.results: Dict[str, TaskResult] = {}
        self._task_counter = 0

    def _generate_task_id(self) -> str:
        """Generate a unique task ID."""
        self._task_counter += 1
        return f"task_{self._task_counter}_{_utcnow().strftime('%Y%m%d%H%M%S')}"

    async def run_async(
        self,
        coro: Callable[..., Awaitable[Any]],
        *args,
        task_id: Optional[str] = None,
        **kwargs
    ) -> str:
        """
        Run an async coroutine in the background.
        Returns the task ID immediately.
        """
        task_id = task_id or self._generate_task_id()
        if self.is_running(task_id):
            raise ValueError(f"Task {task_id} is already running")

        started_at = _utcnow()
        self.results.pop(task_id, None)

        async def wrapped_task():
            try:
                result = await coro(*args, **kwargs)
                self.results[task_id] = TaskResult(
                    task_id=task_id,
                    success=True,
                    result=result,
                    started_at=started_at,
                    completed_at=_utcnow()
                )
                logger.info(f"Task {task_id} completed successfully")
            except Exception as e:
                self.results[task_id] = TaskResult(
                    task_id=task_id,
                    success=False,
                    error=str(e),
                    started_at=started_at,
                    completed_at=_utcnow()
                )
                logger.error(f"Task {task_id} failed: {e}")
                logger.debug(traceback.format_exc())

        task = asyncio.create_task(wrapped_task())
        self.tasks[task_id] = task
        return task_id

    def is_running(self, task_id: str) -> bool:
        """Check if a task is still running."""
        task = self.tasks.get(task_id)
        return task is not None and not task.done()

    async def wait_for(self, task_id: str, timeout: Optional[float] = None) -> TaskResult:
        """Wait for a task to complete and return its result."""
        task = self.tasks.get(task_id)
        if task is None:
            raise ValueError(f"Task {task_id} not found")

        await asyncio.wait_for(task, timeout=timeout)
        return self.results[task_id]

    def cleanup_old_results(self, max_age_seconds: float = 3600):
        """Remove results older than max_age_seconds."""
        now = _utcnow()
        to_remove = []

        for task_id, result in self.results.items():
            if result.completed_at:
                age = (now - result.completed_at).total_seconds()
                if age > max_age_seconds:
                    to_remove.append(task_id)

        for task_id in to_remove:
            del self.results[task_id]
            if task_id in self.tasks:
                del self.tasks[task_id]

        return len(to_remove)
