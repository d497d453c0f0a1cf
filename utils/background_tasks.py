"""
Fire-and-forget background jobs with observable state.
Requests schedule generation here and return immediately; failures are
logged and kept on the task record instead of reaching the caller.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from models.course_models import utc_now

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class TaskRecord(BaseModel):
    key: str
    kind: str
    course_id: str
    status: TaskStatus = TaskStatus.PENDING
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in (TaskStatus.PENDING, TaskStatus.RUNNING)


FailureCallback = Callable[[TaskRecord, BaseException], Awaitable[None]]


class BackgroundTaskTracker:
    """Keeps the latest record per key and a reference to every running asyncio task."""

    def __init__(self, on_failure: Optional[FailureCallback] = None):
        self._records: Dict[str, TaskRecord] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self.on_failure = on_failure

    def spawn(
        self,
        key: str,
        kind: str,
        course_id: str,
        factory: Callable[[], Awaitable[Any]],
    ) -> TaskRecord:
        """
        Schedule factory() on the running loop. If a task for the same key is
        still pending or running, return its record instead of scheduling another.
        """
        existing = self._records.get(key)
        if existing and existing.is_active:
            logger.debug(f"Task {key} already {existing.status.value}, not rescheduling")
            return existing

        record = TaskRecord(key=key, kind=kind, course_id=course_id)
        self._records[key] = record
        task = asyncio.get_running_loop().create_task(self._run(record, factory))
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._forget_task(k, t))
        return record

    async def _run(self, record: TaskRecord, factory: Callable[[], Awaitable[Any]]) -> None:
        record.status = TaskStatus.RUNNING
        record.started_at = utc_now()
        try:
            await factory()
            record.status = TaskStatus.DONE
        except asyncio.CancelledError:
            record.status = TaskStatus.FAILED
            record.error = "cancelled"
            raise
        except Exception as e:
            record.status = TaskStatus.FAILED
            record.error = str(e)
            logger.error(f"Background {record.kind} task {record.key} failed: {e}", exc_info=True)
            if self.on_failure is not None:
                try:
                    await self.on_failure(record, e)
                except Exception as callback_error:
                    logger.warning(f"Failure callback for {record.key} raised: {callback_error}")
        finally:
            record.finished_at = utc_now()

    def _forget_task(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def get(self, key: str) -> Optional[TaskRecord]:
        return self._records.get(key)

    def for_course(self, course_id: str) -> List[TaskRecord]:
        return sorted(
            (r for r in self._records.values() if r.course_id == course_id),
            key=lambda r: r.created_at,
        )

    def failed_for_course(self, course_id: str) -> List[TaskRecord]:
        return [r for r in self.for_course(course_id) if r.status == TaskStatus.FAILED]

    def forget_course(self, course_id: str) -> None:
        for key in [k for k, r in self._records.items() if r.course_id == course_id and not r.is_active]:
            del self._records[key]

    async def drain(self) -> None:
        """Wait until no background task is running, including tasks spawned by tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
