"""
In-process course event fan-out.
Pipeline steps emit events per course; the SSE endpoint relays them to connected clients.
Delivery is best-effort: nothing is stored and slow listeners drop events.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Set

from models.course_models import utc_now

logger = logging.getLogger(__name__)


class CourseEvent(str, Enum):
    LESSON_TITLES_GENERATED = "lesson_titles_generated"
    LESSON_CONTENT_GENERATED = "lesson_content_generated"
    GENERATION_STARTED = "generation_started"
    GENERATION_FAILED = "generation_failed"


class CourseEventBus:
    """One asyncio.Queue per connected listener, grouped by course"""

    def __init__(self, max_queue_size: int = 100):
        self.max_queue_size = max_queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}

    def subscribe(self, course_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.setdefault(course_id, set()).add(queue)
        return queue

    def unsubscribe(self, course_id: str, queue: asyncio.Queue) -> None:
        listeners = self._subscribers.get(course_id)
        if not listeners:
            return
        listeners.discard(queue)
        if not listeners:
            del self._subscribers[course_id]

    def listener_count(self, course_id: str) -> int:
        return len(self._subscribers.get(course_id, ()))

    def emit(self, course_id: str, event: CourseEvent, payload: Optional[Dict[str, Any]] = None) -> None:
        message = {
            "type": event.value,
            "course_id": course_id,
            "timestamp": utc_now().isoformat(),
            **(payload or {}),
        }
        logger.debug(f"Event {event.value} for course {course_id}")
        for queue in list(self._subscribers.get(course_id, ())):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event.value} for a slow listener on course {course_id}")

