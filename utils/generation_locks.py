"""
In-flight markers for generation work.

One key per unit of work: "{course_id}:titles" for the title backfill and
"{course_id}:{module}:{lesson}" for a lesson. A second caller for a held key
gets a no-op instead of waiting. Markers are process-local and not persisted.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional, Set

logger = logging.getLogger(__name__)


def lesson_key(course_id: str, module_index: int, lesson_index: int) -> str:
    return f"{course_id}:{module_index}:{lesson_index}"


def titles_key(course_id: str) -> str:
    return f"{course_id}:titles"


class GenerationLocks:
    """Registry of keys whose generation is currently running."""

    def __init__(self):
        self._active: Set[str] = set()

    def try_acquire(self, key: str) -> bool:
        # Check-and-set runs without an await in between, so it is atomic on the event loop
        if key in self._active:
            return False
        self._active.add(key)
        return True

    def release(self, key: str) -> None:
        self._active.discard(key)

    def is_active(self, key: str) -> bool:
        return key in self._active

    def active_keys(self, prefix: Optional[str] = None) -> List[str]:
        keys = sorted(self._active)
        if prefix is None:
            return keys
        return [k for k in keys if k.startswith(prefix)]

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        """
        Yield True if the key was acquired, False if another holder has it.
        The key is released on exit only when this holder acquired it.
        """
        acquired = self.try_acquire(key)
        if not acquired:
            logger.info(f"Generation already in progress for {key}, skipping")
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)
