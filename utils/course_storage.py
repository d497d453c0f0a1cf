"""
Storage utilities for the course pipeline.
Supabase-backed storage for courses, model costs and lesson chat.

Course writes raise StorageError: a failed write must abort the generation
step that issued it. Chat writes are best-effort and only log.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from clients.supabase_client import (
    upsert_course,
    get_course_by_id,
    list_courses_by_user,
    update_course_fields,
    delete_course_by_id,
    get_active_model_costs,
    insert_chat_message,
    get_chat_messages,
    delete_chat_messages,
)
from models.course_models import Course, Lesson, Module, ModelCost, TokenUsage, utc_now
from utils.exceptions import NotFoundError, StorageError

logger = logging.getLogger(__name__)


def generate_uuid() -> str:
    """Generate unique ID for courses"""
    return str(uuid.uuid4())


def _lesson_not_found(course_id: str, module_index: int, lesson_index: int) -> NotFoundError:
    return NotFoundError(
        "Lesson not found",
        error_code="LESSON_NOT_FOUND",
        context={"course_id": course_id, "module_index": module_index, "lesson_index": lesson_index},
    )


class CourseStorage:
    """Course aggregate persistence, scoped by (user_id, course_id)"""

    def create_course(self, course: Course) -> Course:
        try:
            upsert_course(course.model_dump(mode="json"))
            return course
        except Exception as e:
            logger.error(f"Error creating course {course.id}: {e}")
            raise StorageError("Failed to create course", context={"course_id": course.id}) from e

    def get_course(self, user_id: str, course_id: str) -> Optional[Course]:
        try:
            row = get_course_by_id(course_id, user_id)
        except Exception as e:
            logger.error(f"Error loading course {course_id}: {e}")
            raise StorageError("Failed to load course", context={"course_id": course_id}) from e
        return Course(**row) if row else None

    def list_courses(self, user_id: str) -> List[Course]:
        try:
            return [Course(**row) for row in list_courses_by_user(user_id)]
        except Exception as e:
            logger.error(f"Error listing courses for {user_id}: {e}")
            raise StorageError("Failed to list courses", context={"user_id": user_id}) from e

    def update_course(self, user_id: str, course_id: str, fields: Dict[str, Any]) -> None:
        try:
            update_course_fields(course_id, user_id, fields)
        except Exception as e:
            logger.error(f"Error updating course {course_id}: {e}")
            raise StorageError("Failed to update course", context={"course_id": course_id}) from e

    def delete_course(self, user_id: str, course_id: str) -> bool:
        try:
            return delete_course_by_id(course_id, user_id)
        except Exception as e:
            logger.error(f"Error deleting course {course_id}: {e}")
            raise StorageError("Failed to delete course", context={"course_id": course_id}) from e

    def _require_course(self, user_id: str, course_id: str) -> Course:
        course = self.get_course(user_id, course_id)
        if course is None:
            raise NotFoundError("Course not found", context={"course_id": course_id})
        return course

    def _write_modules(self, user_id: str, course: Course) -> None:
        self.update_course(
            user_id, course.id,
            {"modules": [m.model_dump(mode="json") for m in course.modules]},
        )

    def update_module(self, user_id: str, course_id: str, module_index: int, module: Module) -> None:
        course = self._require_course(user_id, course_id)
        if course.get_module(module_index) is None:
            raise NotFoundError(
                "Module not found", error_code="MODULE_NOT_FOUND",
                context={"course_id": course_id, "module_index": module_index},
            )
        course.modules[module_index] = module
        self._write_modules(user_id, course)

    def update_lesson(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int, lesson: Lesson
    ) -> None:
        course = self._require_course(user_id, course_id)
        if course.get_lesson(module_index, lesson_index) is None:
            raise _lesson_not_found(course_id, module_index, lesson_index)
        course.modules[module_index].lessons[lesson_index] = lesson
        self._write_modules(user_id, course)

    def mark_lesson_complete(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int
    ) -> Lesson:
        course = self._require_course(user_id, course_id)
        lesson = course.get_lesson(module_index, lesson_index)
        if lesson is None:
            raise _lesson_not_found(course_id, module_index, lesson_index)
        if lesson.completed_at is None:
            lesson.completed_at = utc_now()
            self._write_modules(user_id, course)
        return lesson

    def add_token_usage(self, user_id: str, course_id: str, model: str, usage: TokenUsage) -> None:
        course = self._require_course(user_id, course_id)
        totals = dict(course.token_usage_by_model)
        totals[model] = totals.get(model, TokenUsage()).add(usage)
        self.update_course(
            user_id, course_id,
            {"token_usage_by_model": {k: v.model_dump(mode="json") for k, v in totals.items()}},
        )


class ModelCostStorage:
    """Per-model token prices from the model_costs table"""

    def list_active(self) -> List[ModelCost]:
        try:
            return [ModelCost(**row) for row in get_active_model_costs()]
        except Exception as e:
            logger.error(f"Error loading model costs: {e}")
            raise StorageError("Failed to load model costs") from e

    def get_model_cost_map(self) -> Dict[str, ModelCost]:
        return {cost.model_name: cost for cost in self.list_active()}


class ChatStorage:
    """Save/get lesson chat messages from the chat_messages table"""

    @staticmethod
    def save_message(
        course_id: str, user_id: str, module_index: int, lesson_index: int, role: str, content: str
    ) -> bool:
        try:
            insert_chat_message({
                "course_id": course_id,
                "user_id": user_id,
                "module_index": module_index,
                "lesson_index": lesson_index,
                "role": role,
                "content": content,
                "created_at": utc_now().isoformat(),
            })
            return True
        except Exception as e:
            logger.error(f"Error saving chat message for {course_id}: {e}")
            return False

    @staticmethod
    def get_messages(
        course_id: str, user_id: str, module_index: int, lesson_index: int, limit: int = 20
    ) -> List[Dict[str, Any]]:
        try:
            return get_chat_messages(course_id, user_id, module_index, lesson_index, limit=limit)
        except Exception as e:
            logger.error(f"Error getting chat messages for {course_id}: {e}")
            return []

    @staticmethod
    def clear_messages(
        course_id: str,
        user_id: str,
        module_index: Optional[int] = None,
        lesson_index: Optional[int] = None,
    ) -> bool:
        try:
            delete_chat_messages(course_id, user_id, module_index, lesson_index)
            return True
        except Exception as e:
            logger.error(f"Error clearing chat messages for {course_id}: {e}")
            return False
