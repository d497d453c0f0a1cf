"""
Lesson-scoped AI tutor chat.
History lives in Supabase and is cached in Redis; the last few turns are sent as context.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from clients.llm_client import LLMService
from clients.redis_client import get_chat_history, push_messages, clear_chat, clear_course_chats
from models.course_models import Course, Lesson
from prompts.course_prompts import build_tutor_system_prompt, build_tutor_chat_prompt
from services.course_service import CourseService
from utils.course_storage import ChatStorage
from utils.exceptions import NotFoundError, ValidationError
from utils.model_config import ModelUsage

logger = logging.getLogger(__name__)

MAX_CONTEXT_MESSAGES = 10
HISTORY_FETCH_LIMIT = 20
CHAT_TEMPERATURE = 0.7


class ChatService:
    def __init__(
        self,
        course_service: CourseService,
        llm: Optional[LLMService] = None,
        chat_storage: Optional[ChatStorage] = None,
    ):
        self.course_service = course_service
        self.llm = llm or LLMService()
        self.chat_storage = chat_storage or ChatStorage()

    def _lesson_context(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int
    ) -> Tuple[Course, Lesson]:
        course = self.course_service.get_course(user_id, course_id)
        lesson = course.get_lesson(module_index, lesson_index)
        if lesson is None:
            raise NotFoundError(
                "Lesson not found", error_code="LESSON_NOT_FOUND",
                context={"course_id": course_id, "module_index": module_index, "lesson_index": lesson_index},
            )
        if not lesson.has_content:
            raise ValidationError(
                "Lesson content has not been generated yet",
                error_code="LESSON_NOT_READY",
                context={"module_index": module_index, "lesson_index": lesson_index},
            )
        return course, lesson

    async def get_history(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int
    ) -> List[Dict[str, Any]]:
        cached = await get_chat_history(course_id, module_index, lesson_index, user_id)
        if cached:
            return cached
        db_messages = self.chat_storage.get_messages(
            course_id, user_id, module_index, lesson_index, limit=HISTORY_FETCH_LIMIT
        )
        history = [{"role": m["role"], "content": m["content"]} for m in db_messages]
        if history:
            # Warm Redis cache
            await push_messages(course_id, module_index, lesson_index, user_id, history)
        return history

    async def _build_request(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int, message: str
    ) -> Tuple[str, str]:
        course, lesson = self._lesson_context(user_id, course_id, module_index, lesson_index)
        history = await self.get_history(user_id, course_id, module_index, lesson_index)
        system_prompt = build_tutor_system_prompt(lesson.title, lesson.content, course.paper_title)
        prompt = build_tutor_chat_prompt(history[-MAX_CONTEXT_MESSAGES:], message)
        return system_prompt, prompt

    async def _save_exchange(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int, message: str, answer: str
    ) -> None:
        try:
            self.chat_storage.save_message(course_id, user_id, module_index, lesson_index, "user", message)
            self.chat_storage.save_message(course_id, user_id, module_index, lesson_index, "assistant", answer)
            await push_messages(course_id, module_index, lesson_index, user_id, [
                {"role": "user", "content": message},
                {"role": "assistant", "content": answer},
            ])
        except Exception as e:
            logger.warning(f"Chat history save failed (non-fatal): {e}")

    async def send_message(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int, message: str
    ) -> Dict[str, Any]:
        system_prompt, prompt = await self._build_request(user_id, course_id, module_index, lesson_index, message)
        response = await self.llm.generate(
            prompt, usage=ModelUsage.CHAT, system_prompt=system_prompt, temperature=CHAT_TEMPERATURE,
        )
        await self._save_exchange(user_id, course_id, module_index, lesson_index, message, response.content)
        return {
            "course_id": course_id,
            "module_index": module_index,
            "lesson_index": lesson_index,
            "message": message,
            "answer": response.content,
            "model": response.model,
        }

    async def stream_message(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int, message: str
    ) -> AsyncIterator[str]:
        """Yield answer chunks; the exchange is saved once the stream finishes."""
        system_prompt, prompt = await self._build_request(user_id, course_id, module_index, lesson_index, message)
        chunks = []
        async for chunk in self.llm.stream(
            prompt, usage=ModelUsage.CHAT, system_prompt=system_prompt, temperature=CHAT_TEMPERATURE,
        ):
            chunks.append(chunk)
            yield chunk
        await self._save_exchange(user_id, course_id, module_index, lesson_index, message, "".join(chunks))

    async def clear_history(self, user_id: str, course_id: str, module_index: int, lesson_index: int) -> None:
        self.chat_storage.clear_messages(course_id, user_id, module_index, lesson_index)
        await clear_chat(course_id, module_index, lesson_index, user_id)

    async def clear_course_history(self, user_id: str, course_id: str) -> None:
        self.chat_storage.clear_messages(course_id, user_id)
        await clear_course_chats(course_id, user_id)
