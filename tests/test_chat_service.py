import asyncio

import pytest

from services import chat_service as chat_module
from services.chat_service import ChatService
from tests.fakes import FakeLLM, InMemoryCourseStorage, build_course_service, make_course, module_with_lessons
from utils.exceptions import ValidationError
from utils.model_config import ModelUsage


class MemoryChatStorage:
    def __init__(self):
        self.messages = []

    def save_message(self, course_id, user_id, module_index, lesson_index, role, content):
        self.messages.append({"role": role, "content": content, "lesson": (module_index, lesson_index)})
        return True

    def get_messages(self, course_id, user_id, module_index, lesson_index, limit=20):
        return [m for m in self.messages if m["lesson"] == (module_index, lesson_index)][-limit:]

    def clear_messages(self, course_id, user_id, module_index=None, lesson_index=None):
        self.messages = []
        return True


@pytest.fixture()
def redis_cache(monkeypatch):
    """Dict-backed replacement for the Redis chat cache"""
    cache = {}

    async def get_chat_history(course_id, module_index, lesson_index, user_id):
        return list(cache.get((course_id, module_index, lesson_index, user_id), []))

    async def push_messages(course_id, module_index, lesson_index, user_id, messages):
        cache.setdefault((course_id, module_index, lesson_index, user_id), []).extend(messages)
        return True

    async def clear_chat(course_id, module_index, lesson_index, user_id):
        cache.pop((course_id, module_index, lesson_index, user_id), None)
        return True

    monkeypatch.setattr(chat_module, "get_chat_history", get_chat_history)
    monkeypatch.setattr(chat_module, "push_messages", push_messages)
    monkeypatch.setattr(chat_module, "clear_chat", clear_chat)
    return cache


def _chat_service(llm):
    storage = InMemoryCourseStorage()
    storage.create_course(make_course(modules=[
        module_with_lessons("A", ["Attention weighs every token against every other token.", ""]),
    ]))
    return ChatService(build_course_service(storage=storage), llm=llm, chat_storage=MemoryChatStorage())


def test_answer_uses_lesson_as_context_and_is_saved(redis_cache):
    llm = FakeLLM()
    service = _chat_service(llm)

    result = asyncio.run(service.send_message("user-1", "course-1", 0, 0, "Why scale by sqrt(d_k)?"))

    assert result["answer"] == "Tutor answer."
    call = llm.calls_for(ModelUsage.CHAT)[0]
    assert "Attention weighs every token" in call["system_prompt"]
    assert "Why scale by sqrt(d_k)?" in call["prompt"]
    assert [m["role"] for m in service.chat_storage.messages] == ["user", "assistant"]
    assert len(redis_cache[("course-1", 0, 0, "user-1")]) == 2


def test_history_falls_back_to_database_and_warms_cache(redis_cache):
    service = _chat_service(FakeLLM())
    service.chat_storage.save_message("course-1", "user-1", 0, 0, "user", "What is a head?")

    history = asyncio.run(service.get_history("user-1", "course-1", 0, 0))

    assert history == [{"role": "user", "content": "What is a head?"}]
    assert redis_cache[("course-1", 0, 0, "user-1")] == history


def test_previous_turns_are_sent_with_the_question(redis_cache):
    llm = FakeLLM()
    service = _chat_service(llm)

    async def scenario():
        await service.send_message("user-1", "course-1", 0, 0, "First question")
        await service.send_message("user-1", "course-1", 0, 0, "Second question")

    asyncio.run(scenario())

    assert "First question" in llm.calls_for(ModelUsage.CHAT)[1]["prompt"]


def test_streamed_answer_is_saved_after_the_last_chunk(redis_cache):
    service = _chat_service(FakeLLM())

    async def collect():
        return [chunk async for chunk in service.stream_message("user-1", "course-1", 0, 0, "Explain")]

    chunks = asyncio.run(collect())

    assert "".join(chunks).strip() == "Tutor answer."
    assert service.chat_storage.messages[-1]["content"] == "".join(chunks)


def test_chat_requires_generated_lesson(redis_cache):
    service = _chat_service(FakeLLM())

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(service.send_message("user-1", "course-1", 0, 1, "Hello?"))
    assert exc_info.value.error_code == "LESSON_NOT_READY"
