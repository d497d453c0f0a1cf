"""
Syllabus planning from knowledge ratings.

Run with:
    python3 -m pytest tests/test_syllabus_planner.py -v
"""

import asyncio

import pytest

from models.course_models import Importance, Lesson
from services.course_service import select_knowledge_gaps
from services.event_bus import CourseEvent
from tests.fakes import FakeLLM, InMemoryCourseStorage, build_course_service, make_course
from utils.exceptions import NotFoundError, ProviderError, ValidationError
from utils.model_config import ModelUsage


def _service_with_course(llm=None, **course_kwargs):
    storage = InMemoryCourseStorage()
    storage.create_course(make_course(**course_kwargs))
    storage.writes.clear()
    return build_course_service(llm=llm, storage=storage), storage


def test_select_knowledge_gaps_keeps_concept_order_and_skips_known():
    gaps = select_knowledge_gaps(["A", "B", "C", "D"], {"A": 0, "B": 3, "C": 2})
    # D is unrated and counts as 0
    assert gaps == [("A", 0), ("C", 2), ("D", 0)]


def test_ratings_plan_one_module_per_gap():
    llm = FakeLLM()
    service, storage = _service_with_course(llm=llm)

    async def scenario():
        course = await service.generate_syllabus("user-1", "course-1", {"A": 0, "B": 3, "C": 2})
        stored = storage.get_course("user-1", "course-1")
        # Checked before the background lesson task gets a chance to run
        return course, stored

    course, stored = asyncio.run(scenario())

    assert [m.concept for m in course.modules] == ["A", "C"]
    assert [m.title for m in stored.modules] == ["A", "C"]
    assert stored.planned_concepts == ["A", "C"]
    assert [lesson.title for lesson in stored.modules[0].lessons] == [
        "Intuition", "Mechanics", "Use in the paper",
    ]
    assert stored.modules[1].lessons == []
    assert stored.knowledge_levels == {"A": 0, "C": 2}
    assert len(llm.calls_for(ModelUsage.LESSON_TITLES)) == 1


def test_first_lesson_is_generated_in_background():
    llm = FakeLLM()
    service, storage = _service_with_course(llm=llm)

    async def scenario():
        await service.generate_syllabus("user-1", "course-1", {"A": 0, "B": 3, "C": 2})
        await service.tasks.drain()

    asyncio.run(scenario())

    stored = storage.get_course("user-1", "course-1")
    assert stored.modules[0].lessons[0].content == "Lesson body."
    assert all(not lesson.has_content for lesson in stored.modules[0].lessons[1:])
    # Backfill only runs on navigation
    assert stored.modules[1].lessons == []
    assert stored.token_usage_by_model["fake-model"].input_tokens == 200


def test_peripheral_concept_gets_single_overview_lesson():
    llm = FakeLLM()
    service, storage = _service_with_course(
        llm=llm, concepts={"Layer norm": Importance.PERIPHERAL, "Attention": Importance.CENTRAL}
    )

    async def scenario():
        return await service.generate_syllabus("user-1", "course-1", {"Layer norm": 1, "Attention": 3})

    course = asyncio.run(scenario())

    assert course.modules[0].lessons == [Lesson(title="Overview of Layer norm")]
    assert llm.calls_for(ModelUsage.LESSON_TITLES) == []


def test_all_concepts_known_plans_nothing():
    service, storage = _service_with_course()

    async def scenario():
        return await service.generate_syllabus("user-1", "course-1", {"A": 3, "B": 3, "C": 3})

    course = asyncio.run(scenario())

    assert course.modules == []
    assert service.tasks.for_course("course-1") == []


def test_missing_course_raises_without_writes():
    service, storage = _service_with_course()

    async def scenario():
        await service.generate_syllabus("user-1", "missing", {"A": 0})

    with pytest.raises(NotFoundError):
        asyncio.run(scenario())
    assert storage.writes == []


def test_course_of_another_user_is_not_found():
    service, storage = _service_with_course()

    with pytest.raises(NotFoundError):
        asyncio.run(service.generate_syllabus("someone-else", "course-1", {"A": 0}))


def test_provider_failure_leaves_course_untouched():
    llm = FakeLLM()
    llm.queue(ModelUsage.LESSON_TITLES, ProviderError("All LLM providers failed for lesson_titles"))
    service, storage = _service_with_course(llm=llm)

    with pytest.raises(ProviderError):
        asyncio.run(service.generate_syllabus("user-1", "course-1", {"A": 0, "C": 1}))

    stored = storage.get_course("user-1", "course-1")
    assert stored.modules == []
    assert stored.knowledge_levels == {}
    assert storage.writes == []


def test_out_of_range_rating_is_rejected():
    service, storage = _service_with_course()

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(service.generate_syllabus("user-1", "course-1", {"A": 5}))
    assert exc_info.value.error_code == "INVALID_RATING"
    assert storage.writes == []


def test_existing_syllabus_is_not_replanned():
    service, storage = _service_with_course()

    async def scenario():
        await service.generate_syllabus("user-1", "course-1", {"A": 0})
        await service.tasks.drain()
        await service.generate_syllabus("user-1", "course-1", {"A": 0, "B": 0})

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.error_code == "SYLLABUS_EXISTS"


def test_planning_emits_titles_and_generation_started():
    service, storage = _service_with_course()

    async def scenario():
        queue = service.events.subscribe("course-1")
        await service.generate_syllabus("user-1", "course-1", {"A": 0})
        await service.tasks.drain()
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return events

    events = asyncio.run(scenario())

    assert [e["type"] for e in events] == [
        CourseEvent.LESSON_TITLES_GENERATED.value,
        CourseEvent.GENERATION_STARTED.value,
        CourseEvent.LESSON_CONTENT_GENERATED.value,
    ]
    assert events[0]["module_index"] == 0
    assert events[2]["lesson_index"] == 0
