"""
In-memory stand-ins for Supabase storage and the LLM providers.
"""

import asyncio
import copy
from typing import Any, Callable, Dict, List, Optional, Union

from models.course_models import (
    ConceptImportance, Course, Importance, Lesson, LLMResponse, ModelCost, Module, TokenUsage,
)
from services.cost_service import CostService
from services.course_service import CourseService
from services.event_bus import CourseEventBus
from services.generation_service import GenerationService
from utils.background_tasks import BackgroundTaskTracker
from utils.course_storage import CourseStorage
from utils.exceptions import ProviderError
from utils.generation_locks import GenerationLocks
from utils.model_config import ModelUsage

FAKE_MODEL = "fake-model"

ScriptedReply = Union[str, Exception, Callable[[str], str]]


class InMemoryCourseStorage(CourseStorage):
    """Keeps course rows as plain dicts, the way Supabase returns them."""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.writes: List[Dict[str, Any]] = []

    def create_course(self, course: Course) -> Course:
        self.rows[course.id] = course.model_dump()
        self.writes.append({"op": "create", "course_id": course.id})
        return course

    def get_course(self, user_id: str, course_id: str) -> Optional[Course]:
        row = self.rows.get(course_id)
        if row is None or row["user_id"] != user_id:
            return None
        return Course(**copy.deepcopy(row))

    def list_courses(self, user_id: str) -> List[Course]:
        return [Course(**copy.deepcopy(r)) for r in self.rows.values() if r["user_id"] == user_id]

    def update_course(self, user_id: str, course_id: str, fields: Dict[str, Any]) -> None:
        row = self.rows[course_id]
        row.update(copy.deepcopy(fields))
        self.writes.append({"op": "update", "course_id": course_id, "fields": sorted(fields)})

    def delete_course(self, user_id: str, course_id: str) -> bool:
        self.writes.append({"op": "delete", "course_id": course_id})
        return self.rows.pop(course_id, None) is not None


class FakeCostStorage:
    def __init__(self, costs: Optional[List[ModelCost]] = None):
        self.costs = costs or []
        self.fetches = 0

    def list_active(self) -> List[ModelCost]:
        self.fetches += 1
        return [c for c in self.costs if c.is_active]

    def get_model_cost_map(self) -> Dict[str, ModelCost]:
        return {cost.model_name: cost for cost in self.list_active()}


class FakeLLM:
    """
    Scripted LLMService. Replies are queued per ModelUsage; when a queue is
    empty the default reply for that usage is used. delay makes calls
    suspend so concurrent callers can interleave.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.queued: Dict[ModelUsage, List[ScriptedReply]] = {}
        self.defaults: Dict[ModelUsage, ScriptedReply] = {
            ModelUsage.LESSON_TITLES: '{"lessons": ["Intuition", "Mechanics", "Use in the paper"]}',
            ModelUsage.LESSON_GENERATION: '{"title": "Generated lesson", "content": "Lesson body."}',
            ModelUsage.CHAT: "Tutor answer.",
        }

    def queue(self, usage: ModelUsage, *replies: ScriptedReply) -> None:
        self.queued.setdefault(usage, []).extend(replies)

    def calls_for(self, usage: ModelUsage) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["usage"] == usage]

    def _next_reply(self, usage: ModelUsage) -> ScriptedReply:
        queued = self.queued.get(usage)
        if queued:
            return queued.pop(0)
        if usage not in self.defaults:
            raise ProviderError(f"No scripted reply for {usage.value}")
        return self.defaults[usage]

    async def generate(
        self,
        prompt: str,
        usage: ModelUsage,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        file_data: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> LLMResponse:
        self.calls.append({"usage": usage, "prompt": prompt, "system_prompt": system_prompt})
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self._next_reply(usage)
        if isinstance(reply, Exception):
            raise reply
        content = reply(prompt) if callable(reply) else reply
        return LLMResponse(
            content=content,
            model=FAKE_MODEL,
            provider="fake",
            usage=TokenUsage(input_tokens=100, output_tokens=50, total_tokens=150),
        )

    async def stream(
        self,
        prompt: str,
        usage: ModelUsage,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ):
        response = await self.generate(prompt, usage, system_prompt=system_prompt, temperature=temperature)
        for word in response.content.split(" "):
            yield word + " "


def make_course(
    course_id: str = "course-1",
    user_id: str = "user-1",
    concepts: Optional[Dict[str, Importance]] = None,
    modules: Optional[List[Module]] = None,
) -> Course:
    concepts = concepts or {
        "A": Importance.CENTRAL,
        "B": Importance.SUPPORTING,
        "C": Importance.SUPPORTING,
    }
    return Course(
        id=course_id,
        user_id=user_id,
        title="Attention course",
        paper_title="Attention Is All You Need",
        paper_content="We propose the Transformer. " * 50,
        extracted_concepts=list(concepts),
        concept_importance={
            name: ConceptImportance(importance=importance, reasoning=f"{name} matters")
            for name, importance in concepts.items()
        },
        modules=modules or [],
    )


def module_with_lessons(concept: str, contents: List[str]) -> Module:
    """A module whose lessons carry the given contents ("" means not yet generated)"""
    return Module(
        concept=concept,
        title=concept,
        lessons=[Lesson(title=f"{concept} lesson {i}", content=c) for i, c in enumerate(contents)],
    )


def build_course_service(
    llm: Optional[FakeLLM] = None,
    storage: Optional[InMemoryCourseStorage] = None,
    cost_storage: Optional[FakeCostStorage] = None,
) -> CourseService:
    return CourseService(
        storage=storage or InMemoryCourseStorage(),
        generator=GenerationService(llm=llm or FakeLLM()),
        events=CourseEventBus(),
        locks=GenerationLocks(),
        tasks=BackgroundTaskTracker(),
        costs=CostService(cost_storage=cost_storage or FakeCostStorage()),
    )
