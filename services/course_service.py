"""
Core course service.
Plans the syllabus from the learner's knowledge gaps and fills it in
incrementally: module 0 titles eagerly, remaining titles and lesson
content in the background as the learner navigates.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from models.course_models import (
    ConceptImportance, Course, GenerationOutcome, Importance, Lesson, LessonTitles, Module,
    NextAction, NextActionType, PaperDocument, TokenUsage, MAX_KNOWLEDGE_RATING,
    describe_knowledge_level,
)
from services.cost_service import CostService
from services.event_bus import CourseEvent, CourseEventBus
from services.generation_service import GenerationService, strip_markdown_emphasis
from utils.background_tasks import BackgroundTaskTracker, TaskRecord
from utils.course_storage import CourseStorage, generate_uuid
from utils.exceptions import (
    PaperTutorError, NotFoundError, ValidationError, GenerationError, LessonGenerationError,
)
from utils.generation_locks import GenerationLocks, lesson_key, titles_key

logger = logging.getLogger(__name__)


def select_knowledge_gaps(concepts: List[str], ratings: Dict[str, int]) -> List[Tuple[str, int]]:
    """
    Concepts rated below MAX_KNOWLEDGE_RATING, in concept-list order, with their level.
    Unrated concepts count as level 0.
    """
    gaps = []
    for concept in concepts:
        level = ratings.get(concept, 0)
        if level < MAX_KNOWLEDGE_RATING:
            gaps.append((concept, level))
    return gaps


def determine_next_action(course: Course) -> NextAction:
    """First empty lesson in (module, lesson) order, else backfill if a module has no lessons."""
    for module_index, module in enumerate(course.modules):
        for lesson_index, lesson in enumerate(module.lessons):
            if not lesson.has_content:
                return NextAction(
                    action=NextActionType.GENERATE_LESSON,
                    module_index=module_index,
                    lesson_index=lesson_index,
                )
    if any(not module.lessons for module in course.modules):
        return NextAction(action=NextActionType.BACKFILL_TITLES)
    return NextAction(action=NextActionType.COMPLETE)


def next_lesson_position(course: Course, module_index: int, lesson_index: int) -> Optional[Tuple[int, int]]:
    """Immediate successor: next lesson in the module, else first lesson of the next module."""
    module = course.get_module(module_index)
    if module is None:
        return None
    if lesson_index + 1 < len(module.lessons):
        return module_index, lesson_index + 1
    following = course.get_module(module_index + 1)
    if following is not None and following.lessons:
        return module_index + 1, 0
    return None


def last_lesson_position(course: Course) -> Optional[Tuple[int, int]]:
    """Position of the last lesson that currently exists in the course."""
    for module_index in range(len(course.modules) - 1, -1, -1):
        lessons = course.modules[module_index].lessons
        if lessons:
            return module_index, len(lessons) - 1
    return None


class CourseService:
    """Main service for the paper-to-course pipeline"""

    def __init__(
        self,
        storage: Optional[CourseStorage] = None,
        generator: Optional[GenerationService] = None,
        events: Optional[CourseEventBus] = None,
        locks: Optional[GenerationLocks] = None,
        tasks: Optional[BackgroundTaskTracker] = None,
        costs: Optional[CostService] = None,
    ):
        self.storage = storage or CourseStorage()
        self.generator = generator or GenerationService()
        self.events = events or CourseEventBus()
        self.locks = locks or GenerationLocks()
        self.tasks = tasks or BackgroundTaskTracker()
        self.tasks.on_failure = self._on_task_failed
        self.costs = costs or CostService()

    # ================================================================
    # Course lookup and creation
    # ================================================================

    def get_course(self, user_id: str, course_id: str) -> Course:
        course = self.storage.get_course(user_id, course_id)
        if course is None:
            raise NotFoundError("Course not found", context={"course_id": course_id})
        return course

    def list_courses(self, user_id: str) -> List[Course]:
        return self.storage.list_courses(user_id)

    async def create_course_from_paper(self, user_id: str, paper: PaperDocument) -> Course:
        """Extract concepts from the paper text and store a course with no modules yet."""
        extraction = await self.generator.extract_concepts(paper.title, paper.text)

        usage: Dict[str, TokenUsage] = dict(paper.token_usage_by_model)
        if extraction.model and extraction.usage:
            usage[extraction.model] = usage.get(extraction.model, TokenUsage()).add(extraction.usage)

        course = Course(
            id=generate_uuid(),
            user_id=user_id,
            title=extraction.title,
            description=extraction.description,
            paper_title=paper.title,
            paper_authors=paper.authors,
            paper_url=paper.pdf_url,
            arxiv_id=paper.arxiv_id,
            paper_content=paper.text,
            extracted_concepts=[c.name for c in extraction.concepts],
            concept_importance={
                c.name: ConceptImportance(importance=c.importance, reasoning=c.reasoning)
                for c in extraction.concepts
            },
            token_usage_by_model=usage,
        )
        self.storage.create_course(course)
        logger.info(f"Created course {course.id} with {len(course.extracted_concepts)} concepts")
        return course

    def get_assessment(self, user_id: str, course_id: str) -> Dict[str, Any]:
        course = self.get_course(user_id, course_id)
        return {
            "course_id": course.id,
            "paper_title": course.paper_title,
            "concepts": [
                {
                    "name": concept,
                    "importance": course.concept_importance.get(concept, ConceptImportance()).importance.value,
                    "reasoning": course.concept_importance.get(concept, ConceptImportance()).reasoning,
                }
                for concept in course.extracted_concepts
            ],
            "knowledge_levels": course.knowledge_levels,
            "syllabus_ready": bool(course.modules),
        }

    # ================================================================
    # Syllabus planning
    # ================================================================

    def _validate_ratings(self, course: Course, ratings: Dict[str, int]) -> None:
        invalid = {k: v for k, v in ratings.items() if not 0 <= v <= MAX_KNOWLEDGE_RATING}
        if invalid:
            raise ValidationError(
                f"Ratings must be between 0 and {MAX_KNOWLEDGE_RATING}",
                error_code="INVALID_RATING",
                context={"invalid": invalid},
            )
        unknown = [k for k in ratings if k not in course.extracted_concepts]
        if unknown:
            logger.warning(f"Ignoring ratings for unknown concepts on course {course.id}: {unknown}")

    async def _plan_lessons(self, course: Course, concept: str) -> Tuple[List[Lesson], Optional[LessonTitles]]:
        """Placeholder lessons for a concept. Peripheral concepts get a single overview."""
        importance = course.importance_of(concept)
        if importance == Importance.PERIPHERAL:
            return [Lesson(title=f"Overview of {concept}")], None

        result = await self.generator.generate_lesson_titles(
            concept,
            describe_knowledge_level(course.knowledge_levels.get(concept)),
            course.paper_title,
            course.paper_content,
            importance=importance,
        )
        return [Lesson(title=title) for title in result.titles], result

    async def generate_syllabus(self, user_id: str, course_id: str, ratings: Dict[str, int]) -> Course:
        """
        One module per concept rated below 3, in concept order.

        Module 0 gets its lesson titles before anything is written, so a
        provider failure leaves the course untouched. The first lesson is
        then scheduled in the background.
        """
        course = self.get_course(user_id, course_id)
        if course.modules:
            raise ValidationError(
                "Course syllabus already exists",
                error_code="SYLLABUS_EXISTS",
                context={"course_id": course_id},
            )
        self._validate_ratings(course, ratings)

        gaps = select_knowledge_gaps(course.extracted_concepts, ratings)
        course.knowledge_levels = {concept: level for concept, level in gaps}
        course.modules = [
            Module(
                concept=concept,
                title=concept,
                description=course.concept_importance.get(concept, ConceptImportance()).reasoning,
            )
            for concept, _ in gaps
        ]

        titles_result = None
        if course.modules:
            first = course.modules[0]
            first.lessons, titles_result = await self._plan_lessons(course, first.concept)

        self.storage.update_course(user_id, course_id, {
            "knowledge_levels": course.knowledge_levels,
            "modules": [m.model_dump(mode="json") for m in course.modules],
        })
        if titles_result is not None:
            self._record_usage(user_id, course_id, titles_result.model, titles_result.usage)

        logger.info(
            f"Planned {len(course.modules)} modules for course {course_id}: {course.planned_concepts}"
        )
        if not course.modules:
            return course

        self.events.emit(course_id, CourseEvent.LESSON_TITLES_GENERATED, {
            "module_index": 0,
            "lesson_titles": [lesson.title for lesson in course.modules[0].lessons],
        })
        self.events.emit(course_id, CourseEvent.GENERATION_STARTED, {
            "module_index": 0,
            "lesson_index": 0,
        })
        self.schedule_lesson_generation(user_id, course_id, 0, 0)
        return course

    # ================================================================
    # Title backfill
    # ================================================================

    async def generate_remaining_lesson_titles(self, user_id: str, course_id: str) -> int:
        """
        Fill lesson titles for modules 1.. that have none. Returns how many
        modules were filled. A failing module is skipped; the failure is
        raised at the end so the background task records it.
        """
        async with self.locks.hold(titles_key(course_id)) as acquired:
            if not acquired:
                return 0

            course = self.get_course(user_id, course_id)
            filled = 0
            failed: List[int] = []
            for module_index, module in enumerate(course.modules):
                if module_index == 0 or module.lessons:
                    continue
                try:
                    lessons, result = await self._plan_lessons(course, module.concept)
                    updated = module.model_copy(update={"lessons": lessons})
                    self.storage.update_module(user_id, course_id, module_index, updated)
                    if result is not None:
                        self._record_usage(user_id, course_id, result.model, result.usage)
                except NotFoundError:
                    raise
                except Exception as e:
                    logger.error(f"Title generation failed for module {module_index} of {course_id}: {e}")
                    failed.append(module_index)
                    continue

                filled += 1
                self.events.emit(course_id, CourseEvent.LESSON_TITLES_GENERATED, {
                    "module_index": module_index,
                    "lesson_titles": [lesson.title for lesson in lessons],
                })

            logger.info(f"Backfilled titles for {filled} modules of course {course_id}")
            if failed:
                raise GenerationError(
                    f"Title generation failed for modules {failed}",
                    error_code="TITLE_GENERATION_FAILED",
                    context={"course_id": course_id, "modules": failed},
                )
            return filled

    # ================================================================
    # Lesson content
    # ================================================================

    async def generate_lesson_content(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int
    ) -> GenerationOutcome:
        """
        Generate one lesson. Returns IN_PROGRESS if another call holds the
        lesson, ALREADY_COMPLETE if it has content. On error nothing is
        written and the error propagates.
        """
        async with self.locks.hold(lesson_key(course_id, module_index, lesson_index)) as acquired:
            if not acquired:
                return GenerationOutcome.IN_PROGRESS

            course = self.get_course(user_id, course_id)
            module = course.get_module(module_index)
            if module is None:
                raise NotFoundError(
                    "Module not found", error_code="MODULE_NOT_FOUND",
                    context={"course_id": course_id, "module_index": module_index},
                )
            lesson = course.get_lesson(module_index, lesson_index)
            if lesson is None:
                raise NotFoundError(
                    "Lesson not found", error_code="LESSON_NOT_FOUND",
                    context={"course_id": course_id, "module_index": module_index, "lesson_index": lesson_index},
                )
            if lesson.has_content:
                return GenerationOutcome.ALREADY_COMPLETE

            previous_lessons = [
                {"title": prior.title, "content": prior.content}
                for prior in module.lessons[:lesson_index]
                if prior.has_content
            ]
            knowledge_level = describe_knowledge_level(course.knowledge_levels.get(module.concept))

            try:
                if course.importance_of(module.concept) == Importance.PERIPHERAL:
                    result = await self.generator.generate_summary_lesson(
                        module.concept, knowledge_level, course.paper_title, course.paper_content,
                    )
                else:
                    result = await self.generator.generate_lesson(
                        module.concept, lesson.title, previous_lessons, knowledge_level,
                        course.paper_title, course.paper_content,
                    )
            except PaperTutorError as e:
                logger.error(f"Lesson {module_index}.{lesson_index} of {course_id} failed: {e.message}")
                raise
            except Exception as e:
                logger.error(f"Lesson {module_index}.{lesson_index} of {course_id} failed: {e}")
                raise LessonGenerationError(module_index, lesson_index, str(e)) from e

            updated = Lesson(
                title=strip_markdown_emphasis(result.title) or lesson.title,
                content=result.content,
                completed_at=lesson.completed_at,
            )
            self.storage.update_lesson(user_id, course_id, module_index, lesson_index, updated)
            self._record_usage(user_id, course_id, result.model, result.usage)

            logger.info(f"Generated lesson {module_index}.{lesson_index} of {course_id}: {updated.title}")
            self.events.emit(course_id, CourseEvent.LESSON_CONTENT_GENERATED, {
                "module_index": module_index,
                "lesson_index": lesson_index,
                "module_title": module.title,
                "lesson": updated.model_dump(mode="json"),
            })
            return GenerationOutcome.GENERATED

    def _record_usage(
        self, user_id: str, course_id: str, model: Optional[str], usage: Optional[TokenUsage]
    ) -> None:
        if model and usage:
            self.storage.add_token_usage(user_id, course_id, model, usage)

    # ================================================================
    # Background scheduling
    # ================================================================

    def schedule_lesson_generation(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int
    ) -> TaskRecord:
        return self.tasks.spawn(
            lesson_key(course_id, module_index, lesson_index),
            "lesson",
            course_id,
            lambda: self.generate_lesson_content(user_id, course_id, module_index, lesson_index),
        )

    def schedule_title_backfill(self, user_id: str, course_id: str) -> TaskRecord:
        return self.tasks.spawn(
            titles_key(course_id),
            "titles",
            course_id,
            lambda: self.generate_remaining_lesson_titles(user_id, course_id),
        )

    def schedule_next_lesson(self, user_id: str, course_id: str) -> TaskRecord:
        return self.tasks.spawn(
            f"{course_id}:next",
            "next_lesson",
            course_id,
            lambda: self.prepare_next_lesson(user_id, course_id),
        )

    async def prepare_next_lesson(self, user_id: str, course_id: str) -> NextAction:
        """Decide what to generate next and schedule it."""
        course = self.get_course(user_id, course_id)
        action = determine_next_action(course)
        if action.action == NextActionType.GENERATE_LESSON:
            self.schedule_lesson_generation(user_id, course_id, action.module_index, action.lesson_index)
        elif action.action == NextActionType.BACKFILL_TITLES:
            self.schedule_title_backfill(user_id, course_id)
        logger.info(f"Next action for course {course_id}: {action.action.value}")
        return action

    async def _on_task_failed(self, record: TaskRecord, error: BaseException) -> None:
        self.events.emit(record.course_id, CourseEvent.GENERATION_FAILED, {
            "task": record.key,
            "kind": record.kind,
            "error": str(error),
        })

    # ================================================================
    # Navigation triggers
    # ================================================================

    async def open_course(self, user_id: str, course_id: str) -> Course:
        course = self.get_course(user_id, course_id)
        if course.modules:
            # Titles for later modules are backfilled only once the scheduler asks for it
            self.schedule_next_lesson(user_id, course_id)
        return course

    async def open_lesson(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int
    ) -> Dict[str, Any]:
        """Return the lesson, scheduling it if empty and speculatively scheduling its successor."""
        course = self.get_course(user_id, course_id)
        lesson = course.get_lesson(module_index, lesson_index)
        if lesson is None:
            raise NotFoundError(
                "Lesson not found", error_code="LESSON_NOT_FOUND",
                context={"course_id": course_id, "module_index": module_index, "lesson_index": lesson_index},
            )

        if not lesson.has_content:
            self.schedule_lesson_generation(user_id, course_id, module_index, lesson_index)

        successor = next_lesson_position(course, module_index, lesson_index)
        if successor is not None and not course.get_lesson(*successor).has_content:
            self.schedule_lesson_generation(user_id, course_id, *successor)

        module = course.modules[module_index]
        return {
            "course_id": course_id,
            "module_index": module_index,
            "lesson_index": lesson_index,
            "module_title": module.title,
            "concept": module.concept,
            "lesson": lesson,
            "generating": not lesson.has_content,
            "next_lesson": (
                {"module_index": successor[0], "lesson_index": successor[1]} if successor else None
            ),
        }

    async def complete_lesson(
        self, user_id: str, course_id: str, module_index: int, lesson_index: int
    ) -> Lesson:
        lesson = self.storage.mark_lesson_complete(user_id, course_id, module_index, lesson_index)
        course = self.get_course(user_id, course_id)
        if last_lesson_position(course) == (module_index, lesson_index):
            self.schedule_title_backfill(user_id, course_id)
        self.schedule_next_lesson(user_id, course_id)
        return lesson

    async def retry_generation(self, user_id: str, course_id: str) -> NextAction:
        return await self.prepare_next_lesson(user_id, course_id)

    # ================================================================
    # Status, costs and deletion
    # ================================================================

    def get_course_status(self, user_id: str, course_id: str) -> Dict[str, Any]:
        course = self.get_course(user_id, course_id)
        modules = []
        for index, module in enumerate(course.modules):
            modules.append({
                "module_index": index,
                "title": module.title,
                "concept": module.concept,
                "lesson_count": len(module.lessons),
                "lessons_with_content": sum(1 for lesson in module.lessons if lesson.has_content),
                "completed_lessons": sum(1 for lesson in module.lessons if lesson.completed_at),
            })
        total = sum(m["lesson_count"] for m in modules)
        with_content = sum(m["lessons_with_content"] for m in modules)
        return {
            "course_id": course_id,
            "modules": modules,
            "total_lessons": total,
            "lessons_with_content": with_content,
            "completed_lessons": sum(m["completed_lessons"] for m in modules),
            "next_action": determine_next_action(course).model_dump(),
        }

    def get_generation_status(self, user_id: str, course_id: str) -> Dict[str, Any]:
        self.get_course(user_id, course_id)
        in_progress = []
        for key in self.locks.active_keys(prefix=f"{course_id}:"):
            parts = key.split(":")
            if len(parts) == 3 and parts[1].isdigit() and parts[2].isdigit():
                in_progress.append({"module_index": int(parts[1]), "lesson_index": int(parts[2])})
        return {
            "course_id": course_id,
            "lessons_in_progress": in_progress,
            "titles_in_progress": self.locks.is_active(titles_key(course_id)),
            "tasks": [record.model_dump(mode="json") for record in self.tasks.for_course(course_id)],
        }

    def get_course_cost(self, user_id: str, course_id: str) -> Dict[str, Any]:
        course = self.get_course(user_id, course_id)
        return {
            "course_id": course_id,
            "estimated_cost": self.costs.get_course_cost(course),
            "token_usage_by_model": {k: v.model_dump() for k, v in course.token_usage_by_model.items()},
        }

    def list_courses_with_costs(self, user_id: str) -> List[Dict[str, Any]]:
        courses = self.list_courses(user_id)
        costs = self.costs.get_costs_for_courses(courses)
        return [
            {
                "id": course.id,
                "title": course.title,
                "description": course.description,
                "paper_title": course.paper_title,
                "arxiv_id": course.arxiv_id,
                "module_count": len(course.modules),
                "created_at": course.created_at,
                "estimated_cost": costs.get(course.id, 0.0),
            }
            for course in courses
        ]

    async def delete_course(self, user_id: str, course_id: str) -> None:
        self.get_course(user_id, course_id)
        self.storage.delete_course(user_id, course_id)
        self.tasks.forget_course(course_id)
        logger.info(f"Deleted course {course_id}")
