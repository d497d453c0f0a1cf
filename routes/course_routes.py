"""
FastAPI routes for courses: reading, navigation, progress, status and live events.
Opening a course or a lesson schedules background generation and returns immediately.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from typing import Any, Dict, Optional
import asyncio
import json
import logging

from models.course_models import Course
from routes.dependencies import (
    get_course_service, get_chat_service, get_tts_service,
)
from services.chat_service import ChatService
from services.course_service import CourseService
from services.tts_service import TTSService
from utils.exceptions import PaperTutorError
from utils.model_config import ModelConfig

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["courses"])

SSE_HEARTBEAT_SECONDS = 15.0


def course_to_response(course: Course) -> Dict[str, Any]:
    """Course JSON without the full paper text"""
    return course.model_dump(mode="json", exclude={"paper_content"})


def _sse_event(data: dict) -> str:
    """Format a dict as an SSE data line."""
    return f"data: {json.dumps(data, default=str)}\n\n"


def _sse_error_event(exc: Exception, phase: str = "stream", context: Optional[dict] = None) -> str:
    """Build a structured SSE error event from an exception."""
    error_code = "INTERNAL_ERROR"
    status_code = 500
    message = str(exc)
    if isinstance(exc, PaperTutorError):
        error_code = exc.error_code
        status_code = exc.status_code
        message = exc.message
        context = {**exc.context, **(context or {})}
    return _sse_event({
        "type": "error",
        "error": error_code,
        "message": message,
        "status_code": status_code,
        "phase": phase,
        "context": context or {},
    })


# Course Endpoints
@router.get("/users/{user_id}/courses")
async def list_user_courses(user_id: str, course_service: CourseService = Depends(get_course_service)):
    """List all courses for a user, with estimated generation cost"""
    courses = course_service.list_courses_with_costs(user_id)
    return {
        "user_id": user_id,
        "course_count": len(courses),
        "courses": courses
    }


@router.get("/courses/{course_id}")
async def get_course(course_id: str, user_id: str, course_service: CourseService = Depends(get_course_service)):
    """
    Retrieve a course with its modules and lessons.

    Also schedules the next empty lesson and, if some modules still have
    no lessons, the title backfill.
    """
    course = await course_service.open_course(user_id, course_id)
    return {"course": course_to_response(course)}


@router.get("/courses/{course_id}/status")
async def get_course_status(course_id: str, user_id: str, course_service: CourseService = Depends(get_course_service)):
    """Per-module lesson counts and how many lessons have content"""
    return course_service.get_course_status(user_id, course_id)


@router.get("/courses/{course_id}/generation-status")
async def get_generation_status(course_id: str, user_id: str, course_service: CourseService = Depends(get_course_service)):
    """Lessons being generated right now and the state of background tasks"""
    return course_service.get_generation_status(user_id, course_id)


@router.post("/courses/{course_id}/generation/retry", status_code=202)
async def retry_generation(course_id: str, user_id: str, course_service: CourseService = Depends(get_course_service)):
    """Re-run the next-lesson scheduler, e.g. after a failed background task"""
    action = await course_service.retry_generation(user_id, course_id)
    return {"course_id": course_id, "scheduled": action.model_dump()}


@router.get("/courses/{course_id}/modules/{module_index}/lessons/{lesson_index}")
async def get_lesson(
    course_id: str,
    module_index: int,
    lesson_index: int,
    user_id: str,
    course_service: CourseService = Depends(get_course_service),
):
    """
    Retrieve one lesson.

    An empty lesson is scheduled for generation (generating=true); listen on
    /events for lesson_content_generated. The following lesson is prepared
    speculatively.
    """
    result = await course_service.open_lesson(user_id, course_id, module_index, lesson_index)
    result["lesson"] = result["lesson"].model_dump(mode="json")
    return result


@router.post("/courses/{course_id}/modules/{module_index}/lessons/{lesson_index}/complete")
async def complete_lesson(
    course_id: str,
    module_index: int,
    lesson_index: int,
    user_id: str,
    course_service: CourseService = Depends(get_course_service),
):
    """Mark a lesson complete and prepare the next one"""
    lesson = await course_service.complete_lesson(user_id, course_id, module_index, lesson_index)
    return {
        "success": True,
        "module_index": module_index,
        "lesson_index": lesson_index,
        "completed_at": lesson.completed_at,
    }


@router.get("/courses/{course_id}/cost")
async def get_course_cost(course_id: str, user_id: str, course_service: CourseService = Depends(get_course_service)):
    """Estimated LLM spend for a course"""
    return course_service.get_course_cost(user_id, course_id)


@router.delete("/courses/{course_id}")
async def delete_course(
    course_id: str,
    user_id: str,
    course_service: CourseService = Depends(get_course_service),
    chat_service: ChatService = Depends(get_chat_service),
    tts_service: TTSService = Depends(get_tts_service),
):
    """Delete a course with its chat history and cached narration"""
    await course_service.delete_course(user_id, course_id)

    # Course is gone either way; leftovers are only logged
    try:
        await chat_service.clear_course_history(user_id, course_id)
    except Exception as e:
        logger.warning(f"Chat cleanup failed for deleted course {course_id}: {e}")
    try:
        await tts_service.delete_audio_cache(course_id)
    except Exception as e:
        logger.warning(f"Audio cleanup failed for deleted course {course_id}: {e}")

    return {"success": True, "message": "Course deleted"}


# SSE Streaming Endpoints
@router.get("/courses/{course_id}/events")
async def stream_course_events(
    course_id: str,
    user_id: str,
    request: Request,
    course_service: CourseService = Depends(get_course_service),
):
    """
    Live generation events for a course (Server-Sent Events).

    Event types: lesson_titles_generated, lesson_content_generated,
    generation_started, generation_failed. A comment line is sent every
    15s to keep proxies from closing the connection.
    """
    course_service.get_course(user_id, course_id)
    queue = course_service.events.subscribe(course_id)

    async def event_generator():
        try:
            yield _sse_event({"type": "connected", "course_id": course_id})
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=SSE_HEARTBEAT_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield _sse_event(event)
        finally:
            course_service.events.unsubscribe(course_id, queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/models")
async def get_available_models():
    """Model selected for each pipeline stage"""
    return {
        "default_provider": ModelConfig.get_default_provider().value,
        "models": ModelConfig.describe(),
    }
