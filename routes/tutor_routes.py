"""
FastAPI routes for the lesson tutor chat and lesson narration.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
import logging

from models.course_models import ChatRequest, NarrationRequest
from routes.course_routes import _sse_event, _sse_error_event
from routes.dependencies import get_chat_service, get_tts_service
from services.chat_service import ChatService
from services.tts_service import TTSService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["tutor"])

LESSON_PATH = "/courses/{course_id}/modules/{module_index}/lessons/{lesson_index}"


# Chat Endpoints
@router.get(LESSON_PATH + "/chat")
async def get_chat_history(
    course_id: str,
    module_index: int,
    lesson_index: int,
    user_id: str,
    chat_service: ChatService = Depends(get_chat_service),
):
    """Chat history for a lesson, oldest first"""
    messages = await chat_service.get_history(user_id, course_id, module_index, lesson_index)
    return {"course_id": course_id, "module_index": module_index, "lesson_index": lesson_index, "messages": messages}


@router.post(LESSON_PATH + "/chat")
async def send_chat_message(
    course_id: str,
    module_index: int,
    lesson_index: int,
    request: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """Ask the tutor a question about the lesson"""
    return await chat_service.send_message(request.user_id, course_id, module_index, lesson_index, request.message)


@router.post(LESSON_PATH + "/chat/stream")
async def stream_chat_message(
    course_id: str,
    module_index: int,
    lesson_index: int,
    request: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """
    Ask the tutor and stream the answer as SSE.

    Events: {"type": "chunk", "content": ...} then {"type": "done"},
    or {"type": "error", ...} on failure.
    """
    async def event_generator():
        try:
            async for chunk in chat_service.stream_message(
                request.user_id, course_id, module_index, lesson_index, request.message
            ):
                yield _sse_event({"type": "chunk", "content": chunk})
            yield _sse_event({"type": "done"})
        except Exception as e:
            logger.error(f"Chat stream failed for {course_id} {module_index}-{lesson_index}: {e}")
            yield _sse_error_event(e, phase="chat")

    return StreamingResponse(event_generator(), media_type="text/event-stream")


@router.delete(LESSON_PATH + "/chat")
async def clear_chat_history(
    course_id: str,
    module_index: int,
    lesson_index: int,
    user_id: str,
    chat_service: ChatService = Depends(get_chat_service),
):
    """Clear a lesson's chat history"""
    await chat_service.clear_history(user_id, course_id, module_index, lesson_index)
    return {"success": True, "message": "Chat history cleared"}


# Narration Endpoints
@router.post(LESSON_PATH + "/audio")
async def synthesize_lesson_audio(
    course_id: str,
    module_index: int,
    lesson_index: int,
    request: NarrationRequest,
    tts_service: TTSService = Depends(get_tts_service),
):
    """Narrate a lesson. Cached audio is returned without cost."""
    result = await tts_service.synthesize_lesson(
        request.user_id, course_id, module_index, lesson_index,
        language=request.language, slow=request.slow,
    )
    return result.model_dump()


@router.get(LESSON_PATH + "/audio")
async def get_lesson_audio(
    course_id: str,
    module_index: int,
    lesson_index: int,
    tts_service: TTSService = Depends(get_tts_service),
):
    """Cached narration URL, if the lesson has been narrated"""
    audio_url = await tts_service.check_audio_exists(course_id, module_index, lesson_index)
    return {"exists": audio_url is not None, "audio_url": audio_url}
