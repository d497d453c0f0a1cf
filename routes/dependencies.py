"""
Shared service instances for the routers.
One CourseService per process: its lock registry, task tracker and event bus must be shared by every request.
"""

from typing import Optional

from services.chat_service import ChatService
from services.course_service import CourseService
from services.paper_service import PaperService
from services.tts_service import TTSService

_course_service: Optional[CourseService] = None
_paper_service: Optional[PaperService] = None
_chat_service: Optional[ChatService] = None
_tts_service: Optional[TTSService] = None


def get_course_service() -> CourseService:
    global _course_service
    if _course_service is None:
        _course_service = CourseService()
    return _course_service


def get_paper_service() -> PaperService:
    global _paper_service
    if _paper_service is None:
        _paper_service = PaperService(generator=get_course_service().generator)
    return _paper_service


def get_chat_service() -> ChatService:
    global _chat_service
    if _chat_service is None:
        course_service = get_course_service()
        _chat_service = ChatService(course_service, llm=course_service.generator.llm)
    return _chat_service


def get_tts_service() -> TTSService:
    global _tts_service
    if _tts_service is None:
        _tts_service = TTSService(get_course_service())
    return _tts_service
