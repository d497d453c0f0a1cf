from services.generation_service import GenerationService
from services.event_bus import CourseEventBus, CourseEvent
from services.cost_service import CostService
from services.course_service import CourseService
from services.paper_service import PaperService
from services.chat_service import ChatService
from services.tts_service import TTSService

__all__ = [
    'GenerationService',
    'CourseEventBus',
    'CourseEvent',
    'CostService',
    'CourseService',
    'PaperService',
    'ChatService',
    'TTSService'
]
