# Course Generation Utilities
from .course_storage import (
    CourseStorage,
    ModelCostStorage,
    ChatStorage,
    generate_uuid
)

from .generation_locks import (
    GenerationLocks,
    lesson_key,
    titles_key
)

from .background_tasks import (
    BackgroundTaskTracker,
    TaskRecord,
    TaskStatus
)

from .model_config import (
    ModelConfig,
    ModelProvider,
    ModelUsage,
    MODEL_CONFIGS
)

__all__ = [
    'CourseStorage',
    'ModelCostStorage',
    'ChatStorage',
    'generate_uuid',
    'GenerationLocks',
    'lesson_key',
    'titles_key',
    'BackgroundTaskTracker',
    'TaskRecord',
    'TaskStatus',
    'ModelConfig',
    'ModelProvider',
    'ModelUsage',
    'MODEL_CONFIGS'
]
