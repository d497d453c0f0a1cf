"""
Unified exception hierarchy for PaperTutor.

All domain exceptions inherit from PaperTutorError and carry:
- error_code: machine-readable string (e.g. "COURSE_NOT_FOUND")
- status_code: HTTP status code
- message: human-readable description
- context: optional structured metadata dict
"""

from typing import Optional, Dict, Any


class PaperTutorError(Exception):
    """Base exception for all PaperTutor domain errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
        }


class ValidationError(PaperTutorError):
    """400-level validation / bad-request errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_REQUEST",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=400, context=context)


class NotFoundError(PaperTutorError):
    """404 resource-not-found errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "COURSE_NOT_FOUND",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=404, context=context)


class GenerationError(PaperTutorError):
    """Content provider failed or returned something unusable."""

    def __init__(
        self,
        message: str,
        error_code: str = "GENERATION_FAILED",
        context: Optional[Dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message, error_code=error_code, status_code=status_code, context=context)


class ProviderError(GenerationError):
    """Every configured LLM provider failed for a request."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code="PROVIDER_FAILED", context=context, status_code=502)


class LessonGenerationError(GenerationError):
    """Failed to generate a single lesson."""

    def __init__(
        self,
        module_index: int,
        lesson_index: int,
        message: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.module_index = module_index
        self.lesson_index = lesson_index
        ctx = {"module_index": module_index, "lesson_index": lesson_index}
        if context:
            ctx.update(context)
        super().__init__(
            f"Lesson {module_index}.{lesson_index} generation failed: {message}",
            error_code="LESSON_GENERATION_FAILED",
            context=ctx,
        )


class StorageError(PaperTutorError):
    """500-level database / storage failures."""

    def __init__(
        self,
        message: str,
        error_code: str = "STORAGE_ERROR",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=500, context=context)


class ServiceUnavailableError(PaperTutorError):
    """An optional collaborator (LLM key, TTS storage) is not configured."""

    def __init__(
        self,
        message: str,
        error_code: str = "SERVICE_UNAVAILABLE",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, status_code=503, context=context)
