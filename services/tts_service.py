"""
Lesson narration with Google text-to-speech (gTTS).
Audio is cached in S3 per lesson; a cached lesson is served without synthesizing again.
"""

import io
import os
import re
import asyncio
import logging
from typing import Optional

from gtts import gTTS

from clients.s3_client import (
    build_audio_key,
    build_course_audio_prefix,
    delete_prefix_async,
    get_s3_url,
    object_exists_async,
    upload_with_retry,
)
from models.course_models import NarrationResult
from services.course_service import CourseService
from utils.exceptions import GenerationError, NotFoundError, StorageError, ValidationError

logger = logging.getLogger(__name__)

TTS_LANGUAGE = os.getenv("TTS_LANGUAGE", "en")
TTS_COST_PER_MILLION_CHARS = float(os.getenv("TTS_COST_PER_MILLION_CHARS", "16"))
MAX_TTS_CHARS = 5000

_MATH_WORDS = [
    (r"\\sqrt", "square root of "),
    (r"\\sum", "sum "),
    (r"\\int", "integral "),
    (r"\\partial", "partial "),
    (r"\\nabla", "nabla "),
    (r"\\theta", "theta "),
    (r"\\alpha", "alpha "),
    (r"\\beta", "beta "),
    (r"\\gamma", "gamma "),
    (r"\\delta", "delta "),
    (r"\\epsilon", "epsilon "),
    (r"\\sigma", "sigma "),
    (r"\\mu", "mu "),
    (r"\\lambda", "lambda "),
    (r"\\pi", "pi "),
    (r"\\infty", "infinity "),
    (r"\\cdot", " times "),
    (r"\\times", " times "),
    (r"\\leq", " less than or equal to "),
    (r"\\geq", " greater than or equal to "),
    (r"\\neq", " not equal to "),
    (r"\\approx", " approximately "),
]


def simplify_math_for_speech(math: str) -> str:
    """Read LaTeX aloud: fractions, powers, subscripts and common symbols become words."""
    simplified = re.sub(r"\\frac\{([^}]+)\}\{([^}]+)\}", r"\1 over \2", math)
    simplified = simplified.replace("^", " to the power of ")
    simplified = simplified.replace("_", " sub ")
    for pattern, words in _MATH_WORDS:
        simplified = re.sub(pattern + r"(?![a-zA-Z])", words, simplified)
    # Remaining commands and grouping braces carry no spoken meaning
    simplified = re.sub(r"\\[a-zA-Z]+", " ", simplified)
    simplified = re.sub(r"[{}]", " ", simplified)
    return " ".join(simplified.split())


def _heading_to_sentence(match: re.Match) -> str:
    title = match.group(2).strip()
    return title if re.search(r"[.!?]$", title) else f"{title}."


def preprocess_text_for_tts(text: str, max_length: int = MAX_TTS_CHARS) -> str:
    """Turn lesson markdown into plain sentences suitable for speech."""
    processed = re.sub(r"```[\s\S]*?```", "", text)
    processed = re.sub(r"!\[[^\]]*\]\([^)]+\)", "", processed)
    processed = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", processed)
    processed = re.sub(r"`([^`]+)`", r"\1", processed)

    processed = re.sub(r"\*\*([^*]+)\*\*", r"\1", processed)
    processed = re.sub(r"\*([^*]+)\*", r"\1", processed)
    processed = re.sub(r"__([^_]+)__", r"\1", processed)
    processed = re.sub(r"(?<!\w)_([^_]+)_(?!\w)", r"\1", processed)

    processed = re.sub(r"^(#{1,6})\s+(.+)$", _heading_to_sentence, processed, flags=re.MULTILINE)

    processed = re.sub(r"\$\$([^$]+)\$\$", lambda m: simplify_math_for_speech(m.group(1)), processed)
    processed = re.sub(r"\$([^$]+)\$", lambda m: simplify_math_for_speech(m.group(1)), processed)

    # Paragraph breaks become sentence breaks, all other whitespace collapses
    paragraphs = [" ".join(p.split()) for p in re.split(r"\n\s*\n", processed)]
    processed = ". ".join(p.rstrip(".") for p in paragraphs if p).strip()
    if processed and not re.search(r"[.!?]$", processed):
        processed += "."

    if len(processed) > max_length:
        logger.warning(f"Text truncated to {max_length} characters for TTS")
        processed = processed[:max_length] + "..."
    return processed


def estimate_cost(text: str) -> float:
    return (len(text) / 1_000_000) * TTS_COST_PER_MILLION_CHARS


class TTSService:
    def __init__(self, course_service: CourseService):
        self.course_service = course_service

    def _synthesize(self, text: str, language: str, slow: bool) -> bytes:
        buffer = io.BytesIO()
        gTTS(text=text, lang=language, slow=slow).write_to_fp(buffer)
        return buffer.getvalue()

    async def check_audio_exists(self, course_id: str, module_index: int, lesson_index: int) -> Optional[str]:
        key = build_audio_key(course_id, module_index, lesson_index)
        if await object_exists_async(key):
            return get_s3_url(key)
        return None

    async def synthesize_lesson(
        self,
        user_id: str,
        course_id: str,
        module_index: int,
        lesson_index: int,
        language: Optional[str] = None,
        slow: bool = False,
    ) -> NarrationResult:
        course = self.course_service.get_course(user_id, course_id)
        lesson = course.get_lesson(module_index, lesson_index)
        if lesson is None:
            raise NotFoundError(
                "Lesson not found", error_code="LESSON_NOT_FOUND",
                context={"course_id": course_id, "module_index": module_index, "lesson_index": lesson_index},
            )
        if not lesson.has_content:
            raise ValidationError("Lesson content has not been generated yet", error_code="LESSON_NOT_READY")

        cached_url = await self.check_audio_exists(course_id, module_index, lesson_index)
        if cached_url:
            logger.info(f"Serving cached narration for {course_id} {module_index}-{lesson_index}")
            return NarrationResult(audio_url=cached_url, cached=True)

        text = preprocess_text_for_tts(f"{lesson.title}.\n\n{lesson.content}")
        try:
            audio = await asyncio.to_thread(self._synthesize, text, language or TTS_LANGUAGE, slow)
        except Exception as e:
            logger.error(f"Speech synthesis failed for {course_id} {module_index}-{lesson_index}: {e}")
            raise GenerationError("Speech synthesis failed", error_code="TTS_FAILED") from e

        key = build_audio_key(course_id, module_index, lesson_index)
        if not await upload_with_retry(key, audio, content_type="audio/mpeg"):
            raise StorageError("Failed to upload narration audio", context={"key": key})

        return NarrationResult(
            audio_url=get_s3_url(key),
            cached=False,
            characters=len(text),
            estimated_cost=estimate_cost(text),
            metadata={"language": language or TTS_LANGUAGE, "slow": slow, "bytes": len(audio)},
        )

    async def delete_audio_cache(self, course_id: str) -> int:
        return await delete_prefix_async(build_course_audio_prefix(course_id))
