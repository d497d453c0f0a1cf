import asyncio

import pytest

from clients import s3_client
from services import tts_service as tts_module
from services.tts_service import TTSService, estimate_cost, preprocess_text_for_tts, simplify_math_for_speech
from tests.fakes import InMemoryCourseStorage, build_course_service, make_course, module_with_lessons
from utils.exceptions import StorageError, ValidationError


def test_markdown_becomes_plain_sentences():
    text = (
        "# Attention\n\n"
        "The **query** and `key` vectors are compared with $\\frac{QK}{d}$.\n\n"
        "```python\nscores = q @ k.T\n```\n\n"
        "See [the paper](https://arxiv.org/abs/1706.03762)"
    )
    assert preprocess_text_for_tts(text) == (
        "Attention. The query and key vectors are compared with QK over d. See the paper."
    )


def test_math_symbols_are_spoken():
    assert simplify_math_for_speech("\\alpha^2 \\leq \\sqrt{x}") == (
        "alpha to the power of 2 less than or equal to square root of x"
    )
    assert simplify_math_for_speech("h_t") == "h sub t"


def test_long_text_is_truncated():
    processed = preprocess_text_for_tts("word " * 2000, max_length=100)
    assert len(processed) == 103
    assert processed.endswith("...")


def test_cost_is_per_million_characters():
    assert estimate_cost("x" * 1_000_000) == pytest.approx(tts_module.TTS_COST_PER_MILLION_CHARS)


def _tts_service():
    storage = InMemoryCourseStorage()
    storage.create_course(make_course(modules=[module_with_lessons("A", ["Self-attention relates tokens.", ""])]))
    return TTSService(build_course_service(storage=storage))


def test_cached_audio_is_served_without_synthesis(monkeypatch):
    async def exists(key):
        return True

    monkeypatch.setattr(tts_module, "object_exists_async", exists)
    service = _tts_service()
    monkeypatch.setattr(service, "_synthesize", lambda *args: pytest.fail("synthesized a cached lesson"))

    result = asyncio.run(service.synthesize_lesson("user-1", "course-1", 0, 0))

    assert result.cached is True
    assert result.estimated_cost == 0
    assert result.audio_url.endswith("audio/lessons/course-1/0-0.mp3")


def test_new_audio_is_uploaded(monkeypatch):
    uploads = []

    async def exists(key):
        return False

    async def upload(key, data, content_type="application/octet-stream"):
        uploads.append((key, data, content_type))
        return True

    monkeypatch.setattr(tts_module, "object_exists_async", exists)
    monkeypatch.setattr(tts_module, "upload_with_retry", upload)
    service = _tts_service()
    monkeypatch.setattr(service, "_synthesize", lambda text, language, slow: b"ID3 audio")

    result = asyncio.run(service.synthesize_lesson("user-1", "course-1", 0, 0, language="en"))

    assert result.cached is False
    assert result.characters > 0
    assert result.metadata == {"language": "en", "slow": False, "bytes": 9}
    assert uploads == [("audio/lessons/course-1/0-0.mp3", b"ID3 audio", "audio/mpeg")]


def test_failed_upload_is_a_storage_error(monkeypatch):
    async def exists(key):
        return False

    async def upload(key, data, content_type="application/octet-stream"):
        return False

    monkeypatch.setattr(tts_module, "object_exists_async", exists)
    monkeypatch.setattr(tts_module, "upload_with_retry", upload)
    service = _tts_service()
    monkeypatch.setattr(service, "_synthesize", lambda text, language, slow: b"ID3 audio")

    with pytest.raises(StorageError):
        asyncio.run(service.synthesize_lesson("user-1", "course-1", 0, 0))


def test_lesson_without_content_cannot_be_narrated():
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(_tts_service().synthesize_lesson("user-1", "course-1", 0, 1))
    assert exc_info.value.error_code == "LESSON_NOT_READY"


def test_upload_retries_with_exponential_backoff(monkeypatch):
    attempts = []
    sleeps = []

    def flaky_upload(key, data, content_type):
        attempts.append(key)
        return len(attempts) == 3

    async def no_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(s3_client, "upload_bytes_to_s3", flaky_upload)
    monkeypatch.setattr(s3_client.asyncio, "sleep", no_sleep)

    assert asyncio.run(s3_client.upload_with_retry("audio/lessons/c/0-0.mp3", b"data")) is True
    assert len(attempts) == 3
    assert sleeps == [2, 4]


def test_upload_gives_up_after_three_attempts(monkeypatch):
    sleeps = []

    async def no_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(s3_client, "upload_bytes_to_s3", lambda key, data, content_type: False)
    monkeypatch.setattr(s3_client.asyncio, "sleep", no_sleep)

    assert asyncio.run(s3_client.upload_with_retry("audio/lessons/c/0-0.mp3", b"data")) is False
    assert sleeps == [2, 4]


def test_audio_key_layout():
    assert s3_client.build_audio_key("c1", 2, 3) == "audio/lessons/c1/2-3.mp3"
    assert s3_client.build_course_audio_prefix("c1") == "audio/lessons/c1/"
