import asyncio

import pytest

from clients.llm_client import LLMService
from models.course_models import LLMResponse, TokenUsage
from utils.exceptions import ProviderError, ServiceUnavailableError
from utils.model_config import ModelConfig, ModelProvider, ModelUsage


class StubProvider:
    def __init__(self, name, available=True, fail=False, chunks=None):
        self.name = name
        self.available = available
        self.fail = fail
        self.chunks = chunks or ["Hello ", "world"]
        self.calls = []

    def is_available(self):
        return self.available

    async def generate(self, prompt, model, temperature, max_tokens, system_prompt=None,
                       file_data=None, mime_type=None):
        self.calls.append({"model": model, "temperature": temperature, "file_data": file_data})
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        return LLMResponse(content=f"from {self.name}", model=model, provider=self.name,
                           usage=TokenUsage(input_tokens=1, output_tokens=1, total_tokens=2))

    async def stream(self, prompt, model, temperature, max_tokens, system_prompt=None):
        self.calls.append({"model": model})
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        for chunk in self.chunks:
            yield chunk


@pytest.fixture(autouse=True)
def gemini_first(monkeypatch):
    monkeypatch.setenv("LLM_DEFAULT_PROVIDER", "gemini")
    for env in ("GEMINI_LARGE_MODEL", "GEMINI_FAST_MODEL", "GROK_LARGE_MODEL", "GROK_FAST_MODEL"):
        monkeypatch.delenv(env, raising=False)


def test_primary_provider_and_usage_settings():
    gemini, grok = StubProvider("gemini"), StubProvider("grok")
    service = LLMService({ModelProvider.GEMINI: gemini, ModelProvider.GROK: grok})

    response = asyncio.run(service.generate("Explain attention", usage=ModelUsage.LESSON_TITLES))

    assert response.content == "from gemini"
    assert gemini.calls[0] == {"model": "gemini-2.5-flash", "temperature": 0.5, "file_data": None}
    assert grok.calls == []


def test_falls_back_to_next_configured_provider():
    gemini, grok = StubProvider("gemini", fail=True), StubProvider("grok")
    service = LLMService({ModelProvider.GEMINI: gemini, ModelProvider.GROK: grok})

    response = asyncio.run(service.generate("Explain attention", usage=ModelUsage.CHAT))

    assert response.provider == "grok"
    assert response.model == "grok-3-mini"


def test_all_providers_failing_raises_provider_error():
    service = LLMService({
        ModelProvider.GEMINI: StubProvider("gemini", fail=True),
        ModelProvider.GROK: StubProvider("grok", fail=True),
    })

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(service.generate("Explain attention", usage=ModelUsage.CHAT))
    assert [e["provider"] for e in exc_info.value.context["errors"]] == ["gemini", "grok"]


def test_no_configured_provider_is_unavailable():
    service = LLMService({ModelProvider.GEMINI: StubProvider("gemini", available=False)})

    with pytest.raises(ServiceUnavailableError):
        asyncio.run(service.generate("Explain attention", usage=ModelUsage.CHAT))


def test_file_input_only_goes_to_file_capable_providers():
    grok = StubProvider("grok")
    service = LLMService({
        ModelProvider.GEMINI: StubProvider("gemini", available=False),
        ModelProvider.GROK: grok,
    })

    with pytest.raises(ServiceUnavailableError):
        asyncio.run(service.generate("Extract", usage=ModelUsage.PDF_EXTRACTION, file_data=b"%PDF"))
    assert grok.calls == []


def test_stream_falls_back_before_first_chunk():
    service = LLMService({
        ModelProvider.GEMINI: StubProvider("gemini", fail=True),
        ModelProvider.GROK: StubProvider("grok", chunks=["a", "b", "c"]),
    })

    async def collect():
        return [chunk async for chunk in service.stream("Hi", usage=ModelUsage.CHAT)]

    assert asyncio.run(collect()) == ["a", "b", "c"]


def test_default_provider_from_environment(monkeypatch):
    monkeypatch.setenv("LLM_DEFAULT_PROVIDER", "grok")
    assert ModelConfig.get_provider_for_usage(ModelUsage.CHAT) == ModelProvider.GROK
    # PDF reading stays on Gemini
    assert ModelConfig.get_provider_for_usage(ModelUsage.PDF_EXTRACTION) == ModelProvider.GEMINI
