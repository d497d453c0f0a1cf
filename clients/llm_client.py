"""
LLM providers for the course pipeline: Google Gemini and xAI Grok.

Every call returns an LLMResponse with the text, the model that produced it
and its token usage. LLMService picks the provider and model per usage and
falls back to the other configured provider when a call fails.
"""

import os
import logging
from typing import AsyncIterator, Dict, List, Optional

import google.generativeai as genai
from dotenv import load_dotenv
from openai import AsyncOpenAI

from models.course_models import LLMResponse, TokenUsage
from utils.exceptions import ProviderError, ServiceUnavailableError
from utils.model_config import ModelConfig, ModelProvider, ModelUsage, MODEL_CONFIGS

load_dotenv()

logger = logging.getLogger(__name__)

XAI_BASE_URL = os.getenv("XAI_BASE_URL", "https://api.x.ai/v1")


class GeminiProvider:
    """Gemini via google-generativeai. The only provider that accepts raw PDF input."""

    name = ModelProvider.GEMINI

    def __init__(self):
        self._configured = False

    def is_available(self) -> bool:
        return bool(os.getenv("GEMINI_API_KEY"))

    def _model(self, model: str, system_prompt: Optional[str]):
        if not self._configured:
            genai.configure(api_key=os.getenv("GEMINI_API_KEY"))
            self._configured = True
        if system_prompt:
            return genai.GenerativeModel(model, system_instruction=system_prompt)
        return genai.GenerativeModel(model)

    async def generate(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: Optional[str] = None,
        file_data: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> LLMResponse:
        contents = [prompt]
        if file_data is not None:
            contents.append({"mime_type": mime_type or "application/pdf", "data": file_data})

        response = await self._model(model, system_prompt).generate_content_async(
            contents,
            generation_config=genai.types.GenerationConfig(
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
        )

        usage = None
        metadata = getattr(response, "usage_metadata", None)
        if metadata is not None:
            usage = TokenUsage(
                input_tokens=metadata.prompt_token_count or 0,
                output_tokens=metadata.candidates_token_count or 0,
                total_tokens=metadata.total_token_count or 0,
            )
        return LLMResponse(content=response.text, model=model, provider=self.name.value, usage=usage)

    async def stream(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[str]:
        response = await self._model(model, system_prompt).generate_content_async(
            prompt,
            generation_config=genai.types.GenerationConfig(
                temperature=temperature,
                max_output_tokens=max_tokens,
            ),
            stream=True,
        )
        async for chunk in response:
            try:
                text = chunk.text
            except ValueError:
                # Chunk without text parts (safety or finish metadata)
                continue
            if text:
                yield text


class GrokProvider:
    """Grok through xAI's OpenAI-compatible endpoint."""

    name = ModelProvider.GROK

    def __init__(self):
        self._client: Optional[AsyncOpenAI] = None

    def is_available(self) -> bool:
        return bool(os.getenv("XAI_API_KEY"))

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=os.getenv("XAI_API_KEY"), base_url=XAI_BASE_URL)
        return self._client

    def _params(
        self, prompt: str, model: str, temperature: float, max_tokens: int, system_prompt: Optional[str]
    ) -> Dict:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        params = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if "grok-3-mini" in model:
            params["reasoning_effort"] = "high"
        return params

    async def generate(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: Optional[str] = None,
        file_data: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> LLMResponse:
        if file_data is not None:
            raise ValueError("Grok provider does not accept file input")

        completion = await self.client.chat.completions.create(
            **self._params(prompt, model, temperature, max_tokens, system_prompt)
        )
        usage = None
        if completion.usage is not None:
            usage = TokenUsage(
                input_tokens=completion.usage.prompt_tokens or 0,
                output_tokens=completion.usage.completion_tokens or 0,
                total_tokens=completion.usage.total_tokens or 0,
            )
        return LLMResponse(
            content=completion.choices[0].message.content or "",
            model=model,
            provider=self.name.value,
            usage=usage,
        )

    async def stream(
        self,
        prompt: str,
        model: str,
        temperature: float,
        max_tokens: int,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[str]:
        stream = await self.client.chat.completions.create(
            **self._params(prompt, model, temperature, max_tokens, system_prompt),
            stream=True,
        )
        async for chunk in stream:
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content


class LLMService:
    """Routes a request to the provider configured for its usage, with fallback."""

    def __init__(self, providers: Optional[Dict[ModelProvider, object]] = None):
        self.providers = providers or {
            ModelProvider.GEMINI: GeminiProvider(),
            ModelProvider.GROK: GrokProvider(),
        }

    def _provider_order(self, usage: ModelUsage, needs_files: bool = False) -> List[ModelProvider]:
        primary = ModelConfig.get_provider_for_usage(usage)
        order = [primary] + [p for p in self.providers if p != primary]
        if needs_files:
            order = [p for p in order if MODEL_CONFIGS[p]["supports_files"]]
        return [p for p in order if p in self.providers and self.providers[p].is_available()]

    async def generate(
        self,
        prompt: str,
        usage: ModelUsage,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        file_data: Optional[bytes] = None,
        mime_type: Optional[str] = None,
    ) -> LLMResponse:
        """Generate with the usage's provider, falling back to the remaining configured ones."""
        order = self._provider_order(usage, needs_files=file_data is not None)
        if not order:
            raise ServiceUnavailableError(
                "No LLM provider is configured", context={"usage": usage.value}
            )

        errors = []
        for provider_type in order:
            config = ModelConfig.get_config(usage, provider_type)
            try:
                response = await self.providers[provider_type].generate(
                    prompt,
                    model=config["model"],
                    temperature=temperature if temperature is not None else config["temperature"],
                    max_tokens=config["max_tokens"],
                    system_prompt=system_prompt,
                    file_data=file_data,
                    mime_type=mime_type,
                )
                logger.info(
                    f"{usage.value} via {provider_type.value}/{config['model']}"
                    f" ({response.usage.total_tokens if response.usage else 0} tokens)"
                )
                return response
            except Exception as e:
                logger.warning(f"{provider_type.value} failed for {usage.value}: {e}")
                errors.append({"provider": provider_type.value, "error": str(e)})

        raise ProviderError(
            f"All LLM providers failed for {usage.value}",
            context={"usage": usage.value, "errors": errors},
        )

    async def stream(
        self,
        prompt: str,
        usage: ModelUsage,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Stream text chunks. Falls back only if a provider fails before its first chunk."""
        order = self._provider_order(usage)
        if not order:
            raise ServiceUnavailableError(
                "No LLM provider is configured", context={"usage": usage.value}
            )

        errors = []
        for provider_type in order:
            config = ModelConfig.get_config(usage, provider_type)
            started = False
            try:
                async for text in self.providers[provider_type].stream(
                    prompt,
                    model=config["model"],
                    temperature=temperature if temperature is not None else config["temperature"],
                    max_tokens=config["max_tokens"],
                    system_prompt=system_prompt,
                ):
                    started = True
                    yield text
                return
            except Exception as e:
                if started:
                    raise ProviderError(
                        f"{provider_type.value} stream interrupted: {e}",
                        context={"usage": usage.value},
                    ) from e
                logger.warning(f"{provider_type.value} stream failed for {usage.value}: {e}")
                errors.append({"provider": provider_type.value, "error": str(e)})

        raise ProviderError(
            f"All LLM providers failed to stream {usage.value}",
            context={"usage": usage.value, "errors": errors},
        )
