"""
Model configuration and switching for the course pipeline.
Each pipeline stage asks for a model by usage; the provider and model come from the environment.
"""

import os
from typing import Dict, Any, List, Optional
from enum import Enum

from dotenv import load_dotenv

load_dotenv()


class ModelProvider(str, Enum):
    GEMINI = "gemini"
    GROK = "grok"


class ModelUsage(str, Enum):
    PDF_EXTRACTION = "pdf_extraction"
    CONCEPT_EXTRACTION = "concept_extraction"
    LESSON_TITLES = "lesson_titles"
    LESSON_GENERATION = "lesson_generation"
    CHAT = "chat"


# Model defaults per provider, overridable through env
MODEL_CONFIGS: Dict[ModelProvider, Dict[str, Any]] = {
    ModelProvider.GEMINI: {
        "api_key_env": "GEMINI_API_KEY",
        "large_model_env": "GEMINI_LARGE_MODEL",
        "large_model": "gemini-2.5-flash",
        "fast_model_env": "GEMINI_FAST_MODEL",
        "fast_model": "gemini-2.5-flash-lite",
        "max_tokens": 8192,
        "supports_files": True,
    },
    ModelProvider.GROK: {
        "api_key_env": "XAI_API_KEY",
        "large_model_env": "GROK_LARGE_MODEL",
        "large_model": "grok-3-mini",
        "fast_model_env": "GROK_FAST_MODEL",
        "fast_model": "grok-3-mini",
        "max_tokens": 8192,
        "supports_files": False,
    },
}

PDF_EXTRACTION_MODEL_ENV = "GEMINI_PDF_EXTRACTION_MODEL"
DEFAULT_PDF_EXTRACTION_MODEL = "gemini-2.5-flash"

# Usage -> (model size, temperature)
USAGE_SETTINGS: Dict[ModelUsage, Dict[str, Any]] = {
    ModelUsage.PDF_EXTRACTION: {"size": "pdf", "temperature": 0.1},
    ModelUsage.CONCEPT_EXTRACTION: {"size": "large", "temperature": 0.3},
    ModelUsage.LESSON_TITLES: {"size": "large", "temperature": 0.5},
    ModelUsage.LESSON_GENERATION: {"size": "fast", "temperature": 0.7},
    ModelUsage.CHAT: {"size": "fast", "temperature": 0.7},
}


class ModelConfig:
    """Model configuration manager"""

    @staticmethod
    def get_default_provider() -> ModelProvider:
        value = os.getenv("LLM_DEFAULT_PROVIDER", ModelProvider.GEMINI.value).lower()
        try:
            return ModelProvider(value)
        except ValueError:
            return ModelProvider.GEMINI

    @staticmethod
    def get_provider_for_usage(usage: ModelUsage) -> ModelProvider:
        # Only Gemini accepts raw PDF input
        if usage == ModelUsage.PDF_EXTRACTION:
            return ModelProvider.GEMINI
        return ModelConfig.get_default_provider()

    @staticmethod
    def get_model(usage: ModelUsage, provider: Optional[ModelProvider] = None) -> str:
        """Resolve the model name for a usage on a provider"""
        provider = provider or ModelConfig.get_provider_for_usage(usage)
        size = USAGE_SETTINGS[usage]["size"]
        if size == "pdf":
            return os.getenv(PDF_EXTRACTION_MODEL_ENV, DEFAULT_PDF_EXTRACTION_MODEL)
        config = MODEL_CONFIGS[provider]
        return os.getenv(config[f"{size}_model_env"], config[f"{size}_model"])

    @staticmethod
    def get_config(usage: ModelUsage, provider: Optional[ModelProvider] = None) -> Dict[str, Any]:
        """Full call configuration for a usage"""
        provider = provider or ModelConfig.get_provider_for_usage(usage)
        return {
            "provider": provider,
            "model": ModelConfig.get_model(usage, provider),
            "temperature": USAGE_SETTINGS[usage]["temperature"],
            "max_tokens": MODEL_CONFIGS[provider]["max_tokens"],
        }

    @staticmethod
    def is_provider_configured(provider: ModelProvider) -> bool:
        return bool(os.getenv(MODEL_CONFIGS[provider]["api_key_env"]))

    @staticmethod
    def get_available_providers() -> List[ModelProvider]:
        return [p for p in ModelProvider if ModelConfig.is_provider_configured(p)]

    @staticmethod
    def describe() -> List[Dict[str, Any]]:
        """Model selection per usage, for the /models endpoint"""
        rows = []
        for usage in ModelUsage:
            config = ModelConfig.get_config(usage)
            rows.append({
                "usage": usage.value,
                "provider": config["provider"].value,
                "model": config["model"],
                "temperature": config["temperature"],
                "available": ModelConfig.is_provider_configured(config["provider"]),
            })
        return rows
