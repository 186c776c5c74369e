"""Factory returning configured LLM client implementation."""

from __future__ import annotations

from config.settings import get_settings
from llm.base import BaseLLMClient
from llm.openai_client import OpenAIClient


def build_llm_client() -> BaseLLMClient:
    """Instantiate the configured LLM connector."""

    settings = get_settings()
    if settings.llm_provider == "openai":
        return OpenAIClient()
    if settings.llm_provider == "self_hosted_vllm":
        if not settings.llm_endpoint:
            raise ValueError("Self-hosted LLM endpoint must be configured.")
        return OpenAIClient()
    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")
