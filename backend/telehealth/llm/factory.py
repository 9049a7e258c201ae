"""
Backend selection by settings.LLM_PROVIDER (env LLM_PROVIDER, default "anthropic").

New vendor: add a BaseLLMService subclass with its own `vendor` to
services.py and list it in _backends(). soap_notes.py does not change.
"""

from django.conf import settings

from .base import BaseLLMService


def _backends() -> dict[str, type[BaseLLMService]]:
    from .services import ClaudeService, OpenAIService

    return {cls.vendor: cls for cls in (ClaudeService, OpenAIService)}


def get_llm_service() -> BaseLLMService:
    """
    Raises:
        ValueError: LLM_PROVIDER names no known backend.
    """
    provider = (settings.LLM_PROVIDER or '').strip().lower()
    backends = _backends()
    try:
        return backends[provider]()
    except KeyError:
        raise ValueError(
            f'Unknown LLM_PROVIDER {provider!r}, expected one of {sorted(backends)}'
        ) from None
