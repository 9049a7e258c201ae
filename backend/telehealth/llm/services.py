"""
Vendor backends for draft SOAP notes.

  anthropic  ClaudeService   settings.ANTHROPIC_MODEL
  openai     OpenAIService   settings.OPENAI_MODEL, JSON response mode

Vendor SDKs are imported inside complete() so Django starts without them.
Every client gets settings.LLM_TIMEOUT_SECONDS and max_retries=0.
"""

import logging

from django.conf import settings

from .base import BaseLLMService
from .types import LLMResponse

logger = logging.getLogger(__name__)


def _api_key(setting: str) -> str:
    key = getattr(settings, setting, '')
    if not key:
        raise ValueError(f'{setting} is not set')
    return key


class ClaudeService(BaseLLMService):

    vendor = 'anthropic'

    def complete(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        import anthropic

        client = anthropic.Anthropic(
            api_key=_api_key('ANTHROPIC_API_KEY'),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=0,
        )
        model = settings.ANTHROPIC_MODEL
        message = client.messages.create(
            model=model,
            max_tokens=settings.LLM_MAX_TOKENS,
            system=system_prompt,
            messages=[{'role': 'user', 'content': user_prompt}],
        )

        text = ''.join(block.text for block in message.content if block.type == 'text')
        if message.stop_reason == 'max_tokens':
            logger.warning('SOAP draft truncated at %d tokens (%s)', settings.LLM_MAX_TOKENS, model)
        return LLMResponse(content=text, model=model)


class OpenAIService(BaseLLMService):

    vendor = 'openai'

    def complete(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        import openai

        client = openai.OpenAI(
            api_key=_api_key('OPENAI_API_KEY'),
            timeout=settings.LLM_TIMEOUT_SECONDS,
            max_retries=0,
        )
        model = settings.OPENAI_MODEL
        completion = client.chat.completions.create(
            model=model,
            max_tokens=settings.LLM_MAX_TOKENS,
            response_format={'type': 'json_object'},
            messages=[
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': user_prompt},
            ],
        )

        choice = completion.choices[0]
        if choice.finish_reason == 'length':
            logger.warning('SOAP draft truncated at %d tokens (%s)', settings.LLM_MAX_TOKENS, model)
        return LLMResponse(content=choice.message.content or '', model=model)
