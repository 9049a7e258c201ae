"""
Standard response of the LLM layer.

Every LLMService.complete() returns this object. The business layer
(soap_notes.py) only knows this shape, never which vendor produced it.
"""

from dataclasses import dataclass


@dataclass
class LLMResponse:
    content: str       # generated text
    model: str         # model actually used, stored on SOAPNote.llm_model
