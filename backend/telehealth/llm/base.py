"""
BaseLLMService: contract of every SOAP-drafting backend.

A backend sets `vendor` (the LLM_PROVIDER value that selects it) and
implements complete(). factory.py picks it up from services.py.
"""

from abc import ABC, abstractmethod

from .types import LLMResponse


class BaseLLMService(ABC):

    vendor: str = ''

    @abstractmethod
    def complete(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        """
        One model call, no retries.

        Args:
            system_prompt: clinician role plus the JSON output contract
            user_prompt:   patient header and the flattened intake answers

        Returns:
            LLMResponse with the raw text and the model that produced it.

        Raises:
            ValueError: the vendor API key is not configured.
            Exception:  whatever the vendor SDK raises (rate limit, timeout).
                        The webhook turns it into a SOAP_GENERATION_FAILED warning.
        """
