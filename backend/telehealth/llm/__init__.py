from .factory import get_llm_service

__all__ = ['get_llm_service']
