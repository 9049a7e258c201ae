from .factory import fallback_intake, get_adapter

__all__ = ['get_adapter', 'fallback_intake']
