from .factory import get_credentials, get_pharmacy_client
from .types import PharmacyError

__all__ = ['get_pharmacy_client', 'get_credentials', 'PharmacyError']
