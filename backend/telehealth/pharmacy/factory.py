"""
Factory: pharmacy client for a clinic.

Credentials come from Clinic.lifefile_settings when they are complete there,
otherwise from the LIFEFILE_* settings.
"""

from django.conf import settings

from ..exceptions import BaseAppException
from .base import BasePharmacyClient
from .types import PharmacyCredentials

CREDENTIAL_FIELDS = (
    'base_url', 'username', 'password', 'vendor_id', 'practice_id', 'location_id',
    'network_id', 'practice_name', 'practice_address', 'practice_phone', 'practice_fax',
)

# PharmacyCredentials field → settings name
ENV_SETTINGS = {
    'base_url': 'LIFEFILE_BASE_URL',
    'username': 'LIFEFILE_USERNAME',
    'password': 'LIFEFILE_PASSWORD',
    'vendor_id': 'LIFEFILE_VENDOR_ID',
    'practice_id': 'LIFEFILE_PRACTICE_ID',
    'location_id': 'LIFEFILE_LOCATION_ID',
    'network_id': 'LIFEFILE_NETWORK',
    'practice_name': 'LIFEFILE_PRACTICE_NAME',
    'practice_address': 'LIFEFILE_PRACTICE_ADDRESS',
    'practice_phone': 'LIFEFILE_PRACTICE_PHONE',
    'practice_fax': 'LIFEFILE_PRACTICE_FAX',
}


def _build_registry() -> dict[str, type[BasePharmacyClient]]:
    from .lifefile import LifefileClient

    return {
        "lifefile": LifefileClient,
    }


def get_credentials(clinic) -> PharmacyCredentials:
    clinic_settings = clinic.lifefile_settings or {}
    clinic_creds = PharmacyCredentials(
        **{name: str(clinic_settings.get(name) or '') for name in CREDENTIAL_FIELDS},
        source='clinic',
    )
    if clinic_creds.is_complete:
        return clinic_creds

    env_creds = PharmacyCredentials(
        **{name: str(getattr(settings, setting, '') or '') for name, setting in ENV_SETTINGS.items()},
        source='env',
    )
    if env_creds.is_complete:
        return env_creds

    raise BaseAppException(
        message='Pharmacy credentials are not configured for this clinic.',
        code='PHARMACY_NOT_CONFIGURED',
        detail={'clinic_id': clinic.pk},
        http_status=400,
    )


def get_pharmacy_client(clinic, network: str = "lifefile") -> BasePharmacyClient:
    client_cls = _build_registry().get(network)
    if client_cls is None:
        raise ValueError(f"Unknown pharmacy network: {network!r}")
    return client_cls(get_credentials(clinic), timeout=settings.PHARMACY_TIMEOUT_SECONDS)
