"""
Role checks and clinic-access authorization.

authorize_clinic_access is the single predicate for "may this provider write
for this clinic". The order writer calls it inside its transaction so the
check and the write see the same rows.
"""

import logging

from rest_framework.permissions import BasePermission

from .exceptions import AuthError
from .models import ClinicUser, ProviderClinic, UserClinic

security_logger = logging.getLogger('telehealth.security')

PRESCRIBER_ROLES = (ClinicUser.ROLE_PROVIDER, ClinicUser.ROLE_ADMIN, ClinicUser.ROLE_SUPER_ADMIN)
ADMIN_ROLES = (ClinicUser.ROLE_ADMIN, ClinicUser.ROLE_SUPER_ADMIN)


class IsPrescriber(BasePermission):
    """provider / admin / super_admin."""

    message = 'Only providers and admins may manage prescriptions.'

    def has_permission(self, request, view):
        user = request.user
        return bool(user is not None and getattr(user, 'role', None) in PRESCRIBER_ROLES)


def is_admin(user) -> bool:
    return user.role in ADMIN_ROLES


def require_admin(user, action: str) -> None:
    if not is_admin(user):
        security_logger.warning('User %s (%s) denied %s', user.pk, user.role, action)
        raise AuthError(
            message=f'Only admins may {action}.',
            code='FORBIDDEN',
            http_status=403,
        )


def check_provider_identity(user, provider) -> None:
    """A provider-role user may only prescribe as their own provider record."""
    if user.role != ClinicUser.ROLE_PROVIDER:
        return
    if user.provider_id == provider.pk:
        return
    if user.email and provider.email and user.email.lower() == provider.email.lower():
        return
    security_logger.warning('Provider user %s tried to prescribe as provider %s', user.pk, provider.pk)
    raise AuthError(
        message='Providers may only prescribe under their own NPI.',
        code='PROVIDER_MISMATCH',
        detail={'provider_id': provider.pk},
        http_status=403,
    )


def has_clinic_access(provider, clinic, user=None) -> bool:
    if user is not None and user.role == ClinicUser.ROLE_SUPER_ADMIN:
        return True
    if provider.clinic_id is None or provider.clinic_id == clinic.pk:
        return True
    if ProviderClinic.objects.filter(provider=provider, clinic=clinic, is_active=True).exists():
        return True
    if user is not None:
        if user.provider_id == provider.pk and UserClinic.objects.filter(
                user=user, clinic=clinic, is_active=True).exists():
            return True
    return False


def authorize_clinic_access(provider, clinic, user=None) -> None:
    """
    Raises AuthError (403 CLINIC_ACCESS_DENIED) unless the provider may write
    for the clinic. super_admin callers bypass the check.
    """
    if has_clinic_access(provider, clinic, user):
        return
    security_logger.warning('Provider %s has no access to clinic %s (user %s)',
                            provider.pk, clinic.pk, getattr(user, 'pk', None))
    raise AuthError(
        message='Provider is not assigned to this clinic.',
        code='CLINIC_ACCESS_DENIED',
        detail={'provider_id': provider.pk, 'clinic_id': clinic.pk},
        http_status=403,
    )


def check_user_clinic(user, clinic) -> None:
    """Non super_admin users act only inside clinics they belong to."""
    if user.role == ClinicUser.ROLE_SUPER_ADMIN:
        return
    if user.clinic_id == clinic.pk:
        return
    if UserClinic.objects.filter(user=user, clinic=clinic, is_active=True).exists():
        return
    if user.role == ClinicUser.ROLE_PROVIDER and user.provider is not None \
            and has_clinic_access(user.provider, clinic, user):
        return
    security_logger.warning('User %s denied access to clinic %s', user.pk, clinic.pk)
    raise AuthError(
        message='You do not have access to this clinic.',
        code='CLINIC_ACCESS_DENIED',
        detail={'clinic_id': clinic.pk},
        http_status=403,
    )
