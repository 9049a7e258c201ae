"""Append-only audit trail."""

import logging

from .models import AuditLog

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = 'system'


def record(action: str, *, clinic=None, actor=SYSTEM_ACTOR, resource_type: str, resource_id,
           diff=None, request_id: str = '') -> AuditLog:
    entry = AuditLog.objects.create(
        clinic=clinic,
        actor=str(actor),
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        diff=diff or {},
        request_id=request_id,
    )
    logger.debug('Audit %s %s:%s by %s', action, resource_type, resource_id, actor)
    return entry
