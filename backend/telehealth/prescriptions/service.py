"""
Prescription creation, end to end.

    parse + validate request          400 VALIDATION_ERROR / MISSING_PATIENT_INFO / INVALID_PHARMACY_GENDER
    caller checks                     403 (queue is admin-only, provider identity, clinic membership)
    vial safety gate                  422 VIAL_QUANTITY_SAFEGUARD
    pharmacy credentials              400 PHARMACY_NOT_CONFIGURED (skipped when queueing)
    order transaction                 idempotent on (message_id, clinic)
    external submission gate          502 LIFEFILE_SUBMISSION_FAILED, order kept as "error"

Everything up to the transaction runs before any write.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .. import audit
from ..exceptions import ValidationError
from ..models import Clinic, Order, Provider
from ..permissions import check_provider_identity, check_user_clinic, require_admin
from ..pharmacy import get_credentials
from ..steps import Step, StepRunner
from .payload import expand_rxs, new_message_id, new_reference_id, pharmacy_gender
from .safety import check_vial_safeguard
from .schema import parse_prescription_request
from .submission import SubmissionResult, submit_order
from .writer import OrderWrite, write_order

logger = logging.getLogger(__name__)

ACTION_CREATED = 'PRESCRIPTION_CREATED'
ACTION_QUEUED = 'PRESCRIPTION_QUEUED_FOR_PROVIDER'


@dataclass
class PrescriptionOutcome:
    order: Order
    is_new: bool
    queued: bool = False
    submission: Optional[SubmissionResult] = None
    warnings: list[dict] = field(default_factory=list)


def resolve_provider(request, user) -> Provider:
    provider_id = request.provider_id or user.provider_id
    if not provider_id:
        raise ValidationError(
            message='provider_id is required.',
            code='MISSING_PROVIDER',
            detail={'errors': [{'field': 'provider_id', 'message': 'Select a provider.'}]},
        )
    provider = Provider.objects.filter(pk=provider_id).first()
    if provider is None:
        raise ValidationError(
            message=f'Provider {provider_id} not found.',
            code='UNKNOWN_PROVIDER',
            detail={'provider_id': provider_id},
        )
    return provider


def resolve_clinic(request, user, provider) -> Clinic:
    if request.clinic_id:
        clinic = Clinic.objects.filter(pk=request.clinic_id).first()
        if clinic is None:
            raise ValidationError(
                message=f'Clinic {request.clinic_id} not found.',
                code='UNKNOWN_CLINIC',
                detail={'clinic_id': request.clinic_id},
            )
        return clinic
    clinic = user.clinic or provider.clinic
    if clinic is None:
        raise ValidationError(
            message='clinic_id is required.',
            code='MISSING_CLINIC',
            detail={'errors': [{'field': 'clinic_id', 'message': 'Select a clinic.'}]},
        )
    return clinic


def _step_audit(ctx):
    order = ctx['order']
    return audit.record(
        ACTION_QUEUED if ctx['queued'] else ACTION_CREATED,
        clinic=order.clinic,
        actor=ctx['actor'],
        resource_type='order',
        resource_id=order.pk,
        diff={
            'message_id': order.message_id,
            'patient_id': order.patient_id,
            'provider_id': order.provider_id,
            'status': order.status,
            'rxs': [line['medication_key'] for line in ctx['lines']],
        },
        request_id=ctx['request_id'],
    )


def create_prescription(data, *, user, idempotency_key: str = '', request_id: str = '') -> PrescriptionOutcome:
    request = parse_prescription_request(data, idempotency_key)
    patient = request.patient.as_dict()
    patient['gender'] = pharmacy_gender(request.patient.gender)

    if request.queue_for_provider:
        require_admin(user, 'queue prescriptions for provider review')

    provider = resolve_provider(request, user)
    check_provider_identity(user, provider)
    clinic = resolve_clinic(request, user, provider)
    check_user_clinic(user, clinic)

    warnings = check_vial_safeguard(request)

    if not request.queue_for_provider:
        get_credentials(clinic)

    lines = expand_rxs(request.rxs)
    message_id = request.message_id or new_message_id()
    result = write_order(OrderWrite(
        clinic=clinic,
        provider=provider,
        patient=patient,
        lines=lines,
        message_id=message_id,
        reference_id=new_reference_id(),
        patient_id=request.patient_id,
        queue_for_provider=request.queue_for_provider,
        shipping_method=request.shipping_method,
        plan_months=request.plan_months,
        memo=request.memo,
        user=user,
    ))
    order = result.order

    if not result.is_new:
        logger.info('[PRESCRIPTIONS] duplicate message_id %s for clinic %s, order %s (%s)',
                    message_id, clinic.pk, order.pk, order.status)
        return PrescriptionOutcome(order=order, is_new=False, warnings=warnings)

    logger.info('[PRESCRIPTIONS] order %s written: %d rx line(s), status %s',
                order.pk, len(lines), order.status)

    runner = StepRunner(label=f'PRESCRIPTIONS {order.pk}')
    runner.warnings.extend(warnings)
    runner.run(Step('audit', _step_audit, code='AUDIT_LOG_FAILED', message='Audit log failed'), {
        'order': order,
        'queued': request.queue_for_provider,
        'actor': user.email,
        'lines': lines,
        'request_id': request_id,
    })

    if request.queue_for_provider:
        return PrescriptionOutcome(order=order, is_new=True, queued=True, warnings=runner.warnings)

    submission = submit_order(order, user=user, request_id=request_id)
    return PrescriptionOutcome(
        order=submission.order,
        is_new=True,
        submission=submission,
        warnings=runner.warnings + submission.warnings,
    )


def resubmit_prescription(order, *, user, request_id: str = '') -> SubmissionResult:
    """
    Pharmacy-only retry for an order that already exists.

    Approving a queued order is the provider's side of "admin queues,
    provider approves"; the provider must be the order's prescriber.
    """
    check_user_clinic(user, order.clinic)
    if order.status == Order.STATUS_QUEUED_FOR_PROVIDER:
        check_provider_identity(user, order.provider)
    return submit_order(order, user=user, request_id=request_id)
