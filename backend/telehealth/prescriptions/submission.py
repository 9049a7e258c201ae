"""
External submission gate.

Runs only after the order transaction has committed:

    claim                   status "submitting" under a row lock, a concurrent submit gets 409
    prescription PDF        soft, order goes out without a document
    pharmacy create order   failure → status "error", 502 LIFEFILE_SUBMISSION_FAILED
    record success          lifefile_order_id, response snapshot, status
    refill → compensation → platform fee → portal invite → audit   soft

Local rows are never rolled back because the pharmacy failed; the caller
re-runs this gate alone through POST /api/prescriptions/<id>/submit/.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from django.db import transaction
from django.utils import timezone

from .. import audit
from ..exceptions import BlockError, RecoverableError
from ..intake.fields import is_sentinel_email
from ..models import (
    Order,
    PlatformFeeEvent,
    PortalInvite,
    ProviderCompensationEvent,
    RefillQueue,
)
from ..pdf import render_prescription_pdf
from ..pharmacy import PharmacyError, get_pharmacy_client
from ..steps import Step, StepRunner
from .payload import build_order_payload, practice_info, redact_payload

logger = logging.getLogger(__name__)

ACTION_SUBMITTED = 'PRESCRIPTION_SUBMITTED'
ACTION_SUBMISSION_FAILED = 'PRESCRIPTION_SUBMISSION_FAILED'


@dataclass
class SubmissionResult:
    order: Order
    pharmacy_order_id: Optional[str] = None
    pharmacy_status: str = ''
    warnings: list[dict] = field(default_factory=list)


def _rx_lines(order) -> list[dict]:
    return [
        {
            'drug_name': rx.drug_name,
            'strength': rx.strength,
            'form': rx.form,
            'quantity': rx.quantity,
            'refills': rx.refills,
            'days_supply': rx.days_supply,
            'sig': rx.sig,
        }
        for rx in order.rxs.all().order_by('pk')
    ]


def _prescription_pdf(order, credentials) -> bytes:
    return render_prescription_pdf(
        clinic=order.clinic,
        provider=order.provider,
        patient=(order.request_json or {}).get('patient') or {},
        rxs=_rx_lines(order),
        reference_id=order.reference_id,
        practice=practice_info(order.clinic, credentials),
    )


def _claim(order) -> tuple[Order, str]:
    """
    Move the order to "submitting" under a row lock.

    Returns (order, previous status). A second request for the same order
    sees "submitting" and gets 409 until the first one settles.
    """
    with transaction.atomic():
        current = Order.objects.select_for_update().get(pk=order.pk)
        if current.status not in Order.SUBMITTABLE_STATUSES:
            raise BlockError(
                message=f'Order is already {current.status}.',
                code='ORDER_ALREADY_SUBMITTED',
                detail={'order_id': str(current.pk), 'status': current.status},
            )
        previous = current.status
        current.status = Order.STATUS_SUBMITTING
        current.save(update_fields=['status', 'updated_at'])
    return current, previous


def _release(order, status: str):
    order.status = status
    order.save(update_fields=['status', 'updated_at'])


# ── Secondary effects ──────────────────────────────────────────────────────

def _step_refill(ctx):
    order = ctx['order']
    refill = (RefillQueue.objects
              .filter(clinic=order.clinic, patient=order.patient,
                      status=RefillQueue.STATUS_PENDING_PROVIDER)
              .order_by('next_refill_date', 'pk')
              .first())
    if refill is None:
        return None

    now = timezone.now()
    refill.status = RefillQueue.STATUS_PRESCRIBED
    refill.prescribed_at = now
    refill.order = order
    refill.save(update_fields=['status', 'prescribed_at', 'order'])

    return RefillQueue.objects.create(
        clinic=order.clinic,
        patient=order.patient,
        status=RefillQueue.STATUS_SCHEDULED,
        interval_days=refill.interval_days,
        next_refill_date=now.date() + timedelta(days=refill.interval_days),
    )


def _clinic_amount(order, key: str) -> int:
    return int((order.clinic.settings or {}).get(key) or 0)


def _step_compensation(ctx):
    order = ctx['order']
    event, _ = ProviderCompensationEvent.objects.get_or_create(
        order=order,
        defaults={
            'provider': order.provider,
            'amount_cents': _clinic_amount(order, 'provider_compensation_cents'),
        },
    )
    return event


def _step_platform_fee(ctx):
    order = ctx['order']
    event, _ = PlatformFeeEvent.objects.get_or_create(
        order=order,
        defaults={
            'clinic': order.clinic,
            'amount_cents': _clinic_amount(order, 'platform_fee_cents'),
        },
    )
    return event


def _auto_invite_enabled(order) -> bool:
    portal = (order.clinic.settings or {}).get('patientPortal') or {}
    return bool(portal.get('autoInviteOnFirstOrder'))


def _step_portal_invite(ctx):
    order = ctx['order']
    patient = order.patient
    if not patient.email or is_sentinel_email(patient.email):
        return None
    earlier = (Order.objects.filter(patient=patient, status=Order.STATUS_SENT)
               .exclude(pk=order.pk).exists())
    if earlier or PortalInvite.objects.filter(patient=patient).exists():
        return None
    return PortalInvite.objects.create(patient=patient, email=patient.email, trigger='first_order')


def _step_audit(ctx):
    order = ctx['order']
    return audit.record(
        ACTION_SUBMITTED,
        clinic=order.clinic,
        actor=ctx['actor'],
        resource_type='order',
        resource_id=order.pk,
        diff={
            'status': order.status,
            'lifefile_order_id': order.lifefile_order_id,
            'message_id': order.message_id,
            'rx_count': order.rxs.count(),
        },
        request_id=ctx['request_id'],
    )


POST_SUBMISSION_STEPS = [
    Step('refill', _step_refill, code='REFILL_UPDATE_FAILED', message='Refill queue update failed'),
    Step('compensation', _step_compensation, code='COMPENSATION_RECORD_FAILED',
         message='Provider compensation recording failed',
         condition=lambda ctx: _clinic_amount(ctx['order'], 'provider_compensation_cents') > 0),
    Step('platform_fee', _step_platform_fee, code='PLATFORM_FEE_RECORD_FAILED',
         message='Platform fee recording failed',
         condition=lambda ctx: _clinic_amount(ctx['order'], 'platform_fee_cents') > 0),
    Step('portal_invite', _step_portal_invite, code='PORTAL_INVITE_FAILED',
         message='Portal invite failed',
         condition=lambda ctx: _auto_invite_enabled(ctx['order'])),
    Step('audit', _step_audit, code='AUDIT_LOG_FAILED', message='Audit log failed'),
]


# ── Entry point ────────────────────────────────────────────────────────────

def submit_order(order, *, user=None, request_id: str = '') -> SubmissionResult:
    """
    Send a committed order to the pharmacy.

    Raises:
        BlockError: the order is no longer in a submittable state (409).
        BaseAppException: PHARMACY_NOT_CONFIGURED (400).
        RecoverableError: the pharmacy call failed; the order is now "error" (502).
    """
    order, previous_status = _claim(order)
    label = f'PRESCRIPTIONS {order.pk}'
    actor = getattr(user, 'email', None) or audit.SYSTEM_ACTOR
    runner = StepRunner(label=label)

    try:
        client = get_pharmacy_client(order.clinic)
        pdf_bytes = runner.run(
            Step('pdf', lambda ctx: _prescription_pdf(order, client.credentials),
                 code='PRESCRIPTION_PDF_FAILED', message='Prescription PDF generation failed'),
            {},
        )
        payload = build_order_payload(order, client.credentials, pdf_bytes)
    except Exception:
        # nothing reached the pharmacy, the order may be submitted again
        _release(order, previous_status)
        raise
    order.request_json = {**(order.request_json or {}), 'pharmacy_payload': redact_payload(payload)}

    try:
        result = client.create_full_order(payload)
    except Exception as exc:
        if not isinstance(exc, PharmacyError):
            logger.exception('[%s] unexpected pharmacy client failure', label)
        order.status = Order.STATUS_ERROR
        order.error_message = f'Lifefile submission failed: {exc}'
        order.save(update_fields=['status', 'error_message', 'request_json', 'updated_at'])
        logger.error('[%s] pharmacy submission failed: %s', label, exc)
        try:
            audit.record(ACTION_SUBMISSION_FAILED, clinic=order.clinic, actor=actor,
                         resource_type='order', resource_id=order.pk,
                         diff={'error': order.error_message}, request_id=request_id)
        except Exception:
            logger.exception('[%s] audit of failed submission not written', label)
        raise RecoverableError(
            message='The order was saved but the pharmacy submission failed. Retry the submission.',
            code='LIFEFILE_SUBMISSION_FAILED',
            detail={
                'order_id': str(order.pk),
                'status': order.status,
                'error': order.error_message,
                'recoverable': True,
            },
        ) from exc

    order.lifefile_order_id = result.order_id
    order.status = Order.STATUS_SENT
    order.response_json = result.raw
    order.error_message = None
    order.submitted_at = timezone.now()
    order.save(update_fields=['lifefile_order_id', 'status', 'response_json', 'error_message',
                              'submitted_at', 'request_json', 'updated_at'])
    logger.info('[%s] sent as pharmacy order %s (%s)', label, result.order_id, result.status)

    runner.run_all(POST_SUBMISSION_STEPS, ctx={
        'order': order,
        'actor': actor,
        'request_id': request_id,
    })

    return SubmissionResult(
        order=order,
        pharmacy_order_id=result.order_id,
        pharmacy_status=result.status,
        warnings=runner.warnings,
    )
