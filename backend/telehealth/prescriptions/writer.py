"""
Transactional order writer.

One SERIALIZABLE transaction with a statement/lock timeout:

    existing (message_id, clinic)?  → return it, is_new=False
    resolve or create the patient
    authorize provider ↔ clinic     (same transaction as the write)
    create Order (PENDING | queued_for_provider)
    bulk-create Rx lines

The whole transaction is retried with capped exponential backoff, only for
transient errors. Retries exhausted on a transient error → ServiceBusyError.
A unique-constraint race on (message_id, clinic) re-fetches the winner.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import DatabaseError, IntegrityError
from django.utils import timezone

from ..db import is_transient_error, serializable_atomic, with_retry
from ..exceptions import BlockError, ServiceBusyError
from ..models import Order, Patient, Rx
from ..patients import next_patient_id
from ..permissions import authorize_clinic_access

logger = logging.getLogger(__name__)


@dataclass
class OrderWrite:
    clinic: object
    provider: object
    patient: dict                # PatientInput.as_dict() with pharmacy gender
    lines: list[dict]            # expanded Rx lines
    message_id: str
    reference_id: str
    patient_id: Optional[int] = None
    queue_for_provider: bool = False
    shipping_method: int = 8115
    plan_months: Optional[int] = None
    memo: str = ''
    user: object = None


@dataclass
class WriteResult:
    order: Order
    is_new: bool


def _existing_order(write: OrderWrite) -> Optional[Order]:
    return Order.objects.filter(message_id=write.message_id, clinic=write.clinic).first()


def resolve_patient(write: OrderWrite) -> Patient:
    clinic, data = write.clinic, write.patient

    if write.patient_id:
        patient = Patient.objects.filter(pk=write.patient_id, clinic=clinic).first()
        if patient is None:
            raise BlockError(
                message='Patient not found in this clinic.',
                code='PATIENT_NOT_FOUND',
                detail={'patient_id': write.patient_id, 'clinic_id': clinic.pk},
                http_status=404,
            )
        return patient

    patient = (Patient.objects
               .filter(clinic=clinic,
                       first_name__iexact=data['first_name'],
                       last_name__iexact=data['last_name'],
                       dob=data['dob'])
               .order_by('pk')
               .first())
    if patient is not None:
        return patient

    patient = Patient.objects.create(
        clinic=clinic,
        patient_id=next_patient_id(clinic),
        first_name=data['first_name'],
        last_name=data['last_name'],
        dob=data['dob'],
        gender=data['gender'],
        email=data.get('email', ''),
        phone=data.get('phone', ''),
        address1=data.get('address1', ''),
        address2=data.get('address2', ''),
        city=data.get('city', ''),
        state=data.get('state', ''),
        zip=data.get('zip', ''),
        source=Patient.SOURCE_PRESCRIPTION,
        source_metadata={'message_id': write.message_id},
    )
    logger.info('[PRESCRIPTIONS] created patient %s (%s) in clinic %s',
                patient.pk, patient.patient_id, clinic.pk)
    return patient


def _write(write: OrderWrite) -> WriteResult:
    with serializable_atomic(timeout_ms=settings.PRESCRIPTION_TX_TIMEOUT_MS):
        existing = _existing_order(write)
        if existing is not None:
            return WriteResult(order=existing, is_new=False)

        patient = resolve_patient(write)
        authorize_clinic_access(write.provider, write.clinic, write.user)

        queued = write.queue_for_provider
        order = Order.objects.create(
            clinic=write.clinic,
            patient=patient,
            provider=write.provider,
            message_id=write.message_id,
            reference_id=write.reference_id,
            status=Order.STATUS_QUEUED_FOR_PROVIDER if queued else Order.STATUS_PENDING,
            shipping_method=write.shipping_method,
            plan_months=write.plan_months,
            request_json={'patient': write.patient, 'memo': write.memo},
            queued_by=write.user if queued else None,
            queued_at=timezone.now() if queued else None,
        )
        Rx.objects.bulk_create([Rx(order=order, **line) for line in write.lines])
        return WriteResult(order=order, is_new=True)


def write_order(write: OrderWrite) -> WriteResult:
    try:
        return with_retry(
            lambda: _write(write),
            max_retries=settings.PRESCRIPTION_TX_MAX_RETRIES,
            retry_on=lambda exc: isinstance(exc, DatabaseError)
            and not isinstance(exc, IntegrityError) and is_transient_error(exc),
            label='PRESCRIPTIONS tx',
        )
    except IntegrityError:
        # a concurrent request with the same message_id committed first
        existing = _existing_order(write)
        if existing is None:
            raise
        logger.info('[PRESCRIPTIONS] message_id %s raced, returning order %s',
                    write.message_id, existing.pk)
        return WriteResult(order=existing, is_new=False)
    except DatabaseError as exc:
        if not is_transient_error(exc):
            raise
        logger.error('[PRESCRIPTIONS] transaction failed after retries: %s', exc)
        raise ServiceBusyError(
            message='The service is busy, please retry shortly.',
            detail={'message_id': write.message_id},
            retry_after=settings.SERVICE_BUSY_RETRY_AFTER_SECONDS,
        ) from exc
