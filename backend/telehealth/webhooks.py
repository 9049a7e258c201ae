"""
Intake webhook pipeline.

    authenticate (view) → resolve clinic → normalize (fallback on failure)
    → upsert patient + anchor document  critical, one transaction, 500 PATIENT_ERROR
    → pdf → storage                     soft
    → intake document (pdf, json)       critical, 500 DB_ERROR
    → SOAP draft → referral → audit     soft

Critical steps use with_db_retry (linear backoff). Soft steps run through
StepRunner and surface as `warnings`; a non-empty warnings list is still a
success. When INTAKE_DLQ_ENABLED is on, a critical failure queues the decoded
payload for replay_intake_submission and the error detail says `queued`.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from django.conf import settings
from django.db import DatabaseError, transaction

from . import audit, storage
from .db import with_db_retry
from .documents import (
    SubmissionClaimed,
    build_intake_data,
    claim_intake_document,
    upsert_intake_document,
)
from .exceptions import BaseAppException
from .intake import fallback_intake, get_adapter
from .intake.consent import apply_request_context
from .intake.types import NormalizedIntake
from .models import Clinic, PatientDocument, SOAPNote
from .patients import UpsertResult, upsert_patient
from .pdf import render_intake_pdf
from .referrals import find_promo_code, track_referral
from .soap_notes import generate_soap_note
from .steps import Step, StepRunner

logger = logging.getLogger(__name__)

ACTION_PARTIAL_INTAKE = 'PARTIAL_INTAKE_RECEIVED'
ACTION_COMPLETE_INTAKE = 'PATIENT_INTAKE_RECEIVED'

# passes of upsert_and_claim before a lost anchor race becomes PATIENT_ERROR
CLAIM_ATTEMPTS = 3


@dataclass
class IntakeResult:
    request_id: str
    clinic: Clinic
    intake: NormalizedIntake
    upsert: UpsertResult
    document: PatientDocument
    soap_note: Optional[SOAPNote] = None
    warnings: list[dict] = field(default_factory=list)
    processing_time_ms: int = 0


def new_request_id() -> str:
    return uuid.uuid4().hex[:12]


# ── Critical steps ─────────────────────────────────────────────────────────

def resolve_intake_clinic() -> Clinic:
    subdomain = settings.INTAKE_CLINIC_SUBDOMAIN

    def lookup():
        return (Clinic.objects.filter(subdomain=subdomain).first()
                or Clinic.objects.filter(name__icontains=subdomain).order_by('pk').first())

    clinic = with_db_retry(lookup, label='intake clinic')
    if clinic is None:
        raise BaseAppException(
            message=f'Intake clinic {subdomain!r} is not configured.',
            code='CLINIC_NOT_FOUND',
        )
    return clinic


def normalize(adapter, request_id: str) -> NormalizedIntake:
    """Never raises: a payload the adapter chokes on becomes a synthetic intake."""
    try:
        return adapter.process()
    except Exception:
        logger.exception('[INTAKE %s] normalization failed, using fallback record', request_id)
        return fallback_intake(request_id, adapter.payload, adapter.source)


def _source_metadata(intake: NormalizedIntake, request_id: str) -> dict:
    return {
        'source': intake.source,
        'submission_id': intake.submission_id,
        'submission_type': intake.submission_type,
        'request_id': request_id,
        'received_at': intake.submitted_at.isoformat(),
        'fallback': intake.is_fallback,
    }


def upsert_and_claim(clinic, intake: NormalizedIntake, base_tags, request_id: str,
                     attempts: int = CLAIM_ATTEMPTS) -> UpsertResult:
    """
    Patient upsert and the submission's anchor document in one transaction.

    A delivery that loses the anchor to a concurrent one rolls back its own
    patient write and runs again; the second pass finds the winner's patient
    through the anchor, so one submission never yields two patients.
    """
    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                result = upsert_patient(
                    clinic, intake,
                    base_tags=base_tags,
                    source_metadata=_source_metadata(intake, request_id),
                )
                claim_intake_document(clinic, result.patient, intake,
                                      intake_data=build_intake_data(intake))
            return result
        except SubmissionClaimed as exc:
            if attempt >= attempts:
                raise
            logger.info('[INTAKE %s] %s, resolving the patient again', request_id, exc)


# ── Soft steps ─────────────────────────────────────────────────────────────

def _step_pdf(ctx):
    return render_intake_pdf(ctx['intake'], ctx['patient'])


def _step_storage(ctx):
    clinic, patient, intake = ctx['clinic'], ctx['patient'], ctx['intake']
    key = storage.DocumentStorage.intake_key(clinic.pk, patient.pk, intake.submission_id)
    return storage.DocumentStorage().upload(key, ctx['pdf'])


def _step_document(ctx):
    intake = ctx['intake']
    intake_data = build_intake_data(
        intake,
        pdf_url=ctx.get('storage') or '',
        pdf_generated=ctx.get('pdf') is not None,
    )

    def write():
        return upsert_intake_document(
            ctx['clinic'], ctx['patient'], intake,
            intake_data=intake_data,
            pdf_bytes=ctx.get('pdf'),
            external_url=ctx.get('storage') or '',
        )

    try:
        document, _ = with_db_retry(write, label=f"INTAKE {ctx['request_id']} document")
    except DatabaseError as exc:
        raise BaseAppException(
            message='Failed to store intake data.',
            code='DB_ERROR',
            detail={'request_id': ctx['request_id'], 'step': 'document'},
        ) from exc
    return document


def _step_soap_note(ctx):
    document = ctx['document']
    existing = SOAPNote.objects.filter(document=document).order_by('created_at').first()
    if existing is not None:
        return existing
    return generate_soap_note(ctx['patient'], document)


def _step_referral(ctx):
    return track_referral(ctx['clinic'], ctx['patient'], ctx['promo_code'], ctx['intake'].submission_id)


def _step_audit(ctx):
    intake, upsert = ctx['intake'], ctx['upsert']
    return audit.record(
        ACTION_PARTIAL_INTAKE if intake.is_partial else ACTION_COMPLETE_INTAKE,
        clinic=ctx['clinic'],
        actor=f'webhook:{intake.source}',
        resource_type='patient',
        resource_id=upsert.patient.pk,
        diff={
            'submission_id': intake.submission_id,
            'is_new': upsert.is_new,
            'upgraded': upsert.upgraded,
            'changes': upsert.changes,
            'document_id': ctx['document'].pk,
        },
        request_id=ctx['request_id'],
    )


INTAKE_STEPS = [
    Step('pdf', _step_pdf, code='PDF_GENERATION_FAILED', message='PDF generation failed'),
    Step('storage', _step_storage, code='STORAGE_UPLOAD_FAILED', message='Storage upload failed',
         condition=lambda ctx: storage.is_enabled() and ctx.get('pdf') is not None),
    Step('document', _step_document, code='DB_ERROR', critical=True),
    Step('soap_note', _step_soap_note, code='SOAP_GENERATION_FAILED', message='SOAP generation failed',
         condition=lambda ctx: not ctx['intake'].is_partial and ctx.get('document') is not None),
    Step('referral', _step_referral, code='REFERRAL_TRACKING_FAILED', message='Referral tracking failed',
         condition=lambda ctx: bool(ctx.get('promo_code'))),
    Step('audit', _step_audit, code='AUDIT_LOG_FAILED', message='Audit log failed'),
]


# ── Dead-letter queue ──────────────────────────────────────────────────────

def _dead_letter(payload: Any, source: str, request_id: str, client: dict) -> bool:
    """Queue the decoded payload for replay. Returns True when queued."""
    if not settings.INTAKE_DLQ_ENABLED or not isinstance(payload, dict):
        return False
    from .tasks import replay_intake_submission

    try:
        replay_intake_submission.delay(payload, source, request_id, client)
    except Exception:
        logger.exception('[INTAKE %s] could not queue payload for replay', request_id)
        return False
    logger.warning('[INTAKE %s] payload queued for replay', request_id)
    return True


# ── Entry point ────────────────────────────────────────────────────────────

def process_intake_submission(raw_body, *, source='weightlossintake', request_id=None,
                              ip_address='', user_agent='', content_type='application/json',
                              replay=False) -> IntakeResult:
    """
    Run the whole pipeline for one delivery.

    Raises BaseAppException (500, code CLINIC_NOT_FOUND / PATIENT_ERROR /
    DB_ERROR) only when a critical step fails; everything else is a warning.
    """
    started = time.monotonic()
    request_id = request_id or new_request_id()
    label = f'INTAKE {request_id}'
    client = {'ip_address': ip_address, 'user_agent': user_agent}

    adapter = get_adapter(source, raw_body, content_type)
    intake = normalize(adapter, request_id)
    apply_request_context(intake.consent, ip_address, user_agent)
    logger.info('[%s] %s submission %s (replay=%s)', label, intake.submission_type,
                intake.submission_id, replay)

    try:
        try:
            clinic = resolve_intake_clinic()
        except DatabaseError as exc:
            raise BaseAppException('Database unavailable.', code='DB_ERROR',
                                   detail={'request_id': request_id, 'step': 'clinic'}) from exc

        try:
            result = with_db_retry(
                lambda: upsert_and_claim(clinic, intake, adapter.base_tags, request_id),
                label=f'{label} patient',
            )
        except (DatabaseError, SubmissionClaimed) as exc:
            raise BaseAppException('Failed to create or update patient.', code='PATIENT_ERROR',
                                   detail={'request_id': request_id, 'step': 'patient'}) from exc

        runner = StepRunner(label=label)
        ctx = runner.run_all(INTAKE_STEPS, ctx={
            'request_id': request_id,
            'clinic': clinic,
            'intake': intake,
            'upsert': result,
            'patient': result.patient,
            'promo_code': find_promo_code(intake.answers),
        })
    except BaseAppException as exc:
        if exc.http_status >= 500 and not replay:
            queued = _dead_letter(adapter.payload, source, request_id, client)
            exc.detail = {**(exc.detail or {}), 'request_id': request_id, 'queued': queued}
        raise

    elapsed_ms = int((time.monotonic() - started) * 1000)
    logger.info('[%s] done in %dms: patient %s (%s), %d warning(s)', label, elapsed_ms,
                result.patient.pk, 'new' if result.is_new else 'existing', len(runner.warnings))

    return IntakeResult(
        request_id=request_id,
        clinic=clinic,
        intake=intake,
        upsert=result,
        document=ctx['document'],
        soap_note=ctx.get('soap_note'),
        warnings=runner.warnings,
        processing_time_ms=elapsed_ms,
    )
