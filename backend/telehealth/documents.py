"""
Intake PatientDocument upsert.

(clinic, source_submission_id) is a database unique constraint and the
anchor that makes intake redelivery idempotent. A racing insert catches the
IntegrityError and re-fetches the winner's row. The anchored patient is
fixed by the first insert and never re-pointed.
"""

import logging

from django.db import IntegrityError, transaction
from django.utils import timezone

from .intake.types import NormalizedIntake
from .models import PatientDocument

logger = logging.getLogger(__name__)


def build_intake_data(intake: NormalizedIntake, *, pdf_url: str = '', pdf_generated: bool = False) -> dict:
    """JSON blob the patient chart renders the intake from."""
    return {
        'submission_id': intake.submission_id,
        'submission_type': intake.submission_type,
        'qualified': intake.qualified,
        'submitted_at': intake.submitted_at.isoformat(),
        'source': intake.source,
        'is_fallback': intake.is_fallback,
        'sections': [
            {
                'title': section.title,
                'answers': [{'id': a.id, 'label': a.label, 'value': a.value} for a in section.answers],
            }
            for section in intake.sections
        ],
        'answers': [
            {'id': a.id, 'label': a.label, 'value': a.value, 'section': a.section}
            for a in intake.answers
        ],
        'consent': intake.consent.as_dict(),
        'pdf_url': pdf_url,
        'pdf_generated': pdf_generated,
        'received_at': timezone.now().isoformat(),
    }


class SubmissionClaimed(Exception):
    """The submission's anchor document is bound to a different patient."""

    def __init__(self, document):
        self.document = document
        super().__init__(f'submission {document.source_submission_id} is anchored to '
                         f'patient {document.patient_id}')


def find_intake_document(clinic, submission_id: str):
    return (PatientDocument.objects
            .filter(clinic=clinic, source_submission_id=submission_id)
            .select_related('patient')
            .first())


def _file_fields(submission_id: str, has_pdf: bool) -> dict:
    if has_pdf:
        return {'filename': f'intake-{submission_id}.pdf', 'mime_type': 'application/pdf'}
    return {'filename': f'intake-{submission_id}.json', 'mime_type': 'application/json'}


def _apply(document, *, intake_data, pdf_bytes, external_url):
    # the anchored patient never changes here, see claim_intake_document
    document.intake_data = intake_data
    if external_url:
        document.external_url = external_url
        document.data = None
    elif pdf_bytes:
        document.data = pdf_bytes
    if external_url or pdf_bytes:
        for name, value in _file_fields(document.source_submission_id, True).items():
            setattr(document, name, value)
    document.save()
    return document


def upsert_intake_document(clinic, patient, intake: NormalizedIntake, *, intake_data: dict,
                           pdf_bytes: bytes | None = None, external_url: str = '') -> tuple[PatientDocument, bool]:
    """Returns (document, created). Redelivery updates the same row."""
    submission_id = intake.submission_id
    existing = find_intake_document(clinic, submission_id)
    if existing is not None:
        return _apply(existing, intake_data=intake_data,
                      pdf_bytes=pdf_bytes, external_url=external_url), False

    try:
        with transaction.atomic():
            document = PatientDocument.objects.create(
                clinic=clinic,
                patient=patient,
                category=PatientDocument.CATEGORY_INTAKE,
                source=intake.source,
                source_submission_id=submission_id,
                data=None if external_url else pdf_bytes,
                intake_data=intake_data,
                external_url=external_url,
                **_file_fields(submission_id, bool(pdf_bytes or external_url)),
            )
        return document, True
    except IntegrityError:
        logger.info('Document for submission %s created concurrently, updating it', submission_id)
        document = PatientDocument.objects.select_related('patient').get(
            clinic=clinic, source_submission_id=submission_id)
        return _apply(document, intake_data=intake_data,
                      pdf_bytes=pdf_bytes, external_url=external_url), False


def claim_intake_document(clinic, patient, intake: NormalizedIntake, *, intake_data: dict):
    """
    Anchor intake.submission_id to patient, inside the caller's transaction.

    Two first deliveries of one submission both miss the anchor during the
    patient lookup and both create a patient. Whichever loses the document
    insert gets SubmissionClaimed; it rolls back its patient write and
    resolves again, this time through the winner's anchor.
    """
    document, created = upsert_intake_document(clinic, patient, intake, intake_data=intake_data)
    if document.patient_id != patient.pk:
        raise SubmissionClaimed(document)
    return document, created
