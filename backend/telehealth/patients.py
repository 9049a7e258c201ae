"""
Patient record upsert engine.

Lookup order within one clinic (never across clinics):
  0. the PatientDocument already anchored to this submission id (redelivery)
  1. email, unless it is a synthesized sentinel
  2. phone, unless it is the all-zeros sentinel
  3. exact first name + last name + dob, unless any of them is a sentinel

Lead qualification is a two-state machine, partial → complete. complete is
sticky: a later partial submission never re-adds the partial tags.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional

from django.db import DatabaseError, transaction
from django.db.models import F

from .documents import find_intake_document
from .intake.fields import (
    SENTINEL_DOB,
    UNKNOWN_FIRST_NAME,
    UNKNOWN_LAST_NAME,
    is_sentinel_email,
    is_sentinel_phone,
)
from .intake.types import NormalizedIntake, NormalizedPatient
from .models import Patient, PatientCounter

logger = logging.getLogger(__name__)

TAG_PARTIAL_LEAD = 'partial-lead'
TAG_NEEDS_FOLLOWUP = 'needs-followup'
TAG_COMPLETE_INTAKE = 'complete-intake'
PARTIAL_TAGS = (TAG_PARTIAL_LEAD, TAG_NEEDS_FOLLOWUP)

UPDATABLE_FIELDS = (
    'first_name', 'last_name', 'email', 'phone', 'dob', 'gender',
    'address1', 'address2', 'city', 'state', 'zip',
)


# ── Tags ───────────────────────────────────────────────────────────────────

def normalize_tag(tag) -> str:
    return str(tag or '').strip().lstrip('#').strip().lower()


def merge_tags(existing: Iterable, incoming: Iterable, remove: Iterable = ()) -> list[str]:
    """
    Ordered union; "#VIP" and "vip" are the same tag, first spelling wins.
    Tags in remove are dropped from both sides.
    """
    removed = {normalize_tag(tag) for tag in remove}
    seen = set()
    merged = []
    for tag in list(existing or []) + list(incoming or []):
        key = normalize_tag(tag)
        if not key or key in seen or key in removed:
            continue
        seen.add(key)
        merged.append(str(tag).strip())
    return merged


def has_tag(tags: Iterable, tag: str) -> bool:
    return normalize_tag(tag) in {normalize_tag(t) for t in tags or []}


def intake_tags(base_tags: Iterable[str], intake: NormalizedIntake) -> list[str]:
    if intake.is_partial:
        return list(base_tags) + list(PARTIAL_TAGS)
    return list(base_tags) + [TAG_COMPLETE_INTAKE]


# ── Notes ──────────────────────────────────────────────────────────────────

def build_note_line(intake: NormalizedIntake) -> str:
    kind = 'PARTIAL' if intake.is_partial else 'COMPLETE'
    lines = [f'[{intake.submitted_at.isoformat()}] {kind}: {intake.submission_id}']
    if intake.notes:
        lines.append(f'Notes: {intake.notes}')
    if intake.qualified and intake.qualified != 'Yes':
        lines.append(f'Qualified: {intake.qualified}')
    return '\n'.join(lines)


def notes_reference(notes: str, submission_id: str) -> bool:
    pattern = rf': {re.escape(submission_id)}(\s|$)'
    return bool(re.search(pattern, notes or ''))


def append_note(notes: str, note_line: str, submission_id: str) -> str:
    """Append note_line unless a block already references submission_id."""
    if notes_reference(notes, submission_id):
        return notes or ''
    if not notes:
        return note_line
    return f'{notes}\n\n{note_line}'


# ── Display id ─────────────────────────────────────────────────────────────

def fallback_patient_id() -> str:
    return f'WLI{str(int(time.time() * 1000))[-8:]}'


def next_patient_id(clinic) -> str:
    """
    Atomic per-clinic counter, zero-padded to 6 digits.

    Counter contention or failure degrades to a timestamp id; patient
    creation never fails because of the counter.
    """
    try:
        with transaction.atomic():
            counter, _ = PatientCounter.objects.get_or_create(clinic=clinic)
            PatientCounter.objects.filter(pk=counter.pk).update(current=F('current') + 1)
            counter.refresh_from_db(fields=['current'])
        return str(counter.current).zfill(6)
    except DatabaseError as exc:
        patient_id = fallback_patient_id()
        logger.warning('Patient counter failed for clinic %s (%s), using %s', clinic.pk, exc, patient_id)
        return patient_id


# ── Lookup ─────────────────────────────────────────────────────────────────

def _is_sentinel_identity(patient: NormalizedPatient) -> bool:
    return (
        patient.first_name == UNKNOWN_FIRST_NAME
        or patient.last_name == UNKNOWN_LAST_NAME
        or patient.dob == SENTINEL_DOB
    )


def find_existing_patient(clinic, patient: NormalizedPatient, submission_id: str = '') -> Optional[Patient]:
    """First match wins, strictly scoped to clinic."""
    scoped = Patient.objects.filter(clinic=clinic)

    if submission_id:
        document = find_intake_document(clinic, submission_id)
        if document is not None:
            return document.patient

    if patient.email and not is_sentinel_email(patient.email):
        match = scoped.filter(email__iexact=patient.email).order_by('created_at').first()
        if match:
            return match

    if not is_sentinel_phone(patient.phone):
        match = scoped.filter(phone=patient.phone).order_by('created_at').first()
        if match:
            return match

    if not _is_sentinel_identity(patient):
        match = scoped.filter(
            first_name__iexact=patient.first_name,
            last_name__iexact=patient.last_name,
            dob=patient.dob,
        ).order_by('created_at').first()
        if match:
            return match

    return None


# ── Upsert ─────────────────────────────────────────────────────────────────

@dataclass
class UpsertResult:
    patient: Patient
    is_new: bool
    changes: dict = field(default_factory=dict)     # field → [old, new], for the audit log
    upgraded: bool = False                          # partial → complete on this submission


def _is_usable(name: str, value: str) -> bool:
    """Sentinels and blanks never overwrite stored data."""
    if not value:
        return False
    if name == 'email':
        return not is_sentinel_email(value)
    if name == 'phone':
        return not is_sentinel_phone(value)
    if name == 'dob':
        return value != SENTINEL_DOB
    if name == 'first_name':
        return value != UNKNOWN_FIRST_NAME
    if name == 'last_name':
        return value != UNKNOWN_LAST_NAME
    return True


def upsert_patient(clinic, intake: NormalizedIntake, *, base_tags=(), source=Patient.SOURCE_WEBHOOK,
                   source_metadata=None) -> UpsertResult:
    data = intake.patient
    tags = intake_tags(base_tags, intake)
    note_line = build_note_line(intake)
    existing = find_existing_patient(clinic, data, intake.submission_id)

    if existing is None:
        patient = Patient.objects.create(
            clinic=clinic,
            patient_id=next_patient_id(clinic),
            first_name=data.first_name,
            last_name=data.last_name,
            email=data.email,
            phone=data.phone,
            dob=data.dob,
            gender=data.gender,
            address1=data.address1,
            address2=data.address2,
            city=data.city,
            state=data.state,
            zip=data.zip,
            tags=merge_tags([], tags),
            notes=note_line,
            source=source,
            source_metadata=source_metadata or {},
        )
        logger.info('Created patient %s (%s) in clinic %s', patient.pk, patient.patient_id, clinic.pk)
        return UpsertResult(patient=patient, is_new=True)

    changes = {}
    for name in UPDATABLE_FIELDS:
        value = getattr(data, name)
        if _is_usable(name, value) and getattr(existing, name) != value:
            changes[name] = [getattr(existing, name), value]
            setattr(existing, name, value)

    was_partial = has_tag(existing.tags, TAG_PARTIAL_LEAD)
    already_complete = has_tag(existing.tags, TAG_COMPLETE_INTAKE)

    if intake.is_partial and already_complete:
        tags = [tag for tag in tags if normalize_tag(tag) not in PARTIAL_TAGS]
    remove = () if intake.is_partial else PARTIAL_TAGS

    new_tags = merge_tags(existing.tags, tags, remove=remove)
    if new_tags != existing.tags:
        changes['tags'] = [existing.tags, new_tags]
        existing.tags = new_tags

    existing.notes = append_note(existing.notes, note_line, intake.submission_id)
    if source_metadata:
        existing.source_metadata = {**(existing.source_metadata or {}), **source_metadata}
    existing.save()

    upgraded = was_partial and not intake.is_partial
    if upgraded:
        logger.info('Patient %s upgraded partial → complete by %s', existing.pk, intake.submission_id)
    return UpsertResult(patient=existing, is_new=False, changes=changes, upgraded=upgraded)
