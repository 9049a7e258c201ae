"""
Concrete intake adapters.

New source: add a class here, then register it in factory.py.

Registered sources:
  weightlossintake: WeightLossIntakeAdapter (MedLink-built forms, five payload shapes)
"""

import json
import logging
import time
from datetime import timezone as dt_timezone
from typing import Any

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .base import BaseIntakeAdapter
from .consent import extract_consent
from .fields import (
    KNOWN_FIELD_LABELS,
    UNKNOWN_FIRST_NAME,
    UNKNOWN_LAST_NAME,
    FieldRule,
    extract_field,
    extract_patient_fields,
    format_value,
    normalize_date,
    normalize_email,
    normalize_gender,
    normalize_key,
    normalize_name,
    normalize_state,
    normalize_zip,
    parse_address_object,
    sanitize_phone,
)
from .types import (
    SUBMISSION_COMPLETE,
    SUBMISSION_PARTIAL,
    IntakeAnswer,
    IntakeSection,
    NormalizedIntake,
    NormalizedPatient,
)

logger = logging.getLogger(__name__)

# keys inside `data` that describe the submission, not an answer
DATA_META_KEYS = {
    'tags', 'timestamp', 'submissionid', 'submissiontype', 'qualified', 'intakenotes',
}
# root keys of a MedLink v2 payload that are not answers
ROOT_META_KEYS = DATA_META_KEYS | {
    'responseid', 'id', 'formid', 'formname', 'meta', 'metadata', 'createdat',
    'submittedat', 'source', 'ipaddress', 'useragent', 'geolocation', 'consent',
}

FULL_NAME_RULES = [
    FieldRule(label='full name'),
    FieldRule(label='name', exact=True),
    FieldRule(label='patient name'),
]

DEFAULT_SECTION = 'Responses'


# ── WeightLossIntakeAdapter ────────────────────────────────────────────────
#
# Shapes, tried in order:
#   1. {"data": {"id-b1679347": "John", "email": "...", "tags": [...]}}
#      values may also be {"label": "First Name", "value": "John"}
#   2. MedLink v2: answers at the root, keyed by field id, with "responseId"
#   3. {"sections": [{"title": "...", "fields": [{"id", "label", "value"}]}]}
#   4. {"answers": [{"id", "label" | "question", "value" | "answer"}]}
#   5. {"fields": {"firstName": "John"}} or {"fields": [{"id", "label", "value"}]}
#
# submissionType / qualified / intakeNotes may sit at the root or inside `data`.

class WeightLossIntakeAdapter(BaseIntakeAdapter):
    source = "weightlossintake"
    base_tags = ("weightlossintake", "eonmeds", "glp1")

    def parse(self) -> Any:
        raw = self._raw_body
        if isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw or b"{}")
            except ValueError:
                logger.warning("[%s] body is not valid JSON, treating as empty", self.source)
                raw = {}
        self._parsed = raw if isinstance(raw, dict) else {}
        return self._parsed

    # ── answer collection ──────────────────────────────────────────────────

    @staticmethod
    def _answer(answer_id, label, raw_value, section=DEFAULT_SECTION):
        answer_id = str(answer_id or '')
        value = format_value(raw_value)
        if not value:
            return None
        label = str(label or KNOWN_FIELD_LABELS.get(answer_id) or answer_id)
        return IntakeAnswer(id=answer_id, label=label, value=value, section=section, raw_value=raw_value)

    def _answers_from_mapping(self, mapping: dict, skip: set, section=DEFAULT_SECTION) -> list[IntakeAnswer]:
        answers = []
        for key, raw in mapping.items():
            if normalize_key(key) in skip:
                continue
            label = None
            if isinstance(raw, dict) and ('value' in raw or 'answer' in raw):
                label = raw.get('label') or raw.get('question')
                raw = raw.get('value', raw.get('answer'))
            answer = self._answer(key, label, raw, section)
            if answer:
                answers.append(answer)
        return answers

    def _answers_from_list(self, items: list, section=DEFAULT_SECTION) -> list[IntakeAnswer]:
        answers = []
        for item in items:
            if not isinstance(item, dict):
                continue
            answer_id = item.get('id') or item.get('key') or item.get('name') or ''
            label = item.get('label') or item.get('question') or item.get('title')
            raw = item.get('value', item.get('answer'))
            answer = self._answer(answer_id, label, raw, section)
            if answer:
                answers.append(answer)
        return answers

    def _collect_sections(self, payload: dict) -> list[IntakeSection]:
        if isinstance(payload.get('data'), dict):
            answers = self._answers_from_mapping(payload['data'], DATA_META_KEYS)
            return [IntakeSection(DEFAULT_SECTION, answers)]

        if payload.get('responseId'):
            answers = self._answers_from_mapping(payload, ROOT_META_KEYS)
            return [IntakeSection(DEFAULT_SECTION, answers)]

        if isinstance(payload.get('sections'), list):
            sections = []
            for raw_section in payload['sections']:
                if not isinstance(raw_section, dict):
                    continue
                title = str(raw_section.get('title') or raw_section.get('name') or DEFAULT_SECTION)
                items = raw_section.get('fields') or raw_section.get('questions') or raw_section.get('answers') or []
                sections.append(IntakeSection(title, self._answers_from_list(items, title)))
            return sections

        if isinstance(payload.get('answers'), list):
            return [IntakeSection(DEFAULT_SECTION, self._answers_from_list(payload['answers']))]

        fields = payload.get('fields')
        if isinstance(fields, dict):
            return [IntakeSection(DEFAULT_SECTION, self._answers_from_mapping(fields, DATA_META_KEYS))]
        if isinstance(fields, list):
            return [IntakeSection(DEFAULT_SECTION, self._answers_from_list(fields))]

        return []

    # ── submission attributes ──────────────────────────────────────────────

    @staticmethod
    def _lookup(payload: dict, *keys):
        """First non-empty value among keys, at the root, then in data, then in meta."""
        scopes = [payload]
        for nested in ('data', 'meta', 'metadata'):
            if isinstance(payload.get(nested), dict):
                scopes.append(payload[nested])
        for scope in scopes:
            for key in keys:
                value = scope.get(key)
                if value not in (None, ''):
                    return value
        return None

    def _submission_id(self, payload: dict) -> str:
        value = self._lookup(payload, 'submissionId', 'responseId', 'id', 'submission_id')
        return str(value) if value is not None else f'medlink-{int(time.time() * 1000)}'

    def _submitted_at(self, payload: dict):
        value = self._lookup(payload, 'timestamp', 'submittedAt', 'createdAt')
        try:
            parsed = parse_datetime(str(value)) if value else None
        except ValueError:
            parsed = None
        if parsed is None:
            return timezone.now()
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed, dt_timezone.utc)
        return parsed

    # ── transform ──────────────────────────────────────────────────────────

    def _patient(self, answers: list[IntakeAnswer]) -> NormalizedPatient:
        fields = extract_patient_fields(answers)

        first_name, last_name = fields['first_name'], fields['last_name']
        if not first_name and not last_name:
            full_name = extract_field(answers, FULL_NAME_RULES)
            if full_name:
                first_name, _, last_name = full_name.partition(' ')

        address = parse_address_object(fields['address1'])
        if address:
            for key, value in address.items():
                if key == 'address1' or not fields[key]:
                    fields[key] = value

        return NormalizedPatient(
            first_name=normalize_name(first_name, UNKNOWN_FIRST_NAME),
            last_name=normalize_name(last_name, UNKNOWN_LAST_NAME),
            email=normalize_email(fields['email']),
            phone=sanitize_phone(fields['phone']),
            dob=normalize_date(fields['dob']),
            gender=normalize_gender(fields['gender']),
            address1=fields['address1'].strip(),
            address2=fields['address2'].strip(),
            city=fields['city'].strip(),
            state=normalize_state(fields['state']),
            zip=normalize_zip(fields['zip']),
        )

    def transform(self) -> NormalizedIntake:
        payload = self._parsed
        sections = self._collect_sections(payload)
        answers = [answer for section in sections for answer in section.answers]

        submission_type = str(self._lookup(payload, 'submissionType') or SUBMISSION_COMPLETE).lower()
        submission_type = SUBMISSION_PARTIAL if SUBMISSION_PARTIAL in submission_type else SUBMISSION_COMPLETE
        default_qualified = 'Pending' if submission_type == SUBMISSION_PARTIAL else 'Yes'

        return NormalizedIntake(
            submission_id=self._submission_id(payload),
            submission_type=submission_type,
            qualified=format_value(self._lookup(payload, 'qualified')) or default_qualified,
            submitted_at=self._submitted_at(payload),
            patient=self._patient(answers),
            sections=sections,
            answers=answers,
            notes=format_value(self._lookup(payload, 'intakeNotes', 'notes')),
            consent=extract_consent(payload, answers),
            source=self.source,
            raw_payload=payload,
        )
