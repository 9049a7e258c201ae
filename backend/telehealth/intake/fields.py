"""
Field-extraction rules and value normalizers for intake payloads.

Each canonical patient field has an ordered list of FieldRules. The first
rule that matches an answer carrying a non-empty value wins, so the
priority order is data, not control flow, and can be tested on its own.

Normalizers never raise. Anything unusable collapses to a sentinel:
  name   → "Unknown" / "Lead"
  email  → "unknown-<ms>@intake.local"
  phone  → "0000000000"
  dob    → "1900-01-01"
  gender → "m" (prefix heuristic for "f" / "w")
"""

import json
import re
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from .types import IntakeAnswer

UNKNOWN_FIRST_NAME = 'Unknown'
UNKNOWN_LAST_NAME = 'Lead'
SENTINEL_PHONE = '0000000000'
SENTINEL_DOB = '1900-01-01'
SENTINEL_EMAIL_DOMAIN = 'intake.local'

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
SENTINEL_EMAIL_RE = re.compile(r'^unknown-\d+@intake\.local$')
ISO_DATE_RE = re.compile(r'^(\d{4})-(\d{1,2})-(\d{1,2})')
SLASH_DATE_RE = re.compile(r'^(\d{1,2})/(\d{1,2})/(\d{4})$')
COMPACT_DATE_RE = re.compile(r'^(\d{2})(\d{2})(\d{4})$')


def normalize_key(value) -> str:
    """Lowercase, alphanumerics only. "First Name" / "first_name" / "firstName" → "firstname"."""
    return re.sub(r'[^a-z0-9]', '', str(value or '').lower())


# ── Extraction rules ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class FieldRule:
    """
    Match an answer by id or by label.

    id          exact answer id (normalized comparison)
    id_prefix   answer id starts with this (some form builders suffix ids)
    label       normalized label contains this
    exact       with label: the whole normalized label must equal it
    """

    id: str = ''
    id_prefix: str = ''
    label: str = ''
    exact: bool = False

    def matches(self, answer: IntakeAnswer) -> bool:
        answer_id = normalize_key(answer.id)
        if self.id and answer_id == normalize_key(self.id):
            return True
        if self.id_prefix and answer_id.startswith(normalize_key(self.id_prefix)):
            return True
        if self.label:
            answer_label = normalize_key(answer.label)
            needle = normalize_key(self.label)
            if self.exact:
                return answer_label == needle
            return needle in answer_label
        return False


PATIENT_FIELD_RULES: dict[str, list[FieldRule]] = {
    'first_name': [
        FieldRule(id='id-b1679347'),
        FieldRule(id='firstName'),
        FieldRule(label='first name'),
        FieldRule(label='given name'),
    ],
    'last_name': [
        FieldRule(id='id-30d7dea8'),
        FieldRule(id='lastName'),
        FieldRule(label='last name'),
        FieldRule(label='family name'),
        FieldRule(label='surname'),
    ],
    'email': [
        FieldRule(id='id-62de7872'),
        FieldRule(label='email'),
    ],
    'phone': [
        FieldRule(id='phone-input-id-cc54007b'),
        FieldRule(label='phone'),
        FieldRule(label='mobile'),
    ],
    'dob': [
        FieldRule(id='id-01a47886'),
        FieldRule(label='date of birth'),
        FieldRule(label='dob', exact=True),
        FieldRule(label='birthday'),
        FieldRule(label='birth date'),
    ],
    'gender': [
        FieldRule(id='id-19e348ba'),
        FieldRule(label='gender'),
        FieldRule(label='sex', exact=True),
        FieldRule(label='biological sex'),
    ],
    'address1': [
        FieldRule(id_prefix='id-38a5bae0'),
        FieldRule(label='street address'),
        FieldRule(label='address line 1'),
        FieldRule(label='address1', exact=True),
        FieldRule(label='shipping address'),
        FieldRule(label='home address'),
        FieldRule(label='address', exact=True),
    ],
    'address2': [
        FieldRule(id='id-0d142f9e'),
        FieldRule(label='address line 2'),
        FieldRule(label='address2', exact=True),
        FieldRule(label='apartment'),
        FieldRule(label='suite'),
    ],
    'city': [
        FieldRule(id='id-4f6b5d22'),
        FieldRule(label='city'),
    ],
    'state': [
        FieldRule(id='id-bd8fcb1c'),
        FieldRule(label='state', exact=True),
        FieldRule(label='state of residence'),
        FieldRule(label='shipping state'),
    ],
    'zip': [
        FieldRule(id='id-9c8e5ba1'),
        FieldRule(label='zip'),
        FieldRule(label='postal code'),
    ],
}

# Human labels for form-builder ids that arrive without one
KNOWN_FIELD_LABELS = {
    'id-b1679347': 'First Name',
    'id-30d7dea8': 'Last Name',
    'id-62de7872': 'Email',
    'phone-input-id-cc54007b': 'Phone',
    'id-01a47886': 'Date of Birth',
    'id-19e348ba': 'Gender',
    'id-38a5bae0': 'Address',
    'id-0d142f9e': 'Apartment / Suite',
    'id-4f6b5d22': 'City',
    'id-bd8fcb1c': 'State',
    'id-9c8e5ba1': 'ZIP Code',
    'id-703e9a1c': 'Current Weight',
    'id-cf20e7c9': 'Goal Weight',
    'id-3a7e6f11': 'Height',
    'id-e8a4c0f2': 'Promo Code',
}


def extract_field(answers: Iterable[IntakeAnswer], rules: list[FieldRule]) -> str:
    """First non-empty answer value matched by the highest-priority rule, else ''."""
    answers = list(answers)
    for rule in rules:
        for answer in answers:
            if answer.value and rule.matches(answer):
                return answer.value
    return ''


def extract_patient_fields(answers: Iterable[IntakeAnswer]) -> dict[str, str]:
    answers = list(answers)
    return {name: extract_field(answers, rules) for name, rules in PATIENT_FIELD_RULES.items()}


def parse_address_object(value) -> Optional[dict]:
    """
    Some forms post the whole address as one object (or its JSON string).
    Returns {address1, address2, city, state, zip} or None when it is plain text.
    """
    if isinstance(value, str):
        text = value.strip()
        if not text.startswith('{'):
            return None
        try:
            value = json.loads(text)
        except ValueError:
            return None
    if not isinstance(value, dict):
        return None

    def pick(*keys):
        for key in keys:
            if value.get(key):
                return str(value[key]).strip()
        return ''

    return {
        'address1': pick('street', 'address1', 'address', 'line1', 'street_address'),
        'address2': pick('apartment', 'address2', 'unit', 'suite', 'line2'),
        'city': pick('city', 'locality'),
        'state': pick('state', 'region', 'state_code', 'stateCode'),
        'zip': pick('zip', 'zipCode', 'zip_code', 'postalCode', 'postal_code'),
    }


# ── Normalizers ────────────────────────────────────────────────────────────

def capitalize_words(value: str) -> str:
    return ' '.join(word[:1].upper() + word[1:].lower() for word in str(value or '').split())


def normalize_name(value: str, fallback: str) -> str:
    return capitalize_words(value) or fallback


def synthesize_email() -> str:
    return f'unknown-{int(time.time() * 1000)}@{SENTINEL_EMAIL_DOMAIN}'


def normalize_email(value: str) -> str:
    email = str(value or '').strip().lower()
    return email if EMAIL_RE.match(email) else synthesize_email()


def is_sentinel_email(value: str) -> bool:
    return bool(SENTINEL_EMAIL_RE.match(str(value or '')))


def sanitize_phone(value: str) -> str:
    digits = re.sub(r'\D', '', str(value or ''))
    if len(digits) == 11 and digits.startswith('1'):
        digits = digits[1:]
    return digits or SENTINEL_PHONE


def is_sentinel_phone(value: str) -> bool:
    return not value or value == SENTINEL_PHONE


def _valid_date(year, month, day) -> Optional[str]:
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def normalize_date(value) -> str:
    """ISO, then MM/DD/YYYY, then MMDDYYYY. Anything else → "1900-01-01"."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value or '').strip()
    if not text:
        return SENTINEL_DOB

    match = ISO_DATE_RE.match(text)
    if match:
        parsed = _valid_date(*match.groups())
        if parsed:
            return parsed

    match = SLASH_DATE_RE.match(text)
    if match:
        month, day, year = match.groups()
        parsed = _valid_date(year, month, day)
        if parsed:
            return parsed

    match = COMPACT_DATE_RE.match(text)
    if match:
        month, day, year = match.groups()
        parsed = _valid_date(year, month, day)
        if parsed:
            return parsed

    return SENTINEL_DOB


def normalize_gender(value: str) -> str:
    """
    Intake is lenient: anything not recognizably female maps to "m".

    Prescriptions use prescriptions.payload.pharmacy_gender instead, which rejects.
    """
    token = str(value or '').strip().lower()
    if token in ('f', 'female', 'woman'):
        return 'f'
    if token in ('m', 'male', 'man'):
        return 'm'
    if token.startswith('f') or token.startswith('w'):
        return 'f'
    return 'm'


US_STATES = {
    'alabama': 'AL', 'alaska': 'AK', 'arizona': 'AZ', 'arkansas': 'AR', 'california': 'CA',
    'colorado': 'CO', 'connecticut': 'CT', 'delaware': 'DE', 'district of columbia': 'DC',
    'florida': 'FL', 'georgia': 'GA', 'hawaii': 'HI', 'idaho': 'ID', 'illinois': 'IL',
    'indiana': 'IN', 'iowa': 'IA', 'kansas': 'KS', 'kentucky': 'KY', 'louisiana': 'LA',
    'maine': 'ME', 'maryland': 'MD', 'massachusetts': 'MA', 'michigan': 'MI', 'minnesota': 'MN',
    'mississippi': 'MS', 'missouri': 'MO', 'montana': 'MT', 'nebraska': 'NE', 'nevada': 'NV',
    'new hampshire': 'NH', 'new jersey': 'NJ', 'new mexico': 'NM', 'new york': 'NY',
    'north carolina': 'NC', 'north dakota': 'ND', 'ohio': 'OH', 'oklahoma': 'OK', 'oregon': 'OR',
    'pennsylvania': 'PA', 'rhode island': 'RI', 'south carolina': 'SC', 'south dakota': 'SD',
    'tennessee': 'TN', 'texas': 'TX', 'utah': 'UT', 'vermont': 'VT', 'virginia': 'VA',
    'washington': 'WA', 'west virginia': 'WV', 'wisconsin': 'WI', 'wyoming': 'WY',
    'puerto rico': 'PR',
}


def normalize_state(value: str) -> str:
    text = str(value or '').strip()
    if len(text) == 2 and text.isalpha():
        return text.upper()
    return US_STATES.get(text.lower(), '')


def normalize_zip(value: str) -> str:
    digits = re.sub(r'\D', '', str(value or ''))
    return digits[:5]


def format_value(value) -> str:
    """Display string for an answer value. '' means "no answer"."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'Yes' if value else 'No'
    if isinstance(value, (list, tuple)):
        return ', '.join(format_value(v) for v in value if format_value(v))
    if isinstance(value, dict):
        if 'value' in value:
            return format_value(value['value'])
        return json.dumps(value, sort_keys=True, default=str)
    return str(value).strip()
