"""
Prescription request parsing and validation.

    raw JSON body → PrescriptionRequest

Field problems are collected and raised together as one ValidationError
(detail.errors = [{field, message}]). Missing patient demographics get their
own code, MISSING_PATIENT_INFO, because the client fixes them differently.
"""

from dataclasses import dataclass
from typing import Optional

from ..exceptions import ValidationError
from ..intake.fields import (
    SENTINEL_DOB,
    capitalize_words,
    normalize_date,
    normalize_state,
    normalize_zip,
    sanitize_phone,
)
from .medications import Medication, get_medication

DEFAULT_SHIPPING_METHOD = 8115
DEFAULT_DAYS_SUPPLY = 30
MAX_MESSAGE_ID_LENGTH = 100

REQUIRED_PATIENT_FIELDS = ('first_name', 'last_name', 'dob', 'gender', 'address1', 'city', 'state', 'zip')


@dataclass
class PatientInput:
    first_name: str
    last_name: str
    dob: str                     # YYYY-MM-DD
    gender: str                  # raw value; pharmacy_gender() decides
    phone: str = ''
    email: str = ''
    address1: str = ''
    address2: str = ''
    city: str = ''
    state: str = ''
    zip: str = ''

    def as_dict(self) -> dict:
        return {
            'first_name': self.first_name,
            'last_name': self.last_name,
            'dob': self.dob,
            'gender': self.gender,
            'phone': self.phone,
            'email': self.email,
            'address1': self.address1,
            'address2': self.address2,
            'city': self.city,
            'state': self.state,
            'zip': self.zip,
        }


@dataclass
class RxInput:
    medication: Medication
    quantity: int
    refills: int = 0
    sig: str = ''
    days_supply: int = DEFAULT_DAYS_SUPPLY


@dataclass
class PrescriptionRequest:
    patient: PatientInput
    rxs: list[RxInput]
    provider_id: Optional[int] = None
    clinic_id: Optional[int] = None
    patient_id: Optional[int] = None
    message_id: str = ''
    queue_for_provider: bool = False
    override_vial_safeguard: bool = False
    plan_months: Optional[int] = None
    shipping_method: int = DEFAULT_SHIPPING_METHOD
    memo: str = ''


def _text(value) -> str:
    if value is None:
        return ''
    return str(value).strip()


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _int(data: dict, key: str, errors: list, *, field_name: str, minimum: int = 0,
         default=None):
    value = data.get(key)
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        errors.append({'field': field_name, 'message': 'Must be an integer.'})
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors.append({'field': field_name, 'message': 'Must be an integer.'})
        return default
    if number < minimum:
        errors.append({'field': field_name, 'message': f'Must be at least {minimum}.'})
        return default
    return number


def parse_patient(data) -> PatientInput:
    if not isinstance(data, dict):
        data = {}

    dob = normalize_date(data.get('dob'))
    patient = PatientInput(
        first_name=capitalize_words(_text(data.get('first_name'))),
        last_name=capitalize_words(_text(data.get('last_name'))),
        dob='' if dob == SENTINEL_DOB else dob,
        gender=_text(data.get('gender')),
        phone=sanitize_phone(data.get('phone')) if _text(data.get('phone')) else '',
        email=_text(data.get('email')).lower(),
        address1=_text(data.get('address1')),
        address2=_text(data.get('address2')),
        city=_text(data.get('city')),
        state=normalize_state(data.get('state')),
        zip=normalize_zip(data.get('zip')),
    )

    missing = [name for name in REQUIRED_PATIENT_FIELDS if not getattr(patient, name)]
    if missing:
        raise ValidationError(
            message='Missing patient information.',
            code='MISSING_PATIENT_INFO',
            detail={'missing_fields': [f'patient.{name}' for name in missing]},
        )
    return patient


def parse_rxs(items, errors: list) -> list[RxInput]:
    if not isinstance(items, list) or not items:
        errors.append({'field': 'rxs', 'message': 'At least one prescription is required.'})
        return []

    rxs = []
    for index, item in enumerate(items):
        prefix = f'rxs[{index}]'
        if not isinstance(item, dict):
            errors.append({'field': prefix, 'message': 'Must be an object.'})
            continue

        medication = get_medication(_text(item.get('medication_key')))
        if medication is None:
            errors.append({'field': f'{prefix}.medication_key',
                           'message': f"Unknown medication: {item.get('medication_key')!r}."})
            continue

        quantity = _int(item, 'quantity', errors, field_name=f'{prefix}.quantity', minimum=1)
        if quantity is None:
            if not any(e['field'] == f'{prefix}.quantity' for e in errors):
                errors.append({'field': f'{prefix}.quantity', 'message': 'Quantity is required.'})
            continue

        sig = _text(item.get('sig')) or medication.default_sig
        if not sig:
            errors.append({'field': f'{prefix}.sig', 'message': 'Directions are required.'})
            continue

        rxs.append(RxInput(
            medication=medication,
            quantity=quantity,
            refills=_int(item, 'refills', errors, field_name=f'{prefix}.refills', default=0),
            sig=sig,
            days_supply=_int(item, 'days_supply', errors, field_name=f'{prefix}.days_supply',
                             minimum=1, default=DEFAULT_DAYS_SUPPLY),
        ))
    return rxs


def parse_prescription_request(data, idempotency_key: str = '') -> PrescriptionRequest:
    """
    Validate a decoded request body.

    Raises:
        ValidationError: MISSING_PATIENT_INFO or VALIDATION_ERROR (400).
    """
    if not isinstance(data, dict):
        raise ValidationError(message='Request body must be a JSON object.', code='VALIDATION_ERROR')

    errors: list[dict] = []
    patient = parse_patient(data.get('patient'))
    rxs = parse_rxs(data.get('rxs'), errors)

    message_id = _text(data.get('message_id')) or _text(idempotency_key)
    if len(message_id) > MAX_MESSAGE_ID_LENGTH:
        errors.append({'field': 'message_id',
                       'message': f'Must be at most {MAX_MESSAGE_ID_LENGTH} characters.'})

    request = PrescriptionRequest(
        patient=patient,
        rxs=rxs,
        provider_id=_int(data, 'provider_id', errors, field_name='provider_id', minimum=1),
        clinic_id=_int(data, 'clinic_id', errors, field_name='clinic_id', minimum=1),
        patient_id=_int(data, 'patient_id', errors, field_name='patient_id', minimum=1),
        message_id=message_id,
        queue_for_provider=_flag(data.get('queue_for_provider')),
        override_vial_safeguard=(_flag(data.get('override_vial_safeguard'))
                                 or _flag(data.get('allow_multiple_vials'))),
        plan_months=_int(data, 'plan_months', errors, field_name='plan_months', minimum=1),
        shipping_method=_int(data, 'shipping_method', errors, field_name='shipping_method',
                             minimum=1, default=DEFAULT_SHIPPING_METHOD),
        memo=_text(data.get('memo')),
    )

    if errors:
        raise ValidationError(
            message='Request validation failed.',
            code='VALIDATION_ERROR',
            detail={'errors': errors},
        )
    return request
