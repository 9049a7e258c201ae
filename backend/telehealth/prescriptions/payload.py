"""
Pharmacy order payload construction.

Rx lines are expanded once (syringe kits added) and stored on the Order.
The payload is rebuilt from the stored Order for every submission attempt,
so a retry sends the same order the first attempt did.
"""

import base64
import time
from typing import Optional

from django.utils import timezone

from ..exceptions import ValidationError
from .medications import SYRINGE_KIT_PRODUCT_ID, clinical_difference_statement, get_medication

SYRINGE_KIT_SIG = 'Use supplies as directed for subcutaneous injection.'

PHARMACY_GENDERS = {
    'm': 'm',
    'male': 'm',
    'f': 'f',
    'female': 'f',
}


def pharmacy_gender(value) -> str:
    """
    The pharmacy accepts exactly "m" or "f".

    Unlike intake, an unrecognized value is rejected: the order goes to a
    regulated external system and must not carry a guessed gender.
    """
    token = str(value or '').strip().lower()
    gender = PHARMACY_GENDERS.get(token)
    if gender is None:
        raise ValidationError(
            message=f'Gender {value!r} is not accepted by the pharmacy, use "m" or "f".',
            code='INVALID_PHARMACY_GENDER',
            detail={'field': 'patient.gender', 'value': value},
        )
    return gender


def new_message_id() -> str:
    return f'eonpro-{int(time.time() * 1000)}'


def new_reference_id() -> str:
    return f'rx-{int(time.time() * 1000)}'


def _line(medication, *, quantity, refills, sig, days_supply) -> dict:
    return {
        'medication_key': medication.key,
        'drug_name': medication.name,
        'strength': medication.strength,
        'form': medication.form,
        'quantity': quantity,
        'refills': refills,
        'sig': sig,
        'days_supply': days_supply,
    }


def expand_rxs(rxs) -> list[dict]:
    """RxInput list → Rx line dicts, plus one syringe kit per GLP-1 vial."""
    lines = [
        _line(rx.medication, quantity=rx.quantity, refills=rx.refills,
              sig=rx.sig, days_supply=rx.days_supply)
        for rx in rxs
    ]

    vials = sum(rx.quantity for rx in rxs if rx.medication.is_glp1)
    has_kit = any(rx.medication.id == SYRINGE_KIT_PRODUCT_ID for rx in rxs)
    if vials and not has_kit:
        lines.append(_line(get_medication(SYRINGE_KIT_PRODUCT_ID), quantity=vials, refills=0,
                           sig=SYRINGE_KIT_SIG, days_supply=30))
    return lines


def _rx_payload(rx, date_written: str) -> dict:
    item = {
        'rxType': 'new',
        'drugName': rx.drug_name,
        'drugStrength': rx.strength,
        'drugForm': rx.form,
        'lfProductID': int(rx.medication_key),
        'quantity': str(rx.quantity),
        'quantityUnits': 'EA',
        'directions': rx.sig,
        'refills': rx.refills,
        'dateWritten': date_written,
        'daysSupply': rx.days_supply,
    }
    medication = get_medication(rx.medication_key)
    statement = clinical_difference_statement(medication) if medication else None
    if statement:
        item['clinicalDifferenceStatement'] = statement
    return item


def practice_info(clinic, credentials) -> dict:
    return {
        'id': credentials.practice_id,
        'name': credentials.practice_name or clinic.name,
        'address': credentials.practice_address or clinic.address,
        'phone': credentials.practice_phone or clinic.phone,
        'fax': credentials.practice_fax,
    }


def build_order_payload(order, credentials, pdf_bytes: Optional[bytes] = None) -> dict:
    """
    Full pharmacy order for a stored Order.

    Patient demographics come from the snapshot taken when the order was
    written (order.request_json['patient']), not from the live Patient row.
    """
    snapshot = (order.request_json or {}).get('patient') or {}
    provider = order.provider
    practice = practice_info(order.clinic, credentials)
    now = timezone.now()
    date_written = now.strftime('%Y-%m-%d')

    payload = {
        'message': {
            'id': order.message_id,
            'sentTime': now.isoformat(),
        },
        'order': {
            'general': {
                'memo': (order.request_json or {}).get('memo') or '',
                'referenceId': order.reference_id,
            },
            'prescriber': {
                'npi': provider.npi,
                'licenseState': provider.license_state,
                'licenseNumber': provider.license_number,
                'dea': provider.dea,
                'firstName': provider.first_name,
                'lastName': provider.last_name,
                'phone': provider.phone,
                'email': provider.email,
            },
            'practice': practice,
            'patient': {
                'firstName': snapshot.get('first_name', ''),
                'lastName': snapshot.get('last_name', ''),
                'gender': pharmacy_gender(snapshot.get('gender')),
                'dateOfBirth': snapshot.get('dob', ''),
                'address1': snapshot.get('address1', ''),
                'address2': snapshot.get('address2', ''),
                'city': snapshot.get('city', ''),
                'state': snapshot.get('state', ''),
                'zip': snapshot.get('zip', ''),
                'phoneHome': snapshot.get('phone', ''),
                'email': snapshot.get('email', ''),
            },
            'shipping': {
                'recipientType': 'patient',
                'recipientFirstName': snapshot.get('first_name', ''),
                'recipientLastName': snapshot.get('last_name', ''),
                'recipientPhone': snapshot.get('phone', ''),
                'recipientEmail': snapshot.get('email', ''),
                'addressLine1': snapshot.get('address1', ''),
                'addressLine2': snapshot.get('address2', ''),
                'city': snapshot.get('city', ''),
                'state': snapshot.get('state', ''),
                'zipCode': snapshot.get('zip', ''),
                'service': order.shipping_method,
            },
            'billing': {
                'payorType': 'pat',
            },
            'rxs': [_rx_payload(rx, date_written) for rx in order.rxs.all().order_by('pk')],
        },
    }
    if pdf_bytes:
        payload['order']['document'] = {
            'pdfBase64': base64.b64encode(pdf_bytes).decode('ascii'),
        }
    return payload


def redact_payload(payload: dict) -> dict:
    """Copy of the payload without the embedded PDF, for Order.request_json."""
    order = {key: value for key, value in payload.get('order', {}).items() if key != 'document'}
    return {**payload, 'order': order}
