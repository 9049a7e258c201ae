"""
Response serializers: ORM objects / pipeline results → JSON-able dicts.

Output formatting only. Request parsing and validation live in intake/
(webhooks) and prescriptions/schema.py.
"""


def _iso(value):
    return value.isoformat() if value else None


def serialize_patient(patient, *, is_new=None):
    data = {
        'id': patient.pk,
        'patient_id': patient.patient_id,
        'name': patient.full_name,
        'email': patient.email,
        'tags': patient.tags,
    }
    if is_new is not None:
        data['is_new'] = is_new
    return data


def serialize_intake_result(result):
    """200 body of the intake webhook. `warnings` only when a soft step failed."""
    intake, upsert, document = result.intake, result.upsert, result.document
    soap_note = result.soap_note

    if soap_note is not None:
        soap = {'id': soap_note.pk, 'status': soap_note.status}
    elif intake.is_partial:
        soap = {'status': 'skipped', 'reason': 'partial submission'}
    else:
        soap = None

    body = {
        'success': True,
        'request_id': result.request_id,
        'patient': {
            **serialize_patient(upsert.patient, is_new=upsert.is_new),
            'upgraded_to_complete': upsert.upgraded,
        },
        'submission': {
            'id': intake.submission_id,
            'type': intake.submission_type,
            'qualified': intake.qualified,
            'fallback': intake.is_fallback,
        },
        'document': {
            'id': document.pk,
            'filename': document.filename,
            'pdf_url': document.external_url or None,
        },
        'soap_note': soap,
        'clinic': {'id': result.clinic.pk, 'name': result.clinic.name},
        'processing_time_ms': result.processing_time_ms,
        'message': 'Partial intake saved' if intake.is_partial else 'Intake processed',
    }
    if result.warnings:
        body['warnings'] = result.warnings
    return body


def serialize_rx(rx):
    return {
        'medication_key': rx.medication_key,
        'drug_name': rx.drug_name,
        'strength': rx.strength,
        'form': rx.form,
        'quantity': rx.quantity,
        'refills': rx.refills,
        'sig': rx.sig,
        'days_supply': rx.days_supply,
    }


def serialize_order(order):
    response = {
        'id': str(order.pk),
        'status': order.status,
        'message_id': order.message_id,
        'reference_id': order.reference_id,
        'clinic_id': order.clinic_id,
        'provider_id': order.provider_id,
        'patient': serialize_patient(order.patient),
        'plan_months': order.plan_months,
        'shipping_method': order.shipping_method,
        'lifefile_order_id': order.lifefile_order_id,
        'rxs': [serialize_rx(rx) for rx in order.rxs.all().order_by('pk')],
        'created_at': _iso(order.created_at),
        'submitted_at': _iso(order.submitted_at),
    }

    if order.status == order.STATUS_ERROR:
        response['error'] = {
            'message': order.error_message,
            'retry_allowed': True,
        }
    elif order.status == order.STATUS_QUEUED_FOR_PROVIDER:
        response['queued_at'] = _iso(order.queued_at)
        response['queued_by'] = order.queued_by_id

    return response


def serialize_prescription_outcome(outcome):
    body = {
        'success': True,
        'order': serialize_order(outcome.order),
    }
    if not outcome.is_new:
        body['duplicate'] = True
        body['message'] = 'Order already exists for this message_id'
    elif outcome.queued:
        body['queued_for_provider'] = True
        body['message'] = 'Prescription queued for provider review'
    else:
        body['submission'] = {
            'pharmacy_order_id': outcome.submission.pharmacy_order_id,
            'pharmacy_status': outcome.submission.pharmacy_status,
        }
        body['message'] = 'Prescription sent to pharmacy'
    if outcome.warnings:
        body['warnings'] = outcome.warnings
    return body


def serialize_submission(submission):
    body = {
        'success': True,
        'order': serialize_order(submission.order),
        'submission': {
            'pharmacy_order_id': submission.pharmacy_order_id,
            'pharmacy_status': submission.pharmacy_status,
        },
        'message': 'Prescription sent to pharmacy',
    }
    if submission.warnings:
        body['warnings'] = submission.warnings
    return body
