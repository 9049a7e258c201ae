"""
Integration tests for POST /api/webhooks/weightlossintake/.

Django test Client through the whole pipeline:
  HTTP Request → urls.py → View → webhooks.process_intake_submission → ORM → Response

PDF rendering and SOAP generation are patched; no LLM call is made.
"""
import json
import pytest
from unittest.mock import patch

from telehealth import patients
from telehealth.models import AuditLog, Patient, PatientDocument, ReferralTracking, SOAPNote
from tests.conftest import WEBHOOK_SECRET, ClinicFactory, PatientFactory, json_body


URL = '/api/webhooks/weightlossintake/'


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def post_intake(api_client, payload, secret=WEBHOOK_SECRET, **headers):
    """POST the webhook, return (status_code, body_dict)."""
    if secret is not None:
        headers['HTTP_X_WEBHOOK_SECRET'] = secret
    response = api_client.post(
        URL,
        data=payload if isinstance(payload, str) else json.dumps(payload),
        content_type='application/json',
        **headers,
    )
    return response.status_code, json_body(response)


def fake_soap_note(patient, document):
    return SOAPNote.objects.create(
        clinic=patient.clinic,
        patient=patient,
        document=document,
        subjective='S',
        objective='O',
        assessment='A',
        plan='P',
        llm_model='test-model',
    )


@pytest.fixture
def pipeline():
    """Patch the expensive soft steps; yields (mock_pdf, mock_soap)."""
    with patch('telehealth.webhooks.render_intake_pdf', return_value=b'%PDF-1.4 intake') as mock_pdf, \
            patch('telehealth.webhooks.generate_soap_note', side_effect=fake_soap_note) as mock_soap:
        yield mock_pdf, mock_soap


# ===================================================================
# Authentication
# ===================================================================

@pytest.mark.django_db
class TestWebhookAuth:

    def test_missing_secret_is_401(self, api_client, intake_clinic, intake_payload, pipeline):
        status, body = post_intake(api_client, intake_payload, secret=None)

        assert status == 401
        assert body['type'] == 'auth'
        assert body['code'] == 'INVALID_SECRET'
        assert Patient.objects.count() == 0

    def test_wrong_secret_is_401(self, api_client, intake_clinic, intake_payload, pipeline):
        status, _ = post_intake(api_client, intake_payload, secret='nope')
        assert status == 401

    def test_bearer_and_api_key_headers_accepted(self, api_client, intake_clinic, intake_payload, pipeline):
        status, _ = post_intake(api_client, intake_payload, secret=None,
                                HTTP_AUTHORIZATION=f'Bearer {WEBHOOK_SECRET}')
        assert status == 200

        status, _ = post_intake(api_client, intake_payload, secret=None, HTTP_X_API_KEY=WEBHOOK_SECRET)
        assert status == 200

    def test_unconfigured_secret_fails_closed(self, api_client, intake_clinic, intake_payload, settings):
        settings.INTAKE_WEBHOOK_SECRET = ''

        status, body = post_intake(api_client, intake_payload)

        assert status == 500
        assert body['code'] == 'NO_SECRET_CONFIGURED'


# ===================================================================
# Happy path
# ===================================================================

@pytest.mark.django_db
class TestWebhookHappyPath:

    def test_complete_submission(self, api_client, intake_clinic, intake_payload, pipeline):
        status, body = post_intake(api_client, intake_payload)

        assert status == 200
        assert body['success'] is True
        assert 'warnings' not in body
        assert 'type' not in body
        assert body['patient']['is_new'] is True
        assert body['patient']['patient_id'] == '000001'
        assert body['submission'] == {
            'id': 'sub-1001', 'type': 'complete', 'qualified': 'Yes', 'fallback': False,
        }
        assert body['clinic']['id'] == intake_clinic.pk
        assert body['soap_note']['status'] == SOAPNote.STATUS_DRAFT

        patient = Patient.objects.get()
        assert patient.clinic == intake_clinic
        assert patient.first_name == 'Maria'
        assert patient.last_name == 'Garcia'
        assert patient.email == 'maria.garcia@example.com'
        assert patient.phone == '8135550199'
        assert patient.dob == '1988-04-12'
        assert patient.state == 'FL'
        assert 'complete-intake' in patient.tags

        document = PatientDocument.objects.get()
        assert document.source_submission_id == 'sub-1001'
        assert bytes(document.data) == b'%PDF-1.4 intake'
        assert AuditLog.objects.filter(action='PATIENT_INTAKE_RECEIVED').count() == 1

    def test_partial_submission_skips_soap(self, api_client, intake_clinic, intake_payload, pipeline):
        _, mock_soap = pipeline
        intake_payload['submissionType'] = 'partial'

        status, body = post_intake(api_client, intake_payload)

        assert status == 200
        assert body['soap_note']['status'] == 'skipped'
        assert body['message'] == 'Partial intake saved'
        mock_soap.assert_not_called()
        assert 'partial-lead' in Patient.objects.get().tags

    def test_promo_code_is_tracked(self, api_client, intake_clinic, intake_payload, pipeline):
        intake_payload['data']['promoCode'] = 'save20'

        status, _ = post_intake(api_client, intake_payload)

        assert status == 200
        assert ReferralTracking.objects.get().promo_code == 'SAVE20'


# ===================================================================
# Idempotency + upgrade
# ===================================================================

@pytest.mark.django_db
class TestWebhookRedelivery:

    def test_redelivery_is_idempotent(self, api_client, intake_clinic, intake_payload, pipeline):
        _, mock_soap = pipeline
        post_intake(api_client, intake_payload)
        status, body = post_intake(api_client, intake_payload)

        assert status == 200
        assert body['patient']['is_new'] is False
        assert Patient.objects.count() == 1
        assert PatientDocument.objects.count() == 1
        assert SOAPNote.objects.count() == 1
        assert mock_soap.call_count == 1
        assert Patient.objects.get().notes.count('sub-1001') == 1

    def test_partial_then_complete_upgrades_same_patient(self, api_client, intake_clinic,
                                                         intake_payload, pipeline):
        partial = json.loads(json.dumps(intake_payload))
        partial['submissionId'] = 'sub-p'
        partial['submissionType'] = 'partial'
        post_intake(api_client, partial)

        status, body = post_intake(api_client, intake_payload)

        assert status == 200
        assert body['patient']['upgraded_to_complete'] is True
        patient = Patient.objects.get()
        assert 'partial-lead' not in patient.tags
        assert 'complete-intake' in patient.tags
        assert PatientDocument.objects.filter(patient=patient).count() == 2

    def test_delivery_racing_a_committed_one_binds_to_its_patient(self, api_client, intake_clinic,
                                                                  intake_payload, pipeline):
        post_intake(api_client, intake_payload)
        winner = Patient.objects.get()

        # this delivery's lookup ran before the other one committed its anchor
        real_lookup = patients.find_existing_patient
        lookups = []

        def stale_then_real(*args, **kwargs):
            lookups.append(args)
            return None if len(lookups) == 1 else real_lookup(*args, **kwargs)

        with patch('telehealth.patients.find_existing_patient', side_effect=stale_then_real):
            status, body = post_intake(api_client, intake_payload)

        assert status == 200
        assert len(lookups) == 2
        assert body['patient']['is_new'] is False
        assert Patient.objects.count() == 1
        assert PatientDocument.objects.get().patient == winner
        assert Patient.objects.get().notes.count('sub-1001') == 1

    def test_other_clinic_patient_is_not_reused(self, api_client, intake_clinic, intake_payload, pipeline):
        other = ClinicFactory()
        PatientFactory(clinic=other, email='maria.garcia@example.com', first_name='Maria',
                       last_name='Garcia', dob='1988-04-12')

        status, body = post_intake(api_client, intake_payload)

        assert status == 200
        assert body['patient']['is_new'] is True
        assert Patient.objects.filter(clinic=intake_clinic).count() == 1
        assert Patient.objects.filter(clinic=other).count() == 1


# ===================================================================
# Degraded input + soft failures
# ===================================================================

@pytest.mark.django_db
class TestWebhookDegraded:

    def test_empty_payload_still_creates_patient(self, api_client, intake_clinic, pipeline):
        status, body = post_intake(api_client, {})

        assert status == 200
        patient = Patient.objects.get()
        assert patient.first_name == 'Unknown'
        assert patient.last_name == 'Lead'
        assert patient.dob == '1900-01-01'
        assert body['submission']['id'].startswith('medlink-')

    def test_invalid_json_still_creates_patient(self, api_client, intake_clinic, pipeline):
        status, _ = post_intake(api_client, '{not json')

        assert status == 200
        assert Patient.objects.count() == 1

    def test_unparseable_payload_redelivery_reuses_patient(self, api_client, intake_clinic, pipeline):
        with patch('telehealth.intake.adapters.WeightLossIntakeAdapter.process',
                   side_effect=ValueError('unexpected shape')):
            post_intake(api_client, {'submissionId': 'sub-broken'})
            status, body = post_intake(api_client, {'submissionId': 'sub-broken'})

        assert status == 200
        assert body['submission']['id'] == 'sub-broken'
        assert body['submission']['fallback'] is True
        assert body['patient']['is_new'] is False
        assert Patient.objects.count() == 1
        assert PatientDocument.objects.get().source_submission_id == 'sub-broken'

    def test_soap_failure_is_a_warning(self, api_client, intake_clinic, intake_payload):
        with patch('telehealth.webhooks.render_intake_pdf', return_value=b'%PDF'), \
                patch('telehealth.webhooks.generate_soap_note', side_effect=RuntimeError('LLM down')):
            status, body = post_intake(api_client, intake_payload)

        assert status == 200
        assert body['success'] is True
        assert body['soap_note'] is None
        assert [w['code'] for w in body['warnings']] == ['SOAP_GENERATION_FAILED']
        assert PatientDocument.objects.count() == 1

    def test_pdf_failure_keeps_json_document(self, api_client, intake_clinic, intake_payload):
        with patch('telehealth.webhooks.render_intake_pdf', side_effect=RuntimeError('font missing')), \
                patch('telehealth.webhooks.generate_soap_note', side_effect=fake_soap_note):
            status, body = post_intake(api_client, intake_payload)

        assert status == 200
        assert [w['code'] for w in body['warnings']] == ['PDF_GENERATION_FAILED']
        document = PatientDocument.objects.get()
        assert document.filename == 'intake-sub-1001.json'
        assert document.intake_data is not None

    def test_missing_clinic_is_500(self, api_client, intake_payload, pipeline, settings):
        settings.INTAKE_CLINIC_SUBDOMAIN = 'nowhere'

        status, body = post_intake(api_client, intake_payload)

        assert status == 500
        assert body['code'] == 'CLINIC_NOT_FOUND'
        assert body['detail']['queued'] is False
        assert Patient.objects.count() == 0


# ===================================================================
# Dead-letter replay
# ===================================================================

@pytest.mark.django_db
class TestDeadLetter:

    def test_critical_failure_queues_payload(self, api_client, intake_payload, pipeline, settings):
        settings.INTAKE_DLQ_ENABLED = True
        settings.INTAKE_CLINIC_SUBDOMAIN = 'nowhere'

        with patch('telehealth.tasks.replay_intake_submission.delay') as mock_delay:
            status, body = post_intake(api_client, intake_payload)

        assert status == 500
        assert body['detail']['queued'] is True
        payload, source, request_id, client = mock_delay.call_args.args
        assert payload['submissionId'] == 'sub-1001'
        assert source == 'weightlossintake'
        assert request_id == body['detail']['request_id']

    def test_replay_task_runs_pipeline(self, intake_clinic, intake_payload, pipeline):
        from telehealth.tasks import replay_intake_submission

        patient_pk = replay_intake_submission.apply(
            args=[intake_payload, 'weightlossintake', 'req-replay'],
        ).get()

        patient = Patient.objects.get()
        assert patient_pk == str(patient.pk)
        assert PatientDocument.objects.get().source_submission_id == 'sub-1001'
