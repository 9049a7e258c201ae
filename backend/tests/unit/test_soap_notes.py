"""
Unit tests for the collaborators behind the intake soft steps:
SOAP note drafting, LLM backend selection and S3 upload.
"""
import pytest
from unittest.mock import MagicMock, patch

from telehealth.llm import get_llm_service
from telehealth.llm.services import ClaudeService, OpenAIService
from telehealth.llm.types import LLMResponse
from telehealth.models import PatientDocument, SOAPNote
from telehealth.soap_notes import build_prompt, generate_soap_note, parse_soap_response
from telehealth.storage import DocumentStorage
from tests.conftest import PatientFactory


def make_document(patient):
    return PatientDocument.objects.create(
        clinic=patient.clinic,
        patient=patient,
        filename='intake-sub-1.json',
        source_submission_id='sub-1',
        intake_data={
            'submission_id': 'sub-1',
            'answers': [
                {'id': 'id-703e9a1c', 'label': 'Current Weight', 'value': '210', 'section': 'Intake'},
                {'id': 'id-cf20e7c9', 'label': 'Goal Weight', 'value': '160', 'section': 'Intake'},
            ],
        },
    )


class TestParseSoapResponse:

    def test_plain_json(self):
        sections = parse_soap_response('{"subjective": "S", "objective": "O", "assessment": "A", "plan": "P"}')
        assert sections == {'subjective': 'S', 'objective': 'O', 'assessment': 'A', 'plan': 'P'}

    def test_code_fence_is_stripped_and_missing_keys_blank(self):
        sections = parse_soap_response('```json\n{"subjective": "S"}\n```')
        assert sections['subjective'] == 'S'
        assert sections['plan'] == ''

    @pytest.mark.parametrize('content', ['{}', '[]', '{"notes": "x"}'])
    def test_unusable_response_raises(self, content):
        with pytest.raises(ValueError):
            parse_soap_response(content)

    def test_not_json_raises(self):
        with pytest.raises(ValueError):
            parse_soap_response('Here is your SOAP note: ...')


@pytest.mark.django_db
class TestGenerateSoapNote:

    def test_prompt_lists_intake_answers(self):
        patient = PatientFactory()
        prompt = build_prompt(patient, make_document(patient))

        assert 'Current Weight: 210' in prompt
        assert 'Submission: sub-1' in prompt

    @patch('telehealth.soap_notes.get_llm_service')
    def test_creates_draft_note(self, mock_factory):
        mock_factory.return_value.complete.return_value = LLMResponse(
            content='{"subjective": "Wants to lose 50 lb", "objective": "210 lb", '
                    '"assessment": "Obesity", "plan": "GLP-1 candidate"}',
            model='test-model',
        )
        patient = PatientFactory()
        document = make_document(patient)

        note = generate_soap_note(patient, document)

        assert note.status == SOAPNote.STATUS_DRAFT
        assert note.document == document
        assert note.llm_model == 'test-model'
        assert note.plan == 'GLP-1 candidate'

    @patch('telehealth.soap_notes.get_llm_service')
    def test_llm_failure_propagates_and_writes_nothing(self, mock_factory):
        mock_factory.return_value.complete.side_effect = RuntimeError('429 rate limited')
        patient = PatientFactory()

        with pytest.raises(RuntimeError):
            generate_soap_note(patient, make_document(patient))
        assert SOAPNote.objects.count() == 0


class TestLlmFactory:

    def test_default_is_anthropic(self, settings):
        settings.LLM_PROVIDER = 'anthropic'
        assert isinstance(get_llm_service(), ClaudeService)

    def test_openai(self, settings):
        settings.LLM_PROVIDER = 'openai'
        assert isinstance(get_llm_service(), OpenAIService)

    def test_unknown_provider(self, settings):
        settings.LLM_PROVIDER = 'llama'
        with pytest.raises(ValueError, match='Unknown LLM_PROVIDER'):
            get_llm_service()

    def test_missing_api_key(self, settings):
        settings.ANTHROPIC_API_KEY = ''
        with pytest.raises(ValueError, match='ANTHROPIC_API_KEY'):
            ClaudeService().complete('system', 'user')


class TestDocumentStorage:

    @patch('telehealth.storage.boto3.client')
    def test_upload_returns_s3_url(self, mock_client, settings):
        settings.AWS_S3_BUCKET = 'eon-docs'
        s3 = MagicMock()
        mock_client.return_value = s3

        key = DocumentStorage.intake_key(1, 2, 'sub-1')
        url = DocumentStorage().upload(key, b'%PDF')

        assert key == 'clinics/1/patients/2/intake/sub-1.pdf'
        assert url == 's3://eon-docs/clinics/1/patients/2/intake/sub-1.pdf'
        kwargs = s3.put_object.call_args.kwargs
        assert kwargs['Bucket'] == 'eon-docs'
        assert kwargs['ContentType'] == 'application/pdf'
