"""
Draft SOAP note generation from an intake document.

Called once per complete intake. Not retried: the LLM endpoint is rate
limited, a failure becomes a webhook warning and the note can be
generated later from the chart.
"""

import json
import logging
import re

from .llm import get_llm_service
from .models import SOAPNote

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a licensed telehealth clinician reviewing a weight-management intake form. "
    "Write a concise draft SOAP note for provider review. Do not invent findings that are "
    "not in the intake. Respond with a single JSON object with the string keys "
    '"subjective", "objective", "assessment" and "plan".'
)

SOAP_KEYS = ('subjective', 'objective', 'assessment', 'plan')
CODE_FENCE_RE = re.compile(r'^```(?:json)?\s*|\s*```$')


def build_prompt(patient, document) -> str:
    intake = document.intake_data or {}
    lines = [
        f"Patient: {patient.full_name} (ID {patient.patient_id})",
        f"DOB: {patient.dob}  Gender: {patient.gender or 'unknown'}",
        f"Submission: {intake.get('submission_id', document.source_submission_id)}",
        "",
        "Intake answers:",
    ]
    for answer in intake.get('answers', []):
        lines.append(f"- {answer['label']}: {answer['value']}")
    return "\n".join(lines)


def parse_soap_response(content: str) -> dict:
    """Model output → {subjective, objective, assessment, plan}. Raises ValueError when unusable."""
    text = CODE_FENCE_RE.sub('', (content or '').strip())
    data = json.loads(text)
    if not isinstance(data, dict) or not any(data.get(key) for key in SOAP_KEYS):
        raise ValueError('SOAP response has none of the expected sections')
    return {key: str(data.get(key) or '') for key in SOAP_KEYS}


def generate_soap_note(patient, document) -> SOAPNote:
    service = get_llm_service()
    response = service.complete(SYSTEM_PROMPT, build_prompt(patient, document))
    sections = parse_soap_response(response.content)

    note = SOAPNote.objects.create(
        clinic=patient.clinic,
        patient=patient,
        document=document,
        status=SOAPNote.STATUS_DRAFT,
        generated_by_ai=True,
        llm_model=response.model,
        **sections,
    )
    logger.info('Draft SOAP note %s generated for patient %s (%s)', note.pk, patient.pk, response.model)
    return note
