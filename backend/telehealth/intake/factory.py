"""
Factory: map an intake source string to its adapter class.

New source:
  1. add the adapter class in adapters.py
  2. add one line to the registry below
  No webhook or business code changes.
"""

from django.utils import timezone

from ..exceptions import ValidationError
from .base import BaseIntakeAdapter
from .fields import SENTINEL_DOB, SENTINEL_PHONE, UNKNOWN_FIRST_NAME, UNKNOWN_LAST_NAME, synthesize_email
from .types import SUBMISSION_COMPLETE, SUBMISSION_PARTIAL, NormalizedIntake, NormalizedPatient


# root keys a broken payload may still carry its submission id under
FALLBACK_ID_KEYS = ("submissionId", "responseId", "submission_id")


# ── Registry ────────────────────────────────────────────────────────────────
# key: source string (the webhook path segment)
# value: adapter class (not instantiated)
def _build_registry() -> dict[str, type[BaseIntakeAdapter]]:
    # deferred import, avoids a cycle with adapters → base → factory users
    from .adapters import WeightLossIntakeAdapter

    return {
        "weightlossintake": WeightLossIntakeAdapter,
    }


def get_adapter(source: str, raw_body: bytes | str | dict, content_type: str = "") -> BaseIntakeAdapter:
    """
    Return an instantiated adapter for source.

    Args:
        source:       intake source id, e.g. "weightlossintake"
        raw_body:     request body (bytes / str) or an already-decoded dict (DLQ replay)
        content_type: HTTP Content-Type, for adapters that care

    Raises:
        ValidationError: unknown source
    """
    registry = _build_registry()
    adapter_cls = registry.get(source)

    if adapter_cls is None:
        raise ValidationError(
            message=f"Unknown intake source: {source!r}.",
            code="UNKNOWN_SOURCE",
            detail={"known_sources": list(registry.keys())},
        )

    return adapter_cls(raw_body=raw_body, content_type=content_type)


def fallback_intake(request_id: str, payload=None, source: str = "") -> NormalizedIntake:
    """
    Fully synthetic intake for a payload the adapter could not normalize.

    Still produces a patient (flagged Unknown / Lead) so the sender gets a 2xx
    and does not redeliver the same poison payload forever. A usable
    submission id in the payload is kept, so a redelivery resolves to the
    same patient through its intake document.
    """
    submission_type = SUBMISSION_COMPLETE
    submission_id = f"fallback-{request_id}"
    if isinstance(payload, dict):
        raw_type = payload.get("submissionType")
        if isinstance(raw_type, str) and SUBMISSION_PARTIAL in raw_type.lower():
            submission_type = SUBMISSION_PARTIAL
        for key in FALLBACK_ID_KEYS:
            raw_id = payload.get(key)
            if isinstance(raw_id, (str, int)) and not isinstance(raw_id, bool) and str(raw_id).strip():
                submission_id = str(raw_id).strip()
                break

    return NormalizedIntake(
        submission_id=submission_id,
        submission_type=submission_type,
        qualified="Pending" if submission_type == SUBMISSION_PARTIAL else "Yes",
        submitted_at=timezone.now(),
        patient=NormalizedPatient(
            first_name=UNKNOWN_FIRST_NAME,
            last_name=UNKNOWN_LAST_NAME,
            email=synthesize_email(),
            phone=SENTINEL_PHONE,
            dob=SENTINEL_DOB,
            gender="m",
        ),
        source=source,
        is_fallback=True,
        raw_payload=payload if isinstance(payload, dict) else None,
        notes="Payload could not be normalized",
    )
