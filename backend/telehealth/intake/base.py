"""
BaseIntakeAdapter: abstract base for every intake source.

A new source only has to:
1. subclass BaseIntakeAdapter
2. implement parse() and transform()
3. register one line in factory.py's registry

The webhook pipeline needs no change.
"""

from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ValidationError
from .types import NormalizedIntake


class BaseIntakeAdapter(ABC):
    """
    Three-step pipeline: parse → transform → validate

    Subclasses implement parse() and transform(). Unlike order intake, an
    intake adapter must not reject missing demographics: transform() fills
    sentinels, and validate() only checks what the pipeline cannot work
    without (the idempotency key).
    """

    # registry key, also stored on PatientDocument.source
    source: str = ""
    # tags applied to every patient this source touches
    base_tags: tuple[str, ...] = ()

    def __init__(self, raw_body: bytes | str | dict, content_type: str = ""):
        self._raw_body = raw_body
        self._content_type = content_type
        self._parsed = None

    @property
    def payload(self) -> Any:
        """Decoded payload once parse() has run, for fallback and replay."""
        return self._parsed

    # ── Required ───────────────────────────────────────────────────────────

    @abstractmethod
    def parse(self) -> Any:
        """
        Decode the raw body (bytes / str / dict) into an intermediate structure.
        Store it on self._parsed for transform().
        """

    @abstractmethod
    def transform(self) -> NormalizedIntake:
        """
        Turn self._parsed into a NormalizedIntake.
        Must keep the decoded payload on NormalizedIntake.raw_payload.
        """

    # ── Overridable ────────────────────────────────────────────────────────

    def validate(self, intake: NormalizedIntake) -> None:
        if not intake.submission_id:
            raise ValidationError(
                message="Intake submission has no submission id.",
                code="MISSING_SUBMISSION_ID",
            )

    # ── Entry point ────────────────────────────────────────────────────────

    def process(self) -> NormalizedIntake:
        """parse → transform → validate, returns the NormalizedIntake."""
        self.parse()
        intake = self.transform()
        self.validate(intake)
        return intake
