"""
NormalizedIntake dataclass: the only intake shape the business layer knows.

Every adapter's transform() returns this structure. The upsert engine and the
side-effect steps only consume it and never touch the raw third-party payload.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

SUBMISSION_COMPLETE = 'complete'
SUBMISSION_PARTIAL = 'partial'


@dataclass
class IntakeAnswer:
    id: str
    label: str
    value: str                 # display string, lists joined with ", "
    section: str = ''
    raw_value: Any = field(default=None, repr=False)


@dataclass
class IntakeSection:
    title: str
    answers: list[IntakeAnswer] = field(default_factory=list)


@dataclass
class NormalizedPatient:
    first_name: str
    last_name: str
    email: str
    phone: str                 # 10 digits, "0000000000" when unknown
    dob: str                   # ISO 8601 "YYYY-MM-DD", "1900-01-01" when unknown
    gender: str                # "m" / "f"
    address1: str = ''
    address2: str = ''
    city: str = ''
    state: str = ''
    zip: str = ''


@dataclass
class ConsentMetadata:
    consents: dict[str, bool] = field(default_factory=dict)
    signature: str = ''
    ip_address: str = ''
    user_agent: str = ''
    geolocation: dict[str, Any] = field(default_factory=dict)
    consented_at: str = ''

    def as_dict(self) -> dict:
        return {
            'consents': self.consents,
            'signature': self.signature,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'geolocation': self.geolocation,
            'consented_at': self.consented_at,
        }


@dataclass
class NormalizedIntake:
    """
    Canonical intake record.

    raw_payload   original decoded JSON, kept for troubleshooting and replay only.
    is_fallback   True when the payload could not be normalized and every field is synthetic.
    """

    submission_id: str
    submission_type: str
    qualified: str
    submitted_at: datetime
    patient: NormalizedPatient
    sections: list[IntakeSection] = field(default_factory=list)
    answers: list[IntakeAnswer] = field(default_factory=list)
    notes: str = ''
    consent: ConsentMetadata = field(default_factory=ConsentMetadata)
    source: str = ''
    is_fallback: bool = False
    raw_payload: Any = field(default=None, repr=False)

    @property
    def is_partial(self) -> bool:
        return self.submission_type == SUBMISSION_PARTIAL
