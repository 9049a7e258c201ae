"""
Pharmacy layer shapes.

submission.py only knows PharmacyCredentials and PharmacyOrderResult, never
which pharmacy network is behind the client.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PharmacyCredentials:
    base_url: str
    username: str
    password: str
    vendor_id: str
    practice_id: str
    location_id: str
    network_id: str = ''
    practice_name: str = ''
    practice_address: str = ''
    practice_phone: str = ''
    practice_fax: str = ''
    source: str = 'env'          # "clinic" or "env", for logging only

    @property
    def is_complete(self) -> bool:
        return all((self.base_url, self.username, self.password, self.vendor_id, self.practice_id))


@dataclass
class PharmacyOrderResult:
    order_id: str
    status: str                  # pharmacy status, "sent" when not reported
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


class PharmacyError(Exception):
    """The pharmacy rejected the order or could not be reached."""
