"""
BasePharmacyClient: abstract base of every pharmacy network client.

A new network only has to:
1. subclass BasePharmacyClient
2. implement create_full_order()
3. register one line in factory.py
"""

from abc import ABC, abstractmethod

from .types import PharmacyCredentials, PharmacyOrderResult


class BasePharmacyClient(ABC):

    def __init__(self, credentials: PharmacyCredentials, timeout: float):
        self.credentials = credentials
        self.timeout = timeout

    @abstractmethod
    def create_full_order(self, payload: dict) -> PharmacyOrderResult:
        """
        Submit one complete order (patient, prescriber, rxs, document).

        Raises:
            PharmacyError: rejection, HTTP error, timeout. The message is kept
            verbatim on Order.error_message for operators.
        """
