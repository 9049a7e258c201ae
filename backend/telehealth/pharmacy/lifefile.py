"""
Lifefile pharmacy network client.

POST {base_url}/order with HTTP basic auth and the vendor / location /
network headers. A 2xx body carries the pharmacy order id under
data.orderId (older tenants: orderId at the root).
"""

import logging

import requests

from .base import BasePharmacyClient
from .types import PharmacyError, PharmacyOrderResult

logger = logging.getLogger(__name__)


class LifefileClient(BasePharmacyClient):

    def _headers(self) -> dict:
        creds = self.credentials
        headers = {
            'Content-Type': 'application/json',
            'X-Vendor-ID': creds.vendor_id,
            'X-Location-ID': creds.location_id,
        }
        if creds.network_id:
            headers['X-API-Network'] = creds.network_id
        return headers

    def create_full_order(self, payload: dict) -> PharmacyOrderResult:
        url = f"{self.credentials.base_url.rstrip('/')}/order"
        message_id = payload.get('message', {}).get('id')
        logger.info('[Lifefile] submitting order message_id=%s', message_id)

        try:
            resp = requests.post(
                url,
                json=payload,
                headers=self._headers(),
                auth=(self.credentials.username, self.credentials.password),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.Timeout as exc:
            raise PharmacyError(f'timed out after {self.timeout}s') from exc
        except requests.HTTPError as exc:
            response = exc.response
            status = response.status_code if response is not None else '?'
            body = response.text[:500] if response is not None else ''
            raise PharmacyError(f'HTTP {status}: {body}') from exc
        except requests.RequestException as exc:
            raise PharmacyError(str(exc)) from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise PharmacyError('response was not JSON') from exc

        data = body.get('data') if isinstance(body.get('data'), dict) else body
        order_id = data.get('orderId') or data.get('order_id')
        if not order_id:
            raise PharmacyError(f"no order id in response: {body.get('message') or body}")

        status = str(body.get('status') or data.get('status') or 'sent')
        logger.info('[Lifefile] accepted message_id=%s as order %s (%s)', message_id, order_id, status)
        return PharmacyOrderResult(order_id=str(order_id), status=status, raw=body)
