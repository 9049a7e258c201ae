import logging

from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from .authentication import client_ip, verify_webhook_secret
from .exceptions import BlockError
from .models import Order
from .permissions import IsPrescriber, check_user_clinic
from .prescriptions import create_prescription, resubmit_prescription
from .serializers import (
    serialize_intake_result,
    serialize_order,
    serialize_prescription_outcome,
    serialize_submission,
)
from .webhooks import new_request_id, process_intake_submission

logger = logging.getLogger(__name__)


def _request_id(request) -> str:
    return (request.headers.get('X-Request-Id') or '').strip()[:64] or new_request_id()


def _get_order(request, order_id) -> Order:
    order = (Order.objects.select_related('clinic', 'patient', 'provider')
             .filter(pk=order_id).first())
    if order is None:
        raise BlockError(
            message='Order not found.',
            code='ORDER_NOT_FOUND',
            detail={'order_id': str(order_id)},
            http_status=404,
        )
    check_user_clinic(request.user, order.clinic)
    return order


class IntakeWebhookView(APIView):
    """POST /api/webhooks/weightlossintake/ - intake form deliveries (shared secret)."""

    authentication_classes = ()
    permission_classes = (AllowAny,)
    source = 'weightlossintake'

    def post(self, request):
        verify_webhook_secret(request)
        result = process_intake_submission(
            request.body,
            source=self.source,
            request_id=_request_id(request),
            ip_address=client_ip(request),
            user_agent=request.headers.get('User-Agent', ''),
            content_type=request.content_type or 'application/json',
        )
        return Response(serialize_intake_result(result), status=200)


class PrescriptionCreateView(APIView):
    """POST /api/prescriptions/ - write the order, then send it to the pharmacy."""

    permission_classes = (IsPrescriber,)

    def post(self, request):
        outcome = create_prescription(
            request.data,
            user=request.user,
            idempotency_key=request.headers.get('Idempotency-Key', ''),
            request_id=_request_id(request),
        )
        return Response(serialize_prescription_outcome(outcome), status=201 if outcome.is_new else 200)


class PrescriptionDetailView(APIView):
    """GET /api/prescriptions/<order_id>/"""

    permission_classes = (IsPrescriber,)

    def get(self, request, order_id):
        return Response(serialize_order(_get_order(request, order_id)))


class PrescriptionSubmitView(APIView):
    """POST /api/prescriptions/<order_id>/submit/ - pharmacy-only retry / provider approval."""

    permission_classes = (IsPrescriber,)

    def post(self, request, order_id):
        order = _get_order(request, order_id)
        submission = resubmit_prescription(order, user=request.user, request_id=_request_id(request))
        return Response(serialize_submission(submission))
