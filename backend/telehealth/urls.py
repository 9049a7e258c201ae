from django.urls import path

from .views import (
    IntakeWebhookView,
    PrescriptionCreateView,
    PrescriptionDetailView,
    PrescriptionSubmitView,
)

urlpatterns = [
    path('webhooks/weightlossintake/', IntakeWebhookView.as_view(), name='webhook-weightlossintake'),
    path('prescriptions/', PrescriptionCreateView.as_view(), name='prescription-create'),
    path('prescriptions/<uuid:order_id>/', PrescriptionDetailView.as_view(), name='prescription-detail'),
    path('prescriptions/<uuid:order_id>/submit/', PrescriptionSubmitView.as_view(), name='prescription-submit'),
]
