import secrets
import uuid

from django.db import models


def generate_api_token():
    return secrets.token_hex(20)


class Clinic(models.Model):
    name = models.CharField(max_length=200)
    subdomain = models.CharField(max_length=100, unique=True)
    # billing amounts, patientPortal flags
    settings = models.JSONField(default=dict, blank=True)
    # per-clinic pharmacy credentials, overrides LIFEFILE_* settings
    lifefile_settings = models.JSONField(default=dict, blank=True)
    address = models.CharField(max_length=300, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'clinics'

    def __str__(self):
        return self.name


class Provider(models.Model):
    # clinic=None marks a shared provider who may prescribe for any clinic
    clinic = models.ForeignKey(Clinic, on_delete=models.SET_NULL, null=True, blank=True, related_name='providers')
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    npi = models.CharField(max_length=10, unique=True)
    dea = models.CharField(max_length=20, blank=True)
    license_state = models.CharField(max_length=2, blank=True)
    license_number = models.CharField(max_length=50, blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'providers'

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()


class ProviderClinic(models.Model):
    provider = models.ForeignKey(Provider, on_delete=models.CASCADE, related_name='clinic_assignments')
    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='provider_assignments')
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'provider_clinics'
        constraints = [
            models.UniqueConstraint(fields=['provider', 'clinic'], name='uniq_provider_clinic'),
        ]


class ClinicUser(models.Model):
    ROLE_SUPER_ADMIN = 'super_admin'
    ROLE_ADMIN = 'admin'
    ROLE_PROVIDER = 'provider'
    ROLE_STAFF = 'staff'
    ROLE_CHOICES = [
        (ROLE_SUPER_ADMIN, 'Super admin'),
        (ROLE_ADMIN, 'Admin'),
        (ROLE_PROVIDER, 'Provider'),
        (ROLE_STAFF, 'Staff'),
    ]

    email = models.EmailField(unique=True)
    role = models.CharField(max_length=20, choices=ROLE_CHOICES)
    clinic = models.ForeignKey(Clinic, on_delete=models.SET_NULL, null=True, blank=True, related_name='users')
    provider = models.ForeignKey(Provider, on_delete=models.SET_NULL, null=True, blank=True, related_name='users')
    api_token = models.CharField(max_length=64, unique=True, default=generate_api_token)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'clinic_users'

    @property
    def is_authenticated(self):
        return True

    @property
    def is_anonymous(self):
        return False


class UserClinic(models.Model):
    user = models.ForeignKey(ClinicUser, on_delete=models.CASCADE, related_name='clinic_memberships')
    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='user_memberships')
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'user_clinics'
        constraints = [
            models.UniqueConstraint(fields=['user', 'clinic'], name='uniq_user_clinic'),
        ]


class PatientCounter(models.Model):
    clinic = models.OneToOneField(Clinic, on_delete=models.CASCADE, related_name='patient_counter')
    current = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = 'patient_counters'


class Patient(models.Model):
    SOURCE_MANUAL = 'manual'
    SOURCE_WEBHOOK = 'webhook'
    SOURCE_PRESCRIPTION = 'prescription'

    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='patients')
    patient_id = models.CharField(max_length=20)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100)
    email = models.CharField(max_length=254, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    dob = models.CharField(max_length=10)   # YYYY-MM-DD, "1900-01-01" when unknown
    gender = models.CharField(max_length=1, blank=True)
    address1 = models.CharField(max_length=200, blank=True)
    address2 = models.CharField(max_length=200, blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=2, blank=True)
    zip = models.CharField(max_length=10, blank=True)
    tags = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True)
    source = models.CharField(max_length=20, default=SOURCE_MANUAL)
    source_metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patients'
        constraints = [
            models.UniqueConstraint(fields=['clinic', 'patient_id'], name='uniq_clinic_patient_id'),
        ]
        indexes = [
            models.Index(fields=['clinic', 'email']),
            models.Index(fields=['clinic', 'phone']),
            models.Index(fields=['clinic', 'last_name', 'first_name', 'dob']),
        ]

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip()


class PatientDocument(models.Model):
    CATEGORY_INTAKE = 'MEDICAL_INTAKE_FORM'

    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='documents')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='documents')
    filename = models.CharField(max_length=255)
    mime_type = models.CharField(max_length=100, default='application/json')
    category = models.CharField(max_length=50, default=CATEGORY_INTAKE)
    source = models.CharField(max_length=50, blank=True)
    source_submission_id = models.CharField(max_length=200)
    # rendered PDF, kept locally when it was not uploaded to storage
    data = models.BinaryField(null=True, blank=True)
    intake_data = models.JSONField(null=True, blank=True)
    external_url = models.CharField(max_length=1000, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'patient_documents'
        constraints = [
            models.UniqueConstraint(
                fields=['clinic', 'source_submission_id'],
                name='uniq_clinic_source_submission',
            ),
        ]


class SOAPNote(models.Model):
    STATUS_DRAFT = 'DRAFT'
    STATUS_APPROVED = 'APPROVED'

    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='soap_notes')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='soap_notes')
    document = models.ForeignKey(PatientDocument, on_delete=models.SET_NULL, null=True, blank=True)
    subjective = models.TextField(blank=True)
    objective = models.TextField(blank=True)
    assessment = models.TextField(blank=True)
    plan = models.TextField(blank=True)
    status = models.CharField(max_length=20, default=STATUS_DRAFT)
    generated_by_ai = models.BooleanField(default=True)
    llm_model = models.CharField(max_length=50, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'soap_notes'


class ReferralTracking(models.Model):
    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='referrals')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='referrals')
    promo_code = models.CharField(max_length=100)
    source_submission_id = models.CharField(max_length=200, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'referral_tracking'
        constraints = [
            models.UniqueConstraint(fields=['patient', 'promo_code'], name='uniq_patient_promo_code'),
        ]


class Order(models.Model):
    STATUS_PENDING = 'PENDING'
    STATUS_SENT = 'sent'
    STATUS_ERROR = 'error'
    STATUS_QUEUED_FOR_PROVIDER = 'queued_for_provider'
    STATUS_SUBMITTING = 'submitting'
    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_SUBMITTING, 'Submitting'),
        (STATUS_SENT, 'Sent'),
        (STATUS_ERROR, 'Error'),
        (STATUS_QUEUED_FOR_PROVIDER, 'Queued for provider'),
    ]
    # states a submission may start from; STATUS_SUBMITTING marks one in flight
    SUBMITTABLE_STATUSES = (STATUS_PENDING, STATUS_ERROR, STATUS_QUEUED_FOR_PROVIDER)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='orders')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='orders')
    provider = models.ForeignKey(Provider, on_delete=models.PROTECT, related_name='orders')
    message_id = models.CharField(max_length=100)
    reference_id = models.CharField(max_length=100)
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=STATUS_PENDING)
    shipping_method = models.PositiveSmallIntegerField(default=8115)
    plan_months = models.PositiveSmallIntegerField(null=True, blank=True)
    lifefile_order_id = models.CharField(max_length=100, null=True, blank=True)
    request_json = models.JSONField(null=True, blank=True)
    response_json = models.JSONField(null=True, blank=True)
    error_message = models.TextField(blank=True, null=True)
    queued_by = models.ForeignKey(ClinicUser, on_delete=models.SET_NULL, null=True, blank=True, related_name='queued_orders')
    queued_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'orders'
        constraints = [
            models.UniqueConstraint(fields=['message_id', 'clinic'], name='uniq_order_message_clinic'),
        ]


class Rx(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='rxs')
    medication_key = models.CharField(max_length=50)
    drug_name = models.CharField(max_length=200)
    strength = models.CharField(max_length=100)
    form = models.CharField(max_length=50)
    quantity = models.PositiveIntegerField()
    refills = models.PositiveIntegerField(default=0)
    sig = models.TextField()
    days_supply = models.PositiveIntegerField(default=30)

    class Meta:
        db_table = 'rxs'


class RefillQueue(models.Model):
    STATUS_PENDING_PROVIDER = 'PENDING_PROVIDER'
    STATUS_PRESCRIBED = 'PRESCRIBED'
    STATUS_SCHEDULED = 'SCHEDULED'

    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='refills')
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='refills')
    order = models.ForeignKey(Order, on_delete=models.SET_NULL, null=True, blank=True, related_name='refills')
    status = models.CharField(max_length=30, default=STATUS_SCHEDULED)
    interval_days = models.PositiveIntegerField(default=30)
    next_refill_date = models.DateField(null=True, blank=True)
    prescribed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'refill_queue'


class ProviderCompensationEvent(models.Model):
    provider = models.ForeignKey(Provider, on_delete=models.CASCADE, related_name='compensation_events')
    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='compensation_event')
    amount_cents = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'provider_compensation_events'


class PlatformFeeEvent(models.Model):
    clinic = models.ForeignKey(Clinic, on_delete=models.CASCADE, related_name='platform_fee_events')
    order = models.OneToOneField(Order, on_delete=models.CASCADE, related_name='platform_fee_event')
    amount_cents = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'platform_fee_events'


class PortalInvite(models.Model):
    patient = models.ForeignKey(Patient, on_delete=models.CASCADE, related_name='portal_invites')
    email = models.CharField(max_length=254)
    token = models.CharField(max_length=64, unique=True, default=generate_api_token)
    trigger = models.CharField(max_length=50)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'portal_invites'


class AuditLogQuerySet(models.QuerySet):

    def update(self, **kwargs):
        raise TypeError('Audit log entries are append-only')

    def delete(self):
        raise TypeError('Audit log entries are append-only')


class AuditLog(models.Model):
    clinic = models.ForeignKey(Clinic, on_delete=models.SET_NULL, null=True, blank=True, related_name='audit_logs')
    actor = models.CharField(max_length=254)
    action = models.CharField(max_length=100)
    resource_type = models.CharField(max_length=50)
    resource_id = models.CharField(max_length=100)
    diff = models.JSONField(default=dict, blank=True)
    request_id = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        db_table = 'audit_logs'

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise TypeError('Audit log entries are append-only')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise TypeError('Audit log entries are append-only')
