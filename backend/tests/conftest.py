"""
Shared fixtures for all tests.

factory-boy factories live here so both unit/ and integration/ can import them.
"""
import json
import pytest
from unittest.mock import MagicMock
from django.test import Client

import factory
from telehealth.models import (
    Clinic,
    ClinicUser,
    Order,
    Patient,
    Provider,
    ProviderClinic,
    RefillQueue,
    Rx,
)
from telehealth.pharmacy.types import PharmacyCredentials, PharmacyOrderResult


WEBHOOK_SECRET = 'test-webhook-secret'

LIFEFILE_SETTINGS = {
    'base_url': 'https://lifefile.test/api/v1',
    'username': 'eon',
    'password': 'secret',
    'vendor_id': '11596',
    'practice_id': '1270306',
    'location_id': '110396',
    'network_id': 'eonpro',
    'practice_name': 'EONMeds Practice',
}

SEMAGLUTIDE_KEY = '203448971'
TIRZEPATIDE_KEY = '203448972'
TESTOSTERONE_KEY = '203448974'
ONDANSETRON_KEY = '203194055'
SYRINGE_KIT_KEY = '203449363'


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class ClinicFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Clinic

    name = factory.Sequence(lambda n: f'Clinic {n}')
    subdomain = factory.Sequence(lambda n: f'clinic{n}')
    settings = factory.LazyFunction(dict)
    lifefile_settings = factory.LazyFunction(lambda: dict(LIFEFILE_SETTINGS))
    address = '100 Main St, Tampa, FL 33602'
    phone = '8135550100'


class ProviderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Provider

    clinic = factory.SubFactory(ClinicFactory)
    first_name = 'Sarah'
    last_name = 'Lee'
    npi = factory.Sequence(lambda n: f'{1000000000 + n}')
    dea = 'FL1234563'
    license_state = 'FL'
    license_number = 'ME123456'
    email = factory.Sequence(lambda n: f'provider{n}@clinic.test')


class ProviderClinicFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ProviderClinic

    provider = factory.SubFactory(ProviderFactory)
    clinic = factory.SubFactory(ClinicFactory)


class ClinicUserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ClinicUser

    email = factory.Sequence(lambda n: f'user{n}@clinic.test')
    role = ClinicUser.ROLE_ADMIN
    clinic = factory.SubFactory(ClinicFactory)


class PatientFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Patient

    clinic = factory.SubFactory(ClinicFactory)
    patient_id = factory.Sequence(lambda n: f'{n + 1:06d}')
    first_name = 'Jane'
    last_name = 'Doe'
    email = factory.Sequence(lambda n: f'patient{n}@example.com')
    phone = factory.Sequence(lambda n: f'81355{n:05d}')
    dob = '1990-01-15'
    gender = 'f'
    address1 = '12 Palm Ave'
    city = 'Tampa'
    state = 'FL'
    zip = '33602'
    tags = factory.LazyFunction(list)


class OrderFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Order

    clinic = factory.SubFactory(ClinicFactory)
    patient = factory.SubFactory(PatientFactory, clinic=factory.SelfAttribute('..clinic'))
    provider = factory.SubFactory(ProviderFactory, clinic=factory.SelfAttribute('..clinic'))
    message_id = factory.Sequence(lambda n: f'eonpro-test-{n}')
    reference_id = factory.Sequence(lambda n: f'rx-test-{n}')
    status = Order.STATUS_PENDING
    request_json = factory.LazyAttribute(lambda o: {
        'patient': {
            'first_name': o.patient.first_name,
            'last_name': o.patient.last_name,
            'dob': o.patient.dob,
            'gender': o.patient.gender,
            'phone': o.patient.phone,
            'email': o.patient.email,
            'address1': o.patient.address1,
            'address2': '',
            'city': o.patient.city,
            'state': o.patient.state,
            'zip': o.patient.zip,
        },
        'memo': '',
    })


class RxFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Rx

    order = factory.SubFactory(OrderFactory)
    medication_key = SEMAGLUTIDE_KEY
    drug_name = 'SEMAGLUTIDE/GLYCINE'
    strength = '2.5MG/20MG/ML'
    form = 'INJ'
    quantity = 1
    refills = 0
    sig = 'Inject 0.25mg (0.1mL) subcutaneously once weekly.'
    days_supply = 30


class RefillQueueFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = RefillQueue

    clinic = factory.SubFactory(ClinicFactory)
    patient = factory.SubFactory(PatientFactory, clinic=factory.SelfAttribute('..clinic'))
    status = RefillQueue.STATUS_PENDING_PROVIDER
    interval_days = 30


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def app_settings(settings):
    """Deterministic settings: no sleeping retries, no S3, no DLQ, no env pharmacy creds."""
    settings.INTAKE_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.INTAKE_CLINIC_SUBDOMAIN = 'eonmeds'
    settings.INTAKE_DLQ_ENABLED = False
    settings.DB_RETRY_DELAY_SECONDS = 0
    settings.AWS_S3_BUCKET = ''
    settings.LIFEFILE_BASE_URL = ''
    settings.LIFEFILE_USERNAME = ''
    settings.LIFEFILE_PASSWORD = ''
    return settings


@pytest.fixture
def api_client():
    """Django test client for integration tests."""
    return Client()


@pytest.fixture
def intake_clinic(db):
    return ClinicFactory(name='EONMeds', subdomain='eonmeds')


@pytest.fixture
def pharmacy_client():
    """Stand-in for LifefileClient: real credentials, mocked network call."""
    client = MagicMock()
    client.credentials = PharmacyCredentials(**LIFEFILE_SETTINGS, source='clinic')
    client.create_full_order.return_value = PharmacyOrderResult(
        order_id='LF-1001', status='sent', raw={'status': 'success', 'data': {'orderId': 'LF-1001'}},
    )
    return client


@pytest.fixture
def intake_payload():
    """Complete intake delivery in the `data` shape."""
    return {
        'submissionId': 'sub-1001',
        'submissionType': 'complete',
        'qualified': 'Yes',
        'data': {
            'firstName': 'maria',
            'lastName': 'GARCIA',
            'email': 'Maria.Garcia@Example.com',
            'phone': '+1 (813) 555-0199',
            'dateOfBirth': '04/12/1988',
            'gender': 'Female',
            'address': {'street': '42 Bay St', 'city': 'Tampa', 'state': 'Florida', 'zip': '33606'},
            'id-703e9a1c': '210',
            'id-cf20e7c9': '160',
        },
    }


@pytest.fixture
def prescription_payload():
    """Minimal valid body for POST /api/prescriptions/ (one GLP-1 vial)."""
    return {
        'patient': {
            'first_name': 'Maria',
            'last_name': 'Garcia',
            'dob': '1988-04-12',
            'gender': 'f',
            'phone': '8135550199',
            'email': 'maria.garcia@example.com',
            'address1': '42 Bay St',
            'city': 'Tampa',
            'state': 'FL',
            'zip': '33606',
        },
        'rxs': [
            {'medication_key': SEMAGLUTIDE_KEY, 'quantity': 1, 'days_supply': 28},
        ],
    }


def auth_header(user):
    return {'HTTP_AUTHORIZATION': f'Token {user.api_token}'}


def json_body(response):
    return json.loads(response.content)
