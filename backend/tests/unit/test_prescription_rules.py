"""
Prescription request rules, no HTTP:
1. request parsing (MISSING_PATIENT_INFO, field errors, idempotency key)
2. plan-duration inference and the GLP-1 vial safety gate
3. pharmacy gender (strict, unlike intake)
4. syringe kit auto-add and the pharmacy payload
"""
import base64
import pytest

from telehealth.exceptions import ValidationError
from telehealth.pharmacy.types import PharmacyCredentials
from telehealth.prescriptions.medications import get_medication
from telehealth.prescriptions.payload import (
    build_order_payload,
    expand_rxs,
    pharmacy_gender,
    redact_payload,
)
from telehealth.prescriptions.safety import check_vial_safeguard, infer_plan_months
from telehealth.prescriptions.schema import RxInput, parse_prescription_request
from tests.conftest import (
    LIFEFILE_SETTINGS,
    ONDANSETRON_KEY,
    SEMAGLUTIDE_KEY,
    SYRINGE_KIT_KEY,
    TESTOSTERONE_KEY,
    TIRZEPATIDE_KEY,
    OrderFactory,
    RxFactory,
)


def rx(key, quantity=1, days_supply=30):
    medication = get_medication(key)
    return RxInput(medication=medication, quantity=quantity, sig=medication.default_sig,
                   days_supply=days_supply)


# -------------------------------------------------------------------
# Request parsing
# -------------------------------------------------------------------

class TestParseRequest:

    def test_valid_request(self, prescription_payload):
        request = parse_prescription_request(prescription_payload)

        assert request.patient.first_name == 'Maria'
        assert request.patient.dob == '1988-04-12'
        assert len(request.rxs) == 1
        assert request.rxs[0].medication.is_glp1
        # sig defaults to the catalog directions
        assert request.rxs[0].sig.startswith('Inject')
        assert request.queue_for_provider is False
        assert request.shipping_method == 8115

    def test_missing_patient_fields(self, prescription_payload):
        del prescription_payload['patient']['dob']
        prescription_payload['patient']['zip'] = ''

        with pytest.raises(ValidationError) as exc_info:
            parse_prescription_request(prescription_payload)

        assert exc_info.value.code == 'MISSING_PATIENT_INFO'
        assert exc_info.value.detail['missing_fields'] == ['patient.dob', 'patient.zip']

    def test_unparseable_dob_counts_as_missing(self, prescription_payload):
        prescription_payload['patient']['dob'] = 'sometime in 1988'

        with pytest.raises(ValidationError) as exc_info:
            parse_prescription_request(prescription_payload)
        assert exc_info.value.code == 'MISSING_PATIENT_INFO'

    def test_field_errors_are_collected(self, prescription_payload):
        prescription_payload['rxs'] = [
            {'medication_key': 'nope', 'quantity': 1},
            {'medication_key': SEMAGLUTIDE_KEY, 'quantity': 0},
        ]
        prescription_payload['plan_months'] = 'three'

        with pytest.raises(ValidationError) as exc_info:
            parse_prescription_request(prescription_payload)

        fields = [error['field'] for error in exc_info.value.detail['errors']]
        assert exc_info.value.code == 'VALIDATION_ERROR'
        assert fields == ['rxs[0].medication_key', 'rxs[1].quantity', 'plan_months']

    def test_empty_rxs(self, prescription_payload):
        prescription_payload['rxs'] = []
        with pytest.raises(ValidationError) as exc_info:
            parse_prescription_request(prescription_payload)
        assert exc_info.value.detail['errors'][0]['field'] == 'rxs'

    def test_idempotency_key_header_used_when_body_has_none(self, prescription_payload):
        request = parse_prescription_request(prescription_payload, idempotency_key='key-123')
        assert request.message_id == 'key-123'

        prescription_payload['message_id'] = 'body-456'
        request = parse_prescription_request(prescription_payload, idempotency_key='key-123')
        assert request.message_id == 'body-456'

    def test_override_alias(self, prescription_payload):
        prescription_payload['allow_multiple_vials'] = True
        assert parse_prescription_request(prescription_payload).override_vial_safeguard


# -------------------------------------------------------------------
# Plan duration + vial gate
# -------------------------------------------------------------------

class FakeRequest:

    def __init__(self, rxs, plan_months=None, override=False):
        self.rxs = rxs
        self.plan_months = plan_months
        self.override_vial_safeguard = override


class TestPlanDuration:

    def test_days_supply_30_is_one_month(self):
        plan = infer_plan_months(None, [rx(SEMAGLUTIDE_KEY, days_supply=28)])
        assert (plan.months, plan.source) == (1, 'days_supply')

    def test_days_supply_90_is_three_months(self):
        assert infer_plan_months(None, [rx(SEMAGLUTIDE_KEY, days_supply=90)]).months == 3

    def test_explicit_wins_and_flags_disagreement(self):
        plan = infer_plan_months(3, [rx(SEMAGLUTIDE_KEY, days_supply=30)])
        assert plan.months == 3
        assert plan.source == 'explicit'
        assert plan.ambiguous

    def test_explicit_agreeing_is_not_ambiguous(self):
        assert not infer_plan_months(1, [rx(SEMAGLUTIDE_KEY, days_supply=30)]).ambiguous


class TestVialSafeguard:

    def test_two_glp1_vials_on_one_month_plan_blocked(self):
        with pytest.raises(ValidationError) as exc_info:
            check_vial_safeguard(FakeRequest([rx(SEMAGLUTIDE_KEY, quantity=2)]))

        exc = exc_info.value
        assert exc.code == 'VIAL_QUANTITY_SAFEGUARD'
        assert exc.http_status == 422
        assert exc.detail['total_glp1_vials'] == 2
        assert exc.detail['plan_months'] == 1

    def test_vials_are_summed_across_glp1_lines(self):
        with pytest.raises(ValidationError):
            check_vial_safeguard(FakeRequest([rx(SEMAGLUTIDE_KEY), rx(TIRZEPATIDE_KEY)]))

    def test_override_allows(self):
        assert check_vial_safeguard(FakeRequest([rx(SEMAGLUTIDE_KEY, quantity=2)], override=True)) == []

    def test_non_glp1_quantity_is_not_capped(self):
        assert check_vial_safeguard(FakeRequest([rx(SEMAGLUTIDE_KEY), rx(ONDANSETRON_KEY, quantity=30)])) == []

    def test_multi_month_plan_is_not_capped(self):
        assert check_vial_safeguard(FakeRequest([rx(SEMAGLUTIDE_KEY, quantity=3, days_supply=90)])) == []

    def test_explicit_one_month_overrides_long_days_supply(self):
        request = FakeRequest([rx(SEMAGLUTIDE_KEY, quantity=2, days_supply=90)], plan_months=1)
        with pytest.raises(ValidationError):
            check_vial_safeguard(request)

    def test_ambiguity_is_a_warning(self):
        warnings = check_vial_safeguard(FakeRequest([rx(SEMAGLUTIDE_KEY, quantity=2)], plan_months=3))
        assert [w['code'] for w in warnings] == ['PLAN_DURATION_AMBIGUOUS']


# -------------------------------------------------------------------
# Pharmacy gender
# -------------------------------------------------------------------

class TestPharmacyGender:

    @pytest.mark.parametrize('raw, expected', [('m', 'm'), ('Male', 'm'), ('F', 'f'), (' female ', 'f')])
    def test_accepted(self, raw, expected):
        assert pharmacy_gender(raw) == expected

    @pytest.mark.parametrize('raw', ['woman', 'x', '', None])
    def test_rejected(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            pharmacy_gender(raw)
        assert exc_info.value.code == 'INVALID_PHARMACY_GENDER'


# -------------------------------------------------------------------
# Rx expansion + payload
# -------------------------------------------------------------------

class TestExpandRxs:

    def test_syringe_kit_added_per_glp1_vial(self):
        lines = expand_rxs([rx(SEMAGLUTIDE_KEY, quantity=2), rx(TIRZEPATIDE_KEY)])

        kit = lines[-1]
        assert kit['medication_key'] == SYRINGE_KIT_KEY
        assert kit['quantity'] == 3
        assert kit['refills'] == 0
        assert kit['sig'] == 'Use supplies as directed for subcutaneous injection.'

    def test_existing_kit_is_not_duplicated(self):
        lines = expand_rxs([rx(SEMAGLUTIDE_KEY), rx(SYRINGE_KIT_KEY, quantity=5)])
        assert [line['medication_key'] for line in lines] == [SEMAGLUTIDE_KEY, SYRINGE_KIT_KEY]
        assert lines[1]['quantity'] == 5

    def test_no_kit_without_glp1(self):
        lines = expand_rxs([rx(TESTOSTERONE_KEY)])
        assert len(lines) == 1


@pytest.mark.django_db
class TestOrderPayload:

    def test_payload_shape(self):
        order = OrderFactory(message_id='eonpro-1', reference_id='rx-1', shipping_method=8097)
        RxFactory(order=order)
        credentials = PharmacyCredentials(**LIFEFILE_SETTINGS, source='clinic')

        payload = build_order_payload(order, credentials, pdf_bytes=b'%PDF-1.4 test')

        assert payload['message']['id'] == 'eonpro-1'
        body = payload['order']
        assert body['general']['referenceId'] == 'rx-1'
        assert body['prescriber']['npi'] == order.provider.npi
        assert body['practice']['id'] == '1270306'
        assert body['patient']['gender'] == 'f'
        assert body['patient']['dateOfBirth'] == order.patient.dob
        assert body['shipping']['service'] == 8097
        assert body['billing'] == {'payorType': 'pat'}
        item = body['rxs'][0]
        assert item['lfProductID'] == int(SEMAGLUTIDE_KEY)
        assert item['quantityUnits'] == 'EA'
        assert item['clinicalDifferenceStatement'].startswith('Beyond Medical Necessary')
        assert base64.b64decode(body['document']['pdfBase64']) == b'%PDF-1.4 test'

    def test_redacted_payload_drops_document(self):
        order = OrderFactory()
        RxFactory(order=order)
        credentials = PharmacyCredentials(**LIFEFILE_SETTINGS, source='clinic')

        redacted = redact_payload(build_order_payload(order, credentials, pdf_bytes=b'%PDF'))

        assert 'document' not in redacted['order']
        assert redacted['order']['rxs']
