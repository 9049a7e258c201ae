"""
Patient upsert engine:
1. tag merge (case / hash-prefix insensitive)
2. note blocks appended once per submission id
3. lookup order and tenant isolation
4. partial → complete upgrade, complete is sticky
5. per-clinic display id counter with timestamp fallback
"""
import pytest
from unittest.mock import patch
from django.db import DatabaseError
from django.utils import timezone

from telehealth.intake.fields import SENTINEL_DOB, SENTINEL_PHONE, synthesize_email
from telehealth.intake.types import NormalizedIntake, NormalizedPatient
from telehealth.models import Patient
from telehealth.patients import (
    append_note,
    find_existing_patient,
    merge_tags,
    next_patient_id,
    notes_reference,
    upsert_patient,
)
from tests.conftest import ClinicFactory, PatientFactory


def make_intake(submission_id='sub-1', submission_type='complete', **patient_fields):
    data = {
        'first_name': 'Maria',
        'last_name': 'Garcia',
        'email': 'maria@example.com',
        'phone': '8135550199',
        'dob': '1988-04-12',
        'gender': 'f',
    }
    data.update(patient_fields)
    return NormalizedIntake(
        submission_id=submission_id,
        submission_type=submission_type,
        qualified='Yes' if submission_type == 'complete' else 'Pending',
        submitted_at=timezone.now(),
        patient=NormalizedPatient(**data),
        source='weightlossintake',
    )


BASE_TAGS = ('weightlossintake', 'eonmeds', 'glp1')


class TestTags:

    def test_merge_is_case_and_hash_insensitive(self):
        assert merge_tags(['#VIP', 'glp1'], ['vip', 'GLP1', 'new']) == ['#VIP', 'glp1', 'new']

    def test_merge_removes_tags_from_both_sides(self):
        merged = merge_tags(['partial-lead', 'vip'], ['#needs-followup', 'complete-intake'],
                            remove=('partial-lead', 'needs-followup'))
        assert merged == ['vip', 'complete-intake']


class TestNotes:

    def test_append_once_per_submission(self):
        notes = append_note('', '[t] COMPLETE: sub-1', 'sub-1')
        again = append_note(notes, '[t2] COMPLETE: sub-1', 'sub-1')
        assert again == notes

    def test_reference_does_not_match_prefix_of_longer_id(self):
        assert not notes_reference('[t] COMPLETE: sub-10', 'sub-1')
        assert notes_reference('[t] COMPLETE: sub-1\nNotes: x', 'sub-1')


@pytest.mark.django_db
class TestLookup:

    def test_email_match_is_case_insensitive(self):
        clinic = ClinicFactory()
        existing = PatientFactory(clinic=clinic, email='Maria@Example.com')

        found = find_existing_patient(clinic, make_intake().patient)
        assert found == existing

    def test_sentinel_email_and_phone_are_not_matched(self):
        clinic = ClinicFactory()
        PatientFactory(clinic=clinic, phone=SENTINEL_PHONE, email='unknown-1@intake.local',
                       first_name='Unknown', last_name='Lead', dob=SENTINEL_DOB)
        intake = make_intake(email=synthesize_email(), phone=SENTINEL_PHONE,
                             first_name='Unknown', last_name='Lead', dob=SENTINEL_DOB)

        assert find_existing_patient(clinic, intake.patient) is None

    def test_name_dob_match(self):
        clinic = ClinicFactory()
        existing = PatientFactory(clinic=clinic, first_name='MARIA', last_name='garcia',
                                  dob='1988-04-12', email='other@example.com', phone='7275550000')

        found = find_existing_patient(clinic, make_intake(email='new@example.com', phone='9995550000').patient)
        assert found == existing

    def test_other_clinic_is_never_matched(self):
        clinic_a, clinic_b = ClinicFactory(), ClinicFactory()
        PatientFactory(clinic=clinic_b, email='maria@example.com', phone='8135550199',
                       first_name='Maria', last_name='Garcia', dob='1988-04-12')

        assert find_existing_patient(clinic_a, make_intake().patient) is None


@pytest.mark.django_db
class TestUpsert:

    def test_creates_new_patient_with_tags_and_note(self):
        clinic = ClinicFactory()
        result = upsert_patient(clinic, make_intake(), base_tags=BASE_TAGS)

        assert result.is_new
        patient = result.patient
        assert patient.patient_id == '000001'
        assert 'complete-intake' in patient.tags
        assert 'COMPLETE: sub-1' in patient.notes
        assert patient.source == Patient.SOURCE_WEBHOOK

    def test_sentinels_never_overwrite_stored_values(self):
        clinic = ClinicFactory()
        existing = PatientFactory(clinic=clinic, email='maria@example.com', phone='8135550199',
                                  dob='1988-04-12')
        intake = make_intake(submission_id='sub-2', phone=SENTINEL_PHONE, dob=SENTINEL_DOB)

        result = upsert_patient(clinic, intake, base_tags=BASE_TAGS)

        existing.refresh_from_db()
        assert not result.is_new
        assert existing.phone == '8135550199'
        assert existing.dob == '1988-04-12'

    def test_partial_then_complete_upgrades(self):
        clinic = ClinicFactory()
        first = upsert_patient(clinic, make_intake('sub-p', 'partial'), base_tags=BASE_TAGS)
        assert 'partial-lead' in first.patient.tags

        second = upsert_patient(clinic, make_intake('sub-c', 'complete'), base_tags=BASE_TAGS)

        assert second.patient.pk == first.patient.pk
        assert second.upgraded
        assert 'partial-lead' not in second.patient.tags
        assert 'needs-followup' not in second.patient.tags
        assert 'complete-intake' in second.patient.tags
        assert Patient.objects.filter(clinic=clinic).count() == 1

    def test_complete_is_sticky(self):
        clinic = ClinicFactory()
        upsert_patient(clinic, make_intake('sub-c', 'complete'), base_tags=BASE_TAGS)
        later = upsert_patient(clinic, make_intake('sub-p2', 'partial'), base_tags=BASE_TAGS)

        assert 'partial-lead' not in later.patient.tags
        assert 'complete-intake' in later.patient.tags
        assert not later.upgraded

    def test_redelivery_does_not_duplicate_note(self):
        clinic = ClinicFactory()
        upsert_patient(clinic, make_intake('sub-1'), base_tags=BASE_TAGS)
        result = upsert_patient(clinic, make_intake('sub-1'), base_tags=BASE_TAGS)

        assert result.patient.notes.count('COMPLETE: sub-1') == 1


@pytest.mark.django_db
class TestPatientCounter:

    def test_counter_is_per_clinic(self):
        clinic_a, clinic_b = ClinicFactory(), ClinicFactory()

        assert next_patient_id(clinic_a) == '000001'
        assert next_patient_id(clinic_a) == '000002'
        assert next_patient_id(clinic_b) == '000001'

    def test_counter_failure_falls_back_to_timestamp_id(self):
        clinic = ClinicFactory()
        with patch('telehealth.patients.PatientCounter.objects.get_or_create',
                   side_effect=DatabaseError('could not obtain lock')):
            patient_id = next_patient_id(clinic)

        assert patient_id.startswith('WLI')
        assert len(patient_id) == 11
