"""Promo / referral code capture from intake answers."""

import logging
from typing import Iterable, Optional

from .intake.fields import normalize_key
from .intake.types import IntakeAnswer
from .models import ReferralTracking

logger = logging.getLogger(__name__)

PROMO_LABEL_FRAGMENTS = ('promo', 'referral', 'discount')
PROMO_FIELD_IDS = {normalize_key(i) for i in ('promo_code', 'promoCode', 'referralCode', 'id-e8a4c0f2')}


def find_promo_code(answers: Iterable[IntakeAnswer]) -> Optional[str]:
    """First answer whose label mentions promo / referral / discount, or whose id is a promo field."""
    for answer in answers:
        label = answer.label.lower()
        if normalize_key(answer.id) in PROMO_FIELD_IDS or any(f in label for f in PROMO_LABEL_FRAGMENTS):
            code = answer.value.strip().upper()
            if code and code not in ('NO', 'NONE', 'N/A'):
                return code
    return None


def track_referral(clinic, patient, promo_code: str, submission_id: str = '') -> ReferralTracking:
    referral, created = ReferralTracking.objects.get_or_create(
        patient=patient,
        promo_code=promo_code,
        defaults={'clinic': clinic, 'source_submission_id': submission_id},
    )
    if created:
        logger.info('Promo code %s recorded for patient %s', promo_code, patient.pk)
    return referral
