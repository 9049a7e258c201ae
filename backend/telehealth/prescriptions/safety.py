"""
Clinical safety gate for GLP-1 vial quantities.

A one-month plan ships at most one GLP-1 vial. More than that is rejected
with 422 VIAL_QUANTITY_SAFEGUARD unless the request sets
override_vial_safeguard; the client shows the totals from `detail` and
resubmits with the flag once the prescriber confirms.

Plan length: an explicit plan_months wins. Without it, a max days_supply of
30 or less means a one-month plan. When both are present and disagree the
explicit value is used and a PLAN_DURATION_AMBIGUOUS warning is returned.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30
SINGLE_MONTH_MAX_VIALS = 1


@dataclass
class PlanDuration:
    months: int
    source: str                  # "explicit" or "days_supply"
    inferred_months: Optional[int] = None
    ambiguous: bool = False


def months_from_days_supply(rxs) -> Optional[int]:
    days = [rx.days_supply for rx in rxs if rx.days_supply]
    if not days:
        return None
    return max(1, math.ceil(max(days) / DAYS_PER_MONTH))


def infer_plan_months(plan_months: Optional[int], rxs) -> PlanDuration:
    inferred = months_from_days_supply(rxs)
    if plan_months:
        ambiguous = inferred is not None and (inferred == 1) != (plan_months == 1)
        return PlanDuration(months=plan_months, source='explicit',
                            inferred_months=inferred, ambiguous=ambiguous)
    return PlanDuration(months=inferred or 1, source='days_supply', inferred_months=inferred)


def glp1_vial_count(rxs) -> int:
    return sum(rx.quantity for rx in rxs if rx.medication.is_glp1)


def check_vial_safeguard(request) -> list[dict]:
    """
    Returns warnings; raises ValidationError (422) when the gate blocks.

    Runs before any write, so a blocked request leaves no Order behind.
    """
    warnings = []
    plan = infer_plan_months(request.plan_months, request.rxs)
    if plan.ambiguous:
        logger.warning('[PRESCRIPTIONS] plan_months=%s disagrees with days_supply (%s months), '
                       'using plan_months', plan.months, plan.inferred_months)
        warnings.append({
            'code': 'PLAN_DURATION_AMBIGUOUS',
            'step': 'safety',
            'message': (f'plan_months={plan.months} disagrees with days supply '
                        f'({plan.inferred_months} month(s)); plan_months was used.'),
        })

    total = glp1_vial_count(request.rxs)
    if plan.months == 1 and total > SINGLE_MONTH_MAX_VIALS:
        if not request.override_vial_safeguard:
            raise ValidationError(
                message=(f'A 1-month plan normally ships {SINGLE_MONTH_MAX_VIALS} GLP-1 vial, '
                         f'this order has {total}. Confirm and resubmit with override_vial_safeguard.'),
                code='VIAL_QUANTITY_SAFEGUARD',
                detail={
                    'total_glp1_vials': total,
                    'plan_months': plan.months,
                    'plan_source': plan.source,
                    'max_vials': SINGLE_MONTH_MAX_VIALS,
                },
                http_status=422,
            )
        logger.warning('[PRESCRIPTIONS] vial safeguard overridden: %d GLP-1 vials on a 1-month plan', total)

    return warnings
