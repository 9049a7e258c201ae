"""
Medication catalog for pharmacy orders.

Keys are the pharmacy product ids, passed through as lfProductID.
drug_class "glp1" marks the products the vial safety gate and the syringe
kit auto-add apply to.
"""

from dataclasses import dataclass
from typing import Optional

DRUG_CLASS_GLP1 = 'glp1'
DRUG_CLASS_HORMONE = 'hormone'
DRUG_CLASS_SUPPLY = 'supply'


@dataclass(frozen=True)
class Medication:
    id: int
    name: str
    strength: str
    form: str
    drug_class: str = ''
    default_sig: str = ''

    @property
    def key(self) -> str:
        return str(self.id)

    @property
    def is_glp1(self) -> bool:
        return self.drug_class == DRUG_CLASS_GLP1


SYRINGE_KIT_PRODUCT_ID = 203449363

_CATALOG = [
    Medication(203448971, 'SEMAGLUTIDE/GLYCINE', '2.5MG/20MG/ML', 'INJ', DRUG_CLASS_GLP1,
               'Inject 0.25mg (0.1mL) subcutaneously once weekly.'),
    Medication(203448947, 'SEMAGLUTIDE/GLYCINE', '2.5MG/20MG/ML (2ML)', 'INJ', DRUG_CLASS_GLP1,
               'Inject 0.5mg (0.2mL) subcutaneously once weekly.'),
    Medication(203449364, 'SEMAGLUTIDE/GLYCINE', '2.5MG/20MG/ML (3ML)', 'INJ', DRUG_CLASS_GLP1,
               'Inject 1mg (0.4mL) subcutaneously once weekly.'),
    Medication(203448972, 'TIRZEPATIDE/GLYCINE', '10MG/20MG/ML', 'INJ', DRUG_CLASS_GLP1,
               'Inject 2.5mg (0.25mL) subcutaneously once weekly.'),
    Medication(203448973, 'TIRZEPATIDE/GLYCINE', '10MG/20MG/ML (2ML)', 'INJ', DRUG_CLASS_GLP1,
               'Inject 5mg (0.5mL) subcutaneously once weekly.'),
    Medication(203449362, 'TIRZEPATIDE/GLYCINE', '10MG/20MG/ML (3ML)', 'INJ', DRUG_CLASS_GLP1,
               'Inject 7.5mg (0.75mL) subcutaneously once weekly.'),
    Medication(203448974, 'TESTOSTERONE CYPIONATE (GRAPESEED OIL)', '200MG/ML', 'INJ', DRUG_CLASS_HORMONE,
               'Inject 0.5mL intramuscularly once weekly.'),
    Medication(203194055, 'ONDANSETRON', '4MG', 'TAB', '',
               'Take 1 tablet by mouth every 8 hours as needed for nausea.'),
    Medication(SYRINGE_KIT_PRODUCT_ID, 'SYRINGE KIT', '1ML 31G', 'KIT', DRUG_CLASS_SUPPLY,
               'Use supplies as directed for subcutaneous injection.'),
]

MEDS: dict[str, Medication] = {med.key: med for med in _CATALOG}
GLP1_PRODUCT_IDS = frozenset(med.id for med in _CATALOG if med.is_glp1)

CLINICAL_DIFFERENCE_STATEMENTS = {
    'TIRZEPATIDE': (
        'Beyond Medical Necessary - This individual patient would benefit from Tirzepatide with '
        'Glycine to help with muscle loss and use compounded vials that offer flexible dosing for '
        'patients and lowest effective dose to minimize side effects and increase outcomes and '
        'compliance. By submitting this prescription, you confirm that you have reviewed available '
        'drug product options and concluded that this compounded product is necessary for the '
        'patient receiving it.'
    ),
    'SEMAGLUTIDE': (
        'Beyond Medical Necessary - This individual patient would benefit from Semaglutide with '
        'Glycine to help with muscle loss and use compounded vials that offer flexible dosing for '
        'patients and lowest effective dose to minimize side effects and increase outcomes and '
        'compliance. By submitting this prescription, you confirm that you have reviewed available '
        'drug product options and concluded that this compounded product is necessary for the '
        'patient receiving it.'
    ),
    'TESTOSTERONE': (
        'Beyond medical necessary - This individual patient will benefit from Testosterone with '
        'grapeseed oil due to allergic reactions to commercially available one and use compounded '
        'vials that offer flexible dosing for patients and lowest effective dose to minimize side '
        'effects and increase outcomes and compliance. By submitting this prescription, you confirm '
        'that you have reviewed available drug product options and concluded that this compounded '
        'product is necessary for the patient receiving it.'
    ),
}


def get_medication(key) -> Optional[Medication]:
    return MEDS.get(str(key))


def clinical_difference_statement(medication: Medication) -> Optional[str]:
    name = medication.name.upper()
    for family, statement in CLINICAL_DIFFERENCE_STATEMENTS.items():
        if family in name:
            return statement
    return None
