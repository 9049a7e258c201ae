"""
Intake and prescription PDFs (fpdf2).

Core fonts are latin-1 only, so every string goes through sanitize_text.
Both builders return bytes and never touch the filesystem.
"""

import logging

from django.utils import timezone
from fpdf import FPDF, XPos, YPos

logger = logging.getLogger(__name__)

REPLACEMENTS = {
    '\u2019': "'",    # right single quote
    '\u2018': "'",    # left single quote
    '\u201c': '"',    # left double quote
    '\u201d': '"',    # right double quote
    '\u2013': '-',    # en dash
    '\u2014': '--',   # em dash
    '\u2026': '...',  # ellipsis
    '\u00a0': ' ',    # non-breaking space
    '\u2022': '*',    # bullet
    '\u2192': '->',   # right arrow
    '\u200b': '',     # zero-width space
    '\ufeff': '',     # BOM
}


def sanitize_text(text) -> str:
    if text is None:
        return ''
    text = str(text)
    for char, replacement in REPLACEMENTS.items():
        text = text.replace(char, replacement)
    return text.encode('latin-1', errors='replace').decode('latin-1')


class ClinicalPDF(FPDF):
    """Letter-size document with a title header and page footer."""

    def __init__(self, title: str, subtitle: str = ''):
        super().__init__(format='letter')
        self.title_text = title
        self.subtitle_text = subtitle
        self.set_auto_page_break(auto=True, margin=20)

    def header(self):
        self.set_font('Helvetica', 'B', 16)
        self.cell(0, 9, sanitize_text(self.title_text), align='C', new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        if self.subtitle_text:
            self.set_font('Helvetica', '', 10)
            self.cell(0, 6, sanitize_text(self.subtitle_text), align='C', new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.set_line_width(0.4)
        self.line(self.l_margin, self.get_y() + 2, self.w - self.r_margin, self.get_y() + 2)
        self.ln(6)

    def footer(self):
        self.set_y(-15)
        self.set_font('Helvetica', 'I', 8)
        self.cell(0, 5, f'Page {self.page_no()}/{{nb}}', align='C')

    def section_title(self, title: str):
        self.ln(2)
        self.set_font('Helvetica', 'B', 12)
        self.set_fill_color(238, 238, 238)
        self.cell(0, 8, sanitize_text(title), fill=True, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self.ln(1)

    def field(self, label: str, value):
        self.set_font('Helvetica', 'B', 10)
        label_text = sanitize_text(f'{label}: ')
        self.cell(self.get_string_width(label_text) + 1, 6, label_text)
        self.set_font('Helvetica', '', 10)
        self.multi_cell(0, 6, sanitize_text(value if value not in (None, '') else '-'),
                        new_x=XPos.LMARGIN, new_y=YPos.NEXT)

    def paragraph(self, text: str):
        self.set_font('Helvetica', '', 10)
        self.multi_cell(0, 6, sanitize_text(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def render_intake_pdf(intake, patient) -> bytes:
    """Chart copy of an intake submission: demographics, answers by section, consent."""
    pdf = ClinicalPDF(
        'Medical Intake Form',
        f'Submission {intake.submission_id} ({intake.submission_type})',
    )
    pdf.alias_nb_pages()
    pdf.add_page()

    pdf.section_title('Patient')
    pdf.field('Name', patient.full_name)
    pdf.field('Patient ID', patient.patient_id)
    pdf.field('Date of Birth', patient.dob)
    pdf.field('Email', patient.email)
    pdf.field('Phone', patient.phone)
    address = ', '.join(p for p in (patient.address1, patient.address2, patient.city,
                                     patient.state, patient.zip) if p)
    pdf.field('Address', address)
    pdf.field('Submitted', intake.submitted_at.strftime('%Y-%m-%d %H:%M UTC'))
    pdf.field('Qualified', intake.qualified)

    for section in intake.sections:
        if not section.answers:
            continue
        pdf.section_title(section.title)
        for answer in section.answers:
            pdf.field(answer.label, answer.value)

    consent = intake.consent
    if consent.consents or consent.signature or consent.ip_address:
        pdf.section_title('Consent')
        for name, accepted in sorted(consent.consents.items()):
            pdf.field(name.replace('_', ' ').title(), 'Accepted' if accepted else 'Not accepted')
        pdf.field('Signature', consent.signature)
        pdf.field('IP Address', consent.ip_address)
        if consent.geolocation:
            geo = ', '.join(str(v) for k, v in consent.geolocation.items() if k in ('city', 'region', 'country'))
            pdf.field('Location', geo)

    return bytes(pdf.output())


def render_prescription_pdf(*, clinic, provider, patient, rxs, reference_id, practice=None) -> bytes:
    """Signed prescription sheet embedded (base64) in the pharmacy order."""
    practice = practice or {}
    pdf = ClinicalPDF('Prescription', practice.get('name') or clinic.name)
    pdf.alias_nb_pages()
    pdf.add_page()

    pdf.section_title('Prescriber')
    pdf.field('Name', provider.full_name)
    pdf.field('NPI', provider.npi)
    pdf.field('DEA', provider.dea)
    pdf.field('License', f'{provider.license_state} {provider.license_number}'.strip())
    pdf.field('Practice', practice.get('address') or clinic.address)
    pdf.field('Phone', practice.get('phone') or clinic.phone)

    pdf.section_title('Patient')
    pdf.field('Name', f"{patient['first_name']} {patient['last_name']}")
    pdf.field('Date of Birth', patient['dob'])
    pdf.field('Gender', patient.get('gender', ''))
    pdf.field('Address', ', '.join(p for p in (patient.get('address1'), patient.get('address2'),
                                                 patient.get('city'), patient.get('state'),
                                                 patient.get('zip')) if p))

    pdf.section_title('Medications')
    for index, rx in enumerate(rxs, start=1):
        pdf.paragraph(f"{index}. {rx['drug_name']} {rx['strength']} ({rx['form']})")
        pdf.field('Quantity', rx['quantity'])
        pdf.field('Refills', rx['refills'])
        pdf.field('Days Supply', rx['days_supply'])
        pdf.field('Sig', rx['sig'])
        pdf.ln(2)

    pdf.ln(6)
    pdf.field('Reference', reference_id)
    pdf.field('Date Written', timezone.now().strftime('%Y-%m-%d'))
    pdf.field('Electronically signed by', provider.full_name)

    return bytes(pdf.output())
