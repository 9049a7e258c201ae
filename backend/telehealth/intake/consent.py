"""
Consent, signature and geolocation capture.

Intake builders spell these keys many ways (termsAccepted / terms_accepted /
"I agree to the Terms"). Keys are compared through normalize_key so one entry
per concept covers the camel / snake / label variants.
"""

from .fields import format_value, normalize_key
from .types import ConsentMetadata, IntakeAnswer

# canonical consent name → normalized key fragments that identify it
CONSENT_KEYS = {
    'terms': ('termsaccepted', 'termsandconditions', 'agreetoterms', 'acceptterms', 'terms'),
    'privacy': ('privacypolicy', 'privacyaccepted', 'privacy'),
    'hipaa': ('hipaaconsent', 'hipaaauthorization', 'hipaa'),
    'telehealth': ('telehealthconsent', 'telemedicineconsent', 'telehealth', 'telemedicine'),
    'treatment': ('consenttotreatment', 'treatmentconsent', 'informedconsent'),
    'marketing': ('marketingconsent', 'smsconsent', 'optin', 'marketing'),
}

SIGNATURE_KEYS = ('signature', 'esignature', 'electronicsignature', 'signedname')
IP_KEYS = ('ipaddress', 'ip', 'clientip')
USER_AGENT_KEYS = ('useragent', 'browser')
GEO_KEYS = ('geolocation', 'geo', 'location')
TIMESTAMP_KEYS = ('consenttimestamp', 'consentedat', 'signedat')

TRUTHY = {'yes', 'true', '1', 'y', 'agree', 'agreed', 'accepted', 'checked', 'on', 'i agree'}


def _is_truthy(value) -> bool:
    if isinstance(value, bool):
        return value
    text = format_value(value).lower()
    return text in TRUTHY or text.startswith('i agree')


def _flatten(payload: dict, prefix: str = '') -> dict:
    """One level of nesting (meta / metadata / consent / data) flattened into normalized keys."""
    flat = {}
    for key, value in (payload or {}).items():
        norm = normalize_key(key)
        if isinstance(value, dict) and norm in ('meta', 'metadata', 'consent', 'consents', 'data', 'tracking'):
            for inner_key, inner_value in value.items():
                flat.setdefault(normalize_key(inner_key), inner_value)
        flat.setdefault(norm, value)
    return flat


def _first(flat: dict, keys) -> object:
    for key in keys:
        if flat.get(key) not in (None, ''):
            return flat[key]
    return None


def _first_text(flat: dict, keys) -> str:
    value = _first(flat, keys)
    return format_value(value) if value is not None else ''


def _normalize_geo(value) -> dict:
    if not isinstance(value, dict):
        return {}
    geo = {}
    for out_key, candidates in (
        ('city', ('city',)),
        ('region', ('region', 'state', 'regionname')),
        ('country', ('country', 'countrycode', 'countryname')),
        ('latitude', ('latitude', 'lat')),
        ('longitude', ('longitude', 'lng', 'lon')),
        ('timezone', ('timezone', 'tz')),
    ):
        for key, val in value.items():
            if normalize_key(key) in candidates and val not in (None, ''):
                geo[out_key] = val
                break
    return geo


def extract_consent(payload: dict, answers: list[IntakeAnswer]) -> ConsentMetadata:
    """Pure: payload keys first, then answers whose id/label names a consent."""
    flat = _flatten(payload if isinstance(payload, dict) else {})

    consents = {}
    for name, fragments in CONSENT_KEYS.items():
        raw = _first(flat, fragments)
        if raw is not None:
            consents[name] = _is_truthy(raw)
            continue
        for answer in answers:
            key = normalize_key(answer.id) + ' ' + normalize_key(answer.label)
            if any(fragment in key for fragment in fragments if len(fragment) > 5):
                consents[name] = _is_truthy(answer.raw_value if answer.raw_value is not None else answer.value)
                break

    signature = _first_text(flat, SIGNATURE_KEYS)
    if not signature:
        for answer in answers:
            if 'signature' in normalize_key(answer.label) or 'signature' in normalize_key(answer.id):
                signature = answer.value
                break

    return ConsentMetadata(
        consents=consents,
        signature=signature,
        ip_address=_first_text(flat, IP_KEYS),
        user_agent=_first_text(flat, USER_AGENT_KEYS),
        geolocation=_normalize_geo(_first(flat, GEO_KEYS)),
        consented_at=_first_text(flat, TIMESTAMP_KEYS),
    )


def apply_request_context(consent: ConsentMetadata, ip_address: str = '', user_agent: str = '') -> ConsentMetadata:
    """Fill IP / user agent from the HTTP request when the payload did not carry them."""
    if not consent.ip_address and ip_address:
        consent.ip_address = ip_address
    if not consent.user_agent and user_agent:
        consent.user_agent = user_agent
    return consent
