from .revocation_data import DEFAULT_FETCH_TIMEOUT, RevocationDataValidator
from .validate_crl import CRLValidator
from .validate_ocsp import OCSPValidator

__all__ = [
    'CRLValidator',
    'OCSPValidator',
    'RevocationDataValidator',
    'DEFAULT_FETCH_TIMEOUT',
]
