VALID_REVOCATION_REASONS = frozenset(
    {
        'key_compromise',
        'ca_compromise',
        'affiliation_changed',
        'superseded',
        'cessation_of_operation',
        'certificate_hold',
        'privilege_withdrawn',
        'aa_compromise',
    }
)

EXPIRED_CERTS_ON_CRL_OID = '2.5.29.60'
"""
X.509 ``expiredCertsOnCRL`` CRL extension.
"""

OCSP_ARCHIVE_CUTOFF_OID = '1.3.6.1.5.5.7.48.1.6'
"""
RFC 6960 ``id-pkix-ocsp-archive-cutoff`` response extension.
"""

OCSP_NO_CHECK_OID = '1.3.6.1.5.5.7.48.1.5'
"""
RFC 6960 ``id-pkix-ocsp-nocheck`` certificate extension.
"""

VALIDITY_ASSURED_SHORT_TERM_OID = '0.4.0.194121.2.1'
"""
ETSI EN 319 412-1 ``ext-etsi-valassured-ST-certs`` certificate extension.
"""
