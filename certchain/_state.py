from dataclasses import dataclass, field
from typing import Optional

from asn1crypto import x509

from .util import ConsList

DEFAULT_MAX_NESTING_DEPTH = 8


@dataclass(frozen=True)
class ValProcState:
    """
    Bookkeeping for nested validations.

    Validating a CRL issuer or an OCSP responder triggers a chain validation
    of its own, which in turn may need revocation data. The state records
    which certificates are being validated further up the call stack.
    """

    cert_stack: ConsList[x509.Certificate] = field(
        default_factory=ConsList.empty
    )
    max_nesting_depth: int = DEFAULT_MAX_NESTING_DEPTH

    def push(self, cert: x509.Certificate) -> 'ValProcState':
        return ValProcState(
            cert_stack=self.cert_stack.cons(cert),
            max_nesting_depth=self.max_nesting_depth,
        )

    @property
    def nesting_depth(self) -> int:
        return len(self.cert_stack)

    @property
    def nesting_exhausted(self) -> bool:
        return self.nesting_depth >= self.max_nesting_depth

    def check_path_verif_recursion(
        self, cert: x509.Certificate
    ) -> Optional[x509.Certificate]:
        """
        Helper method to avoid recursion in CRL issuer and OCSP responder
        validation. There are some questionable-but-technically-valid setups
        where a CRL issuer or a responder is authorised to assert its own
        revocation status, which could cause a naive implementation to
        recurse.
        """
        for under_validation in self.cert_stack:
            if under_validation.sha256 == cert.sha256:
                return under_validation
        return None
