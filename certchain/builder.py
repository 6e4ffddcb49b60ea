"""
Wiring of the validators.

The chain validator needs the revocation data validator, which needs the
CRL and OCSP validators, which in turn need the chain validator to check
CRL issuers and OCSP responders. :class:`ValidatorChainBuilder` holds the
shared configuration and hands out the validators on demand, so none of
them has to know how to construct the others.
"""

from typing import Iterable, List, Optional

from asn1crypto import x509

from .fetchers.api import CertificateFetcher, CRLClient, Fetchers, OCSPClient
from .policy_decl import SignatureValidationProperties
from .registry import CertificateRetriever, TrustedCertificatesStore
from .revinfo.revocation_data import (
    DEFAULT_FETCH_TIMEOUT,
    RevocationDataValidator,
)
from .revinfo.validate_crl import CRLValidator
from .revinfo.validate_ocsp import OCSPValidator
from .validate import DEFAULT_MAX_CHAIN_LENGTH, CertificateChainValidator

__all__ = ['ValidatorChainBuilder']


class ValidatorChainBuilder:
    """
    Collects the policy, trust anchors, known certificates and revocation
    clients used in a validation, and provides the validators.

    The ``with_*`` methods return the builder itself, so calls can be
    chained::

        builder = (
            ValidatorChainBuilder()
            .with_trusted_certificates([root])
            .with_known_certificates([intermediate])
            .with_crl_client(EmbeddedCRLClient([crl_bytes]))
        )
        validator = builder.get_certificate_chain_validator()
    """

    def __init__(self):
        self.properties = SignatureValidationProperties()
        self.trusted_certificates = TrustedCertificatesStore()
        self.fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
        self.max_chain_length: int = DEFAULT_MAX_CHAIN_LENGTH
        self._known_certificates: List[x509.Certificate] = []
        self._cert_fetcher: Optional[CertificateFetcher] = None
        self._crl_clients: List[CRLClient] = []
        self._ocsp_clients: List[OCSPClient] = []

        self._certificate_retriever: Optional[CertificateRetriever] = None
        self._chain_validator: Optional[CertificateChainValidator] = None
        self._revocation_validator: Optional[RevocationDataValidator] = None
        self._crl_validator: Optional[CRLValidator] = None
        self._ocsp_validator: Optional[OCSPValidator] = None

    def with_properties(
        self, properties: SignatureValidationProperties
    ) -> 'ValidatorChainBuilder':
        self.properties = properties
        return self

    def with_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ) -> 'ValidatorChainBuilder':
        """
        Add certificates that are trusted for every purpose.
        """
        self.trusted_certificates.add_generally_trusted_certificates(certs)
        return self

    def with_ocsp_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ) -> 'ValidatorChainBuilder':
        """
        Add certificates that are trusted as OCSP responders only.
        """
        self.trusted_certificates.add_ocsp_trusted_certificates(certs)
        return self

    def with_crl_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ) -> 'ValidatorChainBuilder':
        self.trusted_certificates.add_crl_trusted_certificates(certs)
        return self

    def with_timestamp_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ) -> 'ValidatorChainBuilder':
        self.trusted_certificates.add_timestamp_trusted_certificates(certs)
        return self

    def with_ca_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ) -> 'ValidatorChainBuilder':
        self.trusted_certificates.add_ca_trusted_certificates(certs)
        return self

    def with_known_certificates(
        self, certs: Iterable[x509.Certificate]
    ) -> 'ValidatorChainBuilder':
        """
        Add untrusted certificates that can be used to complete chains.
        """
        certs = list(certs)
        self._known_certificates.extend(certs)
        if self._certificate_retriever is not None:
            self._certificate_retriever.add_known_certificates(certs)
        return self

    def with_cert_fetcher(
        self, cert_fetcher: CertificateFetcher
    ) -> 'ValidatorChainBuilder':
        self._cert_fetcher = cert_fetcher
        if self._certificate_retriever is not None:
            self._certificate_retriever.cert_fetcher = cert_fetcher
        return self

    def with_crl_client(self, client: CRLClient) -> 'ValidatorChainBuilder':
        self._crl_clients.append(client)
        if self._revocation_validator is not None:
            self._revocation_validator.add_crl_client(client)
        return self

    def with_ocsp_client(
        self, client: OCSPClient
    ) -> 'ValidatorChainBuilder':
        self._ocsp_clients.append(client)
        if self._revocation_validator is not None:
            self._revocation_validator.add_ocsp_client(client)
        return self

    def with_fetchers(self, fetchers: Fetchers) -> 'ValidatorChainBuilder':
        """
        Register the online clients of a :class:`.Fetchers` bundle, as
        produced by a :class:`~certchain.fetchers.api.FetcherBackend`.
        """
        self.with_ocsp_client(fetchers.ocsp_client)
        self.with_crl_client(fetchers.crl_client)
        if fetchers.cert_fetcher is not None:
            self.with_cert_fetcher(fetchers.cert_fetcher)
        return self

    def with_fetch_timeout(self, timeout: float) -> 'ValidatorChainBuilder':
        if timeout <= 0:
            raise ValueError("Fetch timeout must be positive.")
        self.fetch_timeout = timeout
        return self

    def with_max_chain_length(
        self, max_chain_length: int
    ) -> 'ValidatorChainBuilder':
        if max_chain_length < 1:
            raise ValueError("Maximal chain length must be at least 1.")
        self.max_chain_length = max_chain_length
        return self

    @property
    def certificate_retriever(self) -> CertificateRetriever:
        if self._certificate_retriever is None:
            self._certificate_retriever = CertificateRetriever(
                trusted_certificates=self.trusted_certificates,
                known_certificates=self._known_certificates,
                cert_fetcher=self._cert_fetcher,
            )
        return self._certificate_retriever

    def get_certificate_chain_validator(self) -> CertificateChainValidator:
        if self._chain_validator is None:
            self._chain_validator = CertificateChainValidator(self)
        return self._chain_validator

    def get_revocation_data_validator(self) -> RevocationDataValidator:
        if self._revocation_validator is None:
            validator = RevocationDataValidator(self)
            for crl_client in self._crl_clients:
                validator.add_crl_client(crl_client)
            for ocsp_client in self._ocsp_clients:
                validator.add_ocsp_client(ocsp_client)
            self._revocation_validator = validator
        return self._revocation_validator

    def get_crl_validator(self) -> CRLValidator:
        if self._crl_validator is None:
            self._crl_validator = CRLValidator(self)
        return self._crl_validator

    def get_ocsp_validator(self) -> OCSPValidator:
        if self._ocsp_validator is None:
            self._ocsp_validator = OCSPValidator(self)
        return self._ocsp_validator
