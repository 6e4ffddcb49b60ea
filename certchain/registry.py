# coding: utf-8

import logging
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Set

from asn1crypto import core, crl, ocsp, x509

from .context import CertificateOrigin
from .errors import CertificateFetchError
from .fetchers import CertificateFetcher
from .util import verify_certificate_signature, verify_ocsp_signature

__all__ = [
    'SimpleCertificateStore',
    'TrustedCertificatesStore',
    'CertificateRetriever',
]

logger = logging.getLogger(__name__)


class SimpleCertificateStore:
    """
    Simple trustless certificate store.
    """

    @classmethod
    def from_certs(cls, certs: Iterable[x509.Certificate]):
        result = cls()
        result.register_multiple(certs)
        return result

    def __init__(self):
        self.certs: Dict[bytes, x509.Certificate] = {}
        self._subject_map = defaultdict(list)
        self._key_identifier_map = defaultdict(list)

    def register(self, cert: x509.Certificate) -> bool:
        """
        Register a single certificate.

        :param cert:
            Certificate to add.
        :return:
            ``True`` if the certificate was added, ``False`` if it already
            existed in this store.
        """
        if cert.issuer_serial in self.certs:
            return False
        self.certs[cert.issuer_serial] = cert
        self._subject_map[cert.subject.hashable].append(cert)
        if cert.key_identifier:
            self._key_identifier_map[cert.key_identifier].append(cert)
        else:
            self._key_identifier_map[cert.public_key.sha1].append(cert)
        return True

    def register_multiple(self, certs: Iterable[x509.Certificate]) -> bool:
        """
        Register multiple certificates.

        :param certs:
            Certificates to register.
        :return:
            ``True`` if at least one certificate was added, ``False``
            if all certificates already existed in this store.
        """

        added = False
        for cert in certs:
            added |= self.register(cert)
        return added

    def __contains__(self, cert: x509.Certificate):
        return cert.issuer_serial in self.certs

    def __iter__(self) -> Iterator[x509.Certificate]:
        return iter(self.certs.values())

    def __len__(self):
        return len(self.certs)

    def retrieve_many_by_key_identifier(
        self, key_identifier: bytes
    ) -> List[x509.Certificate]:
        return list(self._key_identifier_map.get(key_identifier, ()))

    def retrieve_by_name(self, name: x509.Name) -> List[x509.Certificate]:
        return list(self._subject_map.get(name.hashable, ()))

    def retrieve_by_issuer_serial(
        self, issuer_serial: bytes
    ) -> Optional[x509.Certificate]:
        return self.certs.get(issuer_serial)


_PURPOSE_BY_ORIGIN = {
    CertificateOrigin.OCSP_ISSUER: 'ocsp',
    CertificateOrigin.CRL_ISSUER: 'crl',
    CertificateOrigin.TIMESTAMP: 'timestamp',
    CertificateOrigin.CERT_ISSUER: 'ca',
}


class TrustedCertificatesStore:
    """
    Trust anchors, either trusted for every purpose, or only in a specific
    role: as OCSP responder, as CRL issuer, as timestamping authority or as
    issuer of other certificates.
    """

    def __init__(self):
        self._generally_trusted = SimpleCertificateStore()
        self._by_purpose: Dict[str, SimpleCertificateStore] = {
            purpose: SimpleCertificateStore()
            for purpose in _PURPOSE_BY_ORIGIN.values()
        }

    def add_generally_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ):
        self._generally_trusted.register_multiple(certs)

    def add_ocsp_trusted_certificates(self, certs: Iterable[x509.Certificate]):
        self._by_purpose['ocsp'].register_multiple(certs)

    def add_crl_trusted_certificates(self, certs: Iterable[x509.Certificate]):
        self._by_purpose['crl'].register_multiple(certs)

    def add_timestamp_trusted_certificates(
        self, certs: Iterable[x509.Certificate]
    ):
        self._by_purpose['timestamp'].register_multiple(certs)

    def add_ca_trusted_certificates(self, certs: Iterable[x509.Certificate]):
        self._by_purpose['ca'].register_multiple(certs)

    def is_generally_trusted(self, cert: x509.Certificate) -> bool:
        return _same_cert_in(cert, self._generally_trusted)

    def is_trust_anchor(
        self,
        cert: x509.Certificate,
        origin: Optional[CertificateOrigin] = None,
    ) -> bool:
        """
        Check whether a certificate is trusted.

        :param cert:
            The certificate to check.
        :param origin:
            The role in which the certificate is used. Certificates that are
            only trusted for a particular purpose are trust anchors in that
            role only.
        """
        if self.is_generally_trusted(cert):
            return True
        purpose = _PURPOSE_BY_ORIGIN.get(origin) if origin else None
        if purpose is None:
            return False
        return _same_cert_in(cert, self._by_purpose[purpose])

    def __iter__(self) -> Iterator[x509.Certificate]:
        seen: Set[bytes] = set()
        stores = [self._generally_trusted, *self._by_purpose.values()]
        for store in stores:
            for cert in store:
                if cert.sha256 not in seen:
                    seen.add(cert.sha256)
                    yield cert


def _same_cert_in(cert: x509.Certificate, store: SimpleCertificateStore):
    candidate = store.retrieve_by_issuer_serial(cert.issuer_serial)
    return candidate is not None and candidate.sha256 == cert.sha256


class CertificateRetriever:
    """
    Looks up issuers, CRL issuers and OCSP responders among known and trusted
    certificates, optionally fetching missing issuers through the authority
    information access extension.

    :param trusted_certificates:
        The trust store.
    :param known_certificates:
        Untrusted certificates that may be used to complete chains.
    :param cert_fetcher:
        Fetcher used to download issuers that are not known locally.
    """

    def __init__(
        self,
        trusted_certificates: Optional[TrustedCertificatesStore] = None,
        known_certificates: Iterable[x509.Certificate] = (),
        cert_fetcher: Optional[CertificateFetcher] = None,
    ):
        self.trusted_certificates = (
            trusted_certificates or TrustedCertificatesStore()
        )
        self.known_certificates = SimpleCertificateStore.from_certs(
            known_certificates
        )
        self.cert_fetcher = cert_fetcher

    def add_known_certificates(self, certs: Iterable[x509.Certificate]):
        self.known_certificates.register_multiple(certs)

    def _candidates_by_name(self, name: x509.Name) -> List[x509.Certificate]:
        result = []
        seen = set()
        for cert in (*self.trusted_certificates, *self.known_certificates):
            if cert.subject == name and cert.sha256 not in seen:
                seen.add(cert.sha256)
                result.append(cert)
        return result

    def _potential_issuers(
        self, cert: x509.Certificate
    ) -> List[x509.Certificate]:
        # Info from the authority key identifier extension can be used to
        # eliminate possible options when multiple keys with the same
        # subject exist, such as during a transition, or with cross-signing.
        result = []
        for issuer in self._candidates_by_name(cert.issuer):
            if cert.authority_key_identifier and issuer.key_identifier:
                if cert.authority_key_identifier != issuer.key_identifier:
                    continue
            elif cert.authority_issuer_serial:
                if cert.authority_issuer_serial != issuer.issuer_serial:
                    continue
            result.append(issuer)
        return result

    async def _fetch_missing_issuers(self, cert: x509.Certificate):
        if self.cert_fetcher is None:
            return
        try:
            fetched = [
                issuer
                async for issuer in self.cert_fetcher.fetch_cert_issuers(cert)
            ]
        except CertificateFetchError as e:
            logger.warning(
                f"Failed to fetch issuer of {cert.subject.human_friendly}: {e}"
            )
            return
        self.known_certificates.register_multiple(fetched)

    async def find_issuer(
        self, cert: x509.Certificate
    ) -> Optional[x509.Certificate]:
        """
        Find the certificate that issued a given certificate.

        Among the candidates that match on name and key identifier, one whose
        key verifies the certificate's signature is preferred. If none does,
        the first candidate is returned, and it is up to the caller to notice
        that the signature doesn't check out.

        :param cert:
            The issued certificate.
        :return:
            The issuer, or ``None`` if no candidate could be found.
        """
        candidates = self._potential_issuers(cert)
        if not candidates:
            await self._fetch_missing_issuers(cert)
            candidates = self._potential_issuers(cert)
        if not candidates:
            return None
        for candidate in candidates:
            if verify_certificate_signature(cert, candidate):
                return candidate
        return candidates[0]

    def find_crl_issuers(
        self, certificate_list: crl.CertificateList
    ) -> List[x509.Certificate]:
        """
        Find candidate issuers of a CRL.
        """
        aki = certificate_list.authority_key_identifier
        return [
            cert
            for cert in self._candidates_by_name(certificate_list.issuer)
            if not aki or not cert.key_identifier or cert.key_identifier == aki
        ]

    def find_ocsp_responder(
        self, basic_response: ocsp.BasicOCSPResponse
    ) -> Optional[x509.Certificate]:
        """
        Locate the certificate identified by the responder ID of an OCSP
        response, among the certificates embedded in the response and the
        known certificates.

        When several certificates match the responder ID, the first one
        whose key verifies the response signature is preferred.
        """
        certs = basic_response['certs']
        embedded = [] if isinstance(certs, core.Void) else list(certs)
        responder_id = basic_response['tbs_response_data']['responder_id']
        candidates = (*embedded, *self.trusted_certificates,
                      *self.known_certificates)
        if responder_id.name == 'by_key':
            key_hash = responder_id.chosen.native
            matches = [
                cert for cert in candidates
                if cert.public_key.sha1 == key_hash
            ]
        else:
            name = responder_id.chosen
            matches = [cert for cert in candidates if cert.subject == name]
        if not matches:
            return None
        for cert in matches:
            if verify_ocsp_signature(basic_response, cert):
                return cert
        return matches[0]
