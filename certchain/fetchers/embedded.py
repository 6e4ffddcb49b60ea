"""
Offline revocation clients serving CRLs and OCSP responses that were
supplied up front, e.g. extracted from a signed document or read from disk.
"""

import logging
from typing import Iterable, List, Optional, Tuple, Union

from asn1crypto import crl, ocsp, x509

from ..util import issuer_name_hash
from .api import CRLClient, OCSPClient

__all__ = ['EmbeddedCRLClient', 'EmbeddedOCSPClient']

logger = logging.getLogger(__name__)


def _as_der(value) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return value.dump()


class EmbeddedCRLClient(CRLClient):
    """
    Serve a fixed set of CRLs.
    """

    def __init__(
        self, crls: Iterable[Union[bytes, crl.CertificateList]] = ()
    ):
        self._crls: List[Tuple[crl.CertificateList, bytes]] = []
        for crl_value in crls:
            self.add_crl(crl_value)

    def add_crl(self, crl_value: Union[bytes, crl.CertificateList]):
        der = _as_der(crl_value)
        parsed = crl.CertificateList.load(der)
        self._crls.append((parsed, der))

    async def fetch(self, cert: x509.Certificate) -> Iterable[bytes]:
        issuer_name = cert.issuer
        return [
            der
            for parsed, der in self._crls
            if parsed.issuer == issuer_name
        ]


def _produced_at(response: ocsp.OCSPResponse):
    return response.basic_ocsp_response['tbs_response_data'][
        'produced_at'
    ].native


class EmbeddedOCSPClient(OCSPClient):
    """
    Serve a fixed set of OCSP responses. Only successful responses are
    retained.
    """

    def __init__(
        self, responses: Iterable[Union[bytes, ocsp.OCSPResponse]] = ()
    ):
        self._responses: List[Tuple[ocsp.OCSPResponse, bytes]] = []
        for response in responses:
            self.add_response(response)

    def add_response(self, response: Union[bytes, ocsp.OCSPResponse]):
        der = _as_der(response)
        parsed = ocsp.OCSPResponse.load(der)
        status = parsed['response_status'].native
        if status != 'successful':
            logger.warning(
                f"Ignoring OCSP response with status '{status}'."
            )
            return
        self._responses.append((parsed, der))

    async def fetch(
        self, cert: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Optional[bytes]:
        responses = await self.fetch_all(cert, issuer)
        return responses[0] if responses else None

    async def fetch_all(
        self, cert: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> List[bytes]:
        """
        Return every stored response covering the certificate, most recently
        produced first. :meth:`fetch` only returns the first one.
        """
        candidates = [
            (parsed, der)
            for parsed, der in self._responses
            if _covers(parsed, cert)
        ]
        candidates.sort(key=lambda c: _produced_at(c[0]), reverse=True)
        return [der for _, der in candidates]


def _covers(response: ocsp.OCSPResponse, cert: x509.Certificate) -> bool:
    tbs = response.basic_ocsp_response['tbs_response_data']
    for single_response in tbs['responses']:
        cert_id = single_response['cert_id']
        if cert_id['serial_number'].native != cert.serial_number:
            continue
        hash_algo = cert_id['hash_algorithm']['algorithm'].native
        if cert_id['issuer_name_hash'].native == issuer_name_hash(
            cert, hash_algo
        ):
            return True
    return False
