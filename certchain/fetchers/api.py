"""
Asynchronous client API for retrieving CRLs, OCSP responses and
certificates.

Revocation clients hand back raw DER data; parsing and validation is the
business of :class:`~certchain.revinfo.revocation_data.RevocationDataValidator`.
"""

import abc
from dataclasses import dataclass
from typing import AsyncGenerator, Iterable, List, Optional

from asn1crypto import x509

from ..version import __version__

__all__ = [
    'OCSPClient',
    'CRLClient',
    'CertificateFetcher',
    'Fetchers',
    'FetcherBackend',
    'DEFAULT_USER_AGENT',
]


DEFAULT_USER_AGENT = 'certchain %s' % __version__


class OCSPClient(abc.ABC):
    """Source of OCSP responses."""

    is_online: bool = False
    """
    Whether this client performs network I/O. Online clients are subject to
    the online fetching policy.
    """

    @abc.abstractmethod
    async def fetch(
        self, cert: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Optional[bytes]:
        """
        Obtain one OCSP response about a certificate.

        :param cert:
            The certificate whose status is wanted.
        :param issuer:
            The certificate of its issuer, if known. Online clients cannot
            do without it: the request identifies the certificate through
            a hash of the issuer's public key.
        :raises:
            OCSPFetchError - if querying the responder failed
        :return:
            A DER-encoded OCSP response, or ``None`` if this client has
            nothing for the certificate.
        """
        raise NotImplementedError

    async def fetch_all(
        self, cert: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> List[bytes]:
        """
        Fetch all OCSP responses this client has for a certificate.

        Sources that may hold more than one response for the same
        certificate should override this, so that every response is
        considered during validation. By default, this wraps :meth:`fetch`.

        :param cert:
            The certificate for which OCSP responses have to be fetched.
        :param issuer:
            The issuer's certificate, if known.
        :return:
            A list of DER-encoded OCSP responses.
        """
        result = await self.fetch(cert, issuer)
        return [] if result is None else [result]


class CRLClient(abc.ABC):
    """Source of CRLs."""

    is_online: bool = False
    """
    Whether this client performs network I/O. Online clients are subject to
    the online fetching policy.
    """

    @abc.abstractmethod
    async def fetch(self, cert: x509.Certificate) -> Iterable[bytes]:
        """
        Obtain every CRL that may cover a certificate.

        :param cert:
            The certificate whose status is wanted.
        :raises:
            CRLFetchError - if no CRL could be downloaded
        :return:
            DER-encoded CRLs. All of them are candidates.
        """
        raise NotImplementedError


class CertificateFetcher(abc.ABC):
    """Source of issuer certificates that are not known locally."""

    def fetch_cert_issuers(
        self, cert: x509.Certificate
    ) -> AsyncGenerator[x509.Certificate, None]:
        """
        Download the issuer certificates advertised in the caIssuers entries
        of a certificate's authority information access extension.

        :param cert:
            The certificate whose issuers are wanted.
        :raises:
            CertificateFetchError - if no issuer could be obtained
        :return:
            An asynchronous generator over the certificates that were
            downloaded.
        """
        raise NotImplementedError


@dataclass(frozen=True)
class Fetchers:
    """
    Online clients set up by one :class:`.FetcherBackend`, sharing its
    resources.
    """

    ocsp_client: OCSPClient
    crl_client: CRLClient
    cert_fetcher: Optional[CertificateFetcher] = None


class FetcherBackend(abc.ABC):
    """
    Factory for a set of online clients, and owner of the resources they
    share.

    Use it as an asynchronous context manager: entering it yields the
    :class:`.Fetchers`, leaving it releases the resources.
    """

    def get_fetchers(self) -> Fetchers:
        raise NotImplementedError

    async def close(self):
        """
        Release the resources held by this backend.
        """
        pass

    async def __aenter__(self) -> Fetchers:
        return self.get_fetchers()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
