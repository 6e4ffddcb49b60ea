import logging
from functools import partial
from typing import List

import requests
from asn1crypto import x509

from ...errors import CertificateFetchError
from ...util import get_ca_issuer_urls
from ..api import CertificateFetcher
from ..common_utils import (
    CERT_CONTENT_TYPES,
    LENIENT_CERT_CONTENT_TYPES,
    gather_successful,
    unpack_cert_content,
)
from .util import RequestsFetcherMixin

logger = logging.getLogger(__name__)


class RequestsCertificateFetcher(CertificateFetcher, RequestsFetcherMixin):
    """
    Downloads issuer certificates from the caIssuers URLs in a certificate's
    authority information access extension.

    :param permit_pem:
        Also accept PEM-encoded payloads, and the loose content types
        servers tend to label them with.
    """

    def __init__(
        self, user_agent=None, per_request_timeout=10, permit_pem=True
    ):
        super().__init__(user_agent, per_request_timeout)
        self.permit_pem = permit_pem

    @property
    def acceptable_content_types(self):
        if self.permit_pem:
            return LENIENT_CERT_CONTENT_TYPES
        return CERT_CONTENT_TYPES

    async def fetch_certs(self, url: str) -> List[x509.Certificate]:
        """
        Fetch one or more certificates from a URL.

        :raises CertificateFetchError:
            If the download fails or the payload cannot be decoded.
        """
        return await self._jobs.run(url, partial(self._grab, url))

    async def fetch_cert_issuers(self, cert: x509.Certificate):
        logger.info(
            f"Retrieving issuer certs for {cert.subject.human_friendly}..."
        )
        jobs = [self.fetch_certs(url) for url in get_ca_issuer_urls(cert)]
        try:
            batches = await gather_successful(jobs, CertificateFetchError)
        except CertificateFetchError as e:
            logger.warning(f"Could not fetch issuers, skipping... ({e})")
            return
        for batch in batches:
            for issuer in batch:
                yield issuer

    async def _grab(self, url: str) -> List[x509.Certificate]:
        logger.info(f"Fetching certificates from {url}...")
        acceptable = self.acceptable_content_types
        try:
            response = await self._request(
                'GET', url, accept=sorted(acceptable)
            )
            content_type = response.headers.get('Content-Type')
            if content_type is not None:
                content_type = content_type.split(';')[0].strip()
                if content_type not in acceptable:
                    raise ValueError(
                        f"Unacceptable content type {content_type!r}"
                    )
            return unpack_cert_content(
                response.content, content_type, url, self.permit_pem
            )
        except (ValueError, requests.RequestException) as e:
            msg = f"Failed to fetch certificate(s) from {url}."
            logger.debug(msg, exc_info=e)
            raise CertificateFetchError(msg) from e
