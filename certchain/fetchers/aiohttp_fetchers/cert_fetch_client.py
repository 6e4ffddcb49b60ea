import asyncio
import logging
from functools import partial
from typing import List, Union

import aiohttp
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
from .util import AIOHttpMixin, LazySession

logger = logging.getLogger(__name__)


class AIOHttpCertificateFetcher(CertificateFetcher, AIOHttpMixin):
    """
    Downloads issuer certificates from the caIssuers URLs in a certificate's
    authority information access extension, through a shared client
    session.
    """

    def __init__(
        self,
        session: Union[aiohttp.ClientSession, LazySession],
        user_agent=None,
        per_request_timeout=10,
        permit_pem=True,
    ):
        super().__init__(session, user_agent, per_request_timeout)
        self.permit_pem = permit_pem

    async def fetch_certs(self, url: str) -> List[x509.Certificate]:
        return await self._jobs.run(url, partial(self._grab, url))

    async def fetch_cert_issuers(self, cert: x509.Certificate):
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
        acceptable = (
            LENIENT_CERT_CONTENT_TYPES if self.permit_pem
            else CERT_CONTENT_TYPES
        )
        try:
            content_type, body = await self._request(
                'GET', url, accept=sorted(acceptable)
            )
            if content_type is not None:
                content_type = content_type.split(';')[0].strip()
                if content_type not in acceptable:
                    raise ValueError(
                        f"Unacceptable content type {content_type!r}"
                    )
            return unpack_cert_content(
                body, content_type, url, self.permit_pem
            )
        except (
            ValueError, aiohttp.ClientError, asyncio.TimeoutError
        ) as e:
            raise CertificateFetchError(
                f"Failed to fetch certificate(s) from {url}."
            ) from e
