import asyncio
import logging
from functools import partial
from typing import List

import aiohttp
from asn1crypto import x509

from ... import errors
from ...util import get_crl_urls
from ..api import CRLClient
from ..common_utils import gather_successful, unarmor_crl
from .util import AIOHttpMixin

logger = logging.getLogger(__name__)


class AIOHttpCRLClient(CRLClient, AIOHttpMixin):
    """
    CRL client downloading CRLs from the HTTP(S) distribution points
    listed in a certificate, through a shared client session.
    """

    is_online = True

    async def fetch(self, cert: x509.Certificate) -> List[bytes]:
        urls = get_crl_urls(cert)
        if urls:
            logger.info(
                f"Retrieving CRLs for {cert.subject.human_friendly}..."
            )
        return await gather_successful(
            (self._jobs.run(url, partial(self._grab, url)) for url in urls),
            errors.CRLFetchError,
        )

    async def _grab(self, url: str) -> bytes:
        logger.info(f"Requesting CRL from {url}...")
        try:
            _, body = await self._request(
                'GET', url, accept=('application/pkix-crl',)
            )
            return unarmor_crl(body)
        except (ValueError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise errors.CRLFetchError(
                f"Failed to fetch CRL from {url}"
            ) from e
