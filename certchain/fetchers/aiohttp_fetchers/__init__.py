"""
Client implementation using ``aiohttp``. All clients of a backend share one
client session. Unless the caller passes in a session of their own, the
backend opens it on first use and closes it when the backend is closed.
"""

from typing import Optional

import aiohttp

from ..api import FetcherBackend, Fetchers
from .cert_fetch_client import AIOHttpCertificateFetcher
from .crl_client import AIOHttpCRLClient
from .ocsp_client import AIOHttpOCSPClient
from .util import LazySession

__all__ = [
    'AIOHttpFetcherBackend',
    'AIOHttpCRLClient',
    'AIOHttpOCSPClient',
    'AIOHttpCertificateFetcher',
]


class AIOHttpFetcherBackend(FetcherBackend):
    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        per_request_timeout=10,
    ):
        self.session = session or LazySession()
        self.per_request_timeout = per_request_timeout

    def get_fetchers(self) -> Fetchers:
        session = self.session
        to = self.per_request_timeout
        return Fetchers(
            ocsp_client=AIOHttpOCSPClient(session, per_request_timeout=to),
            crl_client=AIOHttpCRLClient(session, per_request_timeout=to),
            cert_fetcher=AIOHttpCertificateFetcher(
                session, per_request_timeout=to
            ),
        )

    async def close(self):
        if isinstance(self.session, LazySession):
            await self.session.close()
