"""
Client implementation using the ``requests`` library. These clients run
blocking requests in worker threads, and don't require any resource
management on the caller's part.
"""

from ..api import FetcherBackend, Fetchers
from .cert_fetch_client import RequestsCertificateFetcher
from .crl_client import RequestsCRLClient
from .ocsp_client import RequestsOCSPClient

__all__ = [
    'RequestsFetcherBackend',
    'RequestsCRLClient',
    'RequestsOCSPClient',
    'RequestsCertificateFetcher',
]


class RequestsFetcherBackend(FetcherBackend):
    def __init__(self, per_request_timeout=10):
        self.per_request_timeout = per_request_timeout

    def get_fetchers(self) -> Fetchers:
        to = self.per_request_timeout
        return Fetchers(
            ocsp_client=RequestsOCSPClient(per_request_timeout=to),
            crl_client=RequestsCRLClient(per_request_timeout=to),
            cert_fetcher=RequestsCertificateFetcher(per_request_timeout=to),
        )

    async def close(self):
        # don't need to do anything
        return
