from .api import (
    CertificateFetcher,
    CRLClient,
    FetcherBackend,
    Fetchers,
    OCSPClient,
)
from .embedded import EmbeddedCRLClient, EmbeddedOCSPClient

__all__ = [
    'OCSPClient',
    'CRLClient',
    'CertificateFetcher',
    'Fetchers',
    'FetcherBackend',
    'EmbeddedCRLClient',
    'EmbeddedOCSPClient',
    'default_fetcher_backend',
]


def default_fetcher_backend() -> FetcherBackend:
    """
    Instantiate a default fetcher backend that doesn't require any resource
    management, but is less efficient than a fully asynchronous fetcher
    would be.
    """

    from .requests_fetchers import RequestsFetcherBackend

    return RequestsFetcherBackend()
