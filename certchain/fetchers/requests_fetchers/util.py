import asyncio
from typing import Iterable, Optional

import requests

from ..api import DEFAULT_USER_AGENT
from ..common_utils import FetchJobCache

__all__ = ['RequestsFetcherMixin']


class RequestsFetcherMixin:
    """
    Shared plumbing of the ``requests``-based clients. Requests are blocking,
    so they're sent from a worker thread.
    """

    def __init__(self, user_agent=None, per_request_timeout=10):
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.per_request_timeout = per_request_timeout
        self._jobs = FetchJobCache()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        accept: Iterable[str],
        data: Optional[bytes] = None,
        content_type: Optional[str] = None,
    ) -> requests.Response:
        headers = {'Accept': ','.join(accept), 'User-Agent': self.user_agent}
        if content_type is not None:
            headers['Content-Type'] = content_type

        def _send():
            response = requests.request(
                method,
                url,
                headers=headers,
                data=data,
                timeout=self.per_request_timeout,
            )
            response.raise_for_status()
            return response

        return await asyncio.to_thread(_send)
