from typing import Iterable, Optional, Union

import aiohttp

from ..api import DEFAULT_USER_AGENT
from ..common_utils import FetchJobCache

__all__ = ['LazySession', 'AIOHttpMixin']


class LazySession:
    """
    Client session that is only opened when a request is actually made.
    """

    def __init__(self):
        self._session: Optional[aiohttp.ClientSession] = None

    async def get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None


class AIOHttpMixin:
    """
    Shared plumbing of the ``aiohttp``-based clients.
    """

    def __init__(
        self,
        session: Union[aiohttp.ClientSession, LazySession],
        user_agent=None,
        per_request_timeout=10,
    ):
        self._session = session
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.per_request_timeout = per_request_timeout
        self._jobs = FetchJobCache()

    async def get_session(self) -> aiohttp.ClientSession:
        if isinstance(self._session, LazySession):
            return await self._session.get_session()
        return self._session

    async def _request(
        self,
        method: str,
        url: str,
        *,
        accept: Iterable[str],
        data: Optional[bytes] = None,
        content_type: Optional[str] = None,
    ):
        """
        Send a request, and return the content type and the body of the
        response.

        :raises aiohttp.ClientError:
            On transport errors and non-success statuses.
        """
        headers = {'Accept': ','.join(accept), 'User-Agent': self.user_agent}
        if content_type is not None:
            headers['Content-Type'] = content_type
        session = await self.get_session()
        async with session.request(
            method,
            url,
            headers=headers,
            data=data,
            timeout=aiohttp.ClientTimeout(total=self.per_request_timeout),
            raise_for_status=True,
        ) as response:
            body = await response.read()
            return response.headers.get('Content-Type'), body
