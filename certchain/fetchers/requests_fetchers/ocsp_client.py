import logging
from functools import partial
from typing import List, Optional

import requests
from asn1crypto import ocsp, x509

from ... import errors
from ...util import get_ocsp_urls
from ..api import OCSPClient
from ..common_utils import (
    build_ocsp_request,
    check_certid_hash_algo,
    check_ocsp_response,
    gather_successful,
)
from .util import RequestsFetcherMixin

logger = logging.getLogger(__name__)


class RequestsOCSPClient(OCSPClient, RequestsFetcherMixin):
    """
    OCSP client querying the responders listed in a certificate's authority
    information access extension.
    """

    is_online = True

    def __init__(
        self,
        user_agent=None,
        per_request_timeout=10,
        certid_hash_algo='sha1',
        request_nonces=True,
    ):
        super().__init__(user_agent, per_request_timeout)
        self.certid_hash_algo = check_certid_hash_algo(certid_hash_algo)
        self.request_nonces = request_nonces

    async def fetch(
        self, cert: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> Optional[bytes]:
        responses = await self.fetch_all(cert, issuer)
        return responses[0] if responses else None

    async def fetch_all(
        self, cert: x509.Certificate, issuer: Optional[x509.Certificate]
    ) -> List[bytes]:
        """
        Query every responder listed in the certificate, and return the
        responses of those that answered successfully.
        """
        if issuer is None:
            raise errors.OCSPFetchError(
                "Cannot query OCSP responder without the issuer's certificate"
            )
        ocsp_urls = get_ocsp_urls(cert)
        if not ocsp_urls:
            logger.debug(
                f"No OCSP responder URLs for {cert.subject.human_friendly}"
            )
            return []
        ocsp_request = build_ocsp_request(
            cert,
            issuer,
            certid_hash_algo=self.certid_hash_algo,
            request_nonces=self.request_nonces,
        )
        logger.info(
            f"Fetching OCSP status for {cert.subject.human_friendly} from "
            f"{', '.join(ocsp_urls)}..."
        )
        return await gather_successful(
            (
                self._jobs.run(
                    (url, cert.issuer_serial),
                    partial(self._grab, url, ocsp_request),
                )
                for url in ocsp_urls
            ),
            errors.OCSPFetchError,
        )

    async def _grab(self, url: str, ocsp_request: ocsp.OCSPRequest) -> bytes:
        logger.info(f"Requesting OCSP response from {url}...")
        try:
            response = await self._request(
                'POST',
                url,
                accept=('application/ocsp-response',),
                data=ocsp_request.dump(),
                content_type='application/ocsp-request',
            )
        except requests.RequestException as e:
            raise errors.OCSPFetchError(
                f"Failed to fetch OCSP response from {url}"
            ) from e
        return check_ocsp_response(
            response.content, ocsp_request=ocsp_request, url=url
        )
