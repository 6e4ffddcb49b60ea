"""
Backend-agnostic helpers shared by the online clients: request encoding,
response checks and bookkeeping of concurrent fetch jobs.
"""

import asyncio
import logging
import os
from typing import (
    Awaitable,
    Callable,
    Dict,
    Hashable,
    Iterable,
    List,
    Optional,
    Type,
    TypeVar,
)

from asn1crypto import cms, core, ocsp, pem, x509

from .. import errors

__all__ = [
    'CERT_CONTENT_TYPES',
    'LENIENT_CERT_CONTENT_TYPES',
    'CERTID_HASH_ALGOS',
    'check_certid_hash_algo',
    'unpack_cert_content',
    'build_ocsp_request',
    'check_ocsp_response',
    'unarmor_crl',
    'FetchJobCache',
    'gather_successful',
]

logger = logging.getLogger(__name__)

R = TypeVar('R')

CERT_CONTENT_TYPES = frozenset(
    [
        'application/pkix-cert',
        'application/pkcs7-mime',
        'application/x-x509-ca-cert',
        'application/x-pkcs7-certificates',
    ]
)
"""Content types a caIssuers URL is supposed to serve."""

LENIENT_CERT_CONTENT_TYPES = CERT_CONTENT_TYPES | frozenset(
    [
        'application/x-pem-file',
        'text/plain',
        'application/octet-stream',
        'binary/octet-stream',
    ]
)
"""Content types that are tolerated in practice."""

CERTID_HASH_ALGOS = ('sha1', 'sha256')


def check_certid_hash_algo(certid_hash_algo: str) -> str:
    if certid_hash_algo not in CERTID_HASH_ALGOS:
        raise ValueError(
            f"certid_hash_algo must be one of "
            f"{', '.join(CERTID_HASH_ALGOS)}, not {certid_hash_algo!r}"
        )
    return certid_hash_algo


def unpack_cert_content(
    response_data: bytes,
    content_type: Optional[str],
    url: str,
    permit_pem: bool,
) -> List[x509.Certificate]:
    """
    Extract certificates from the payload served by a caIssuers URL.

    The payload can be a single DER-encoded certificate, a certs-only
    PKCS#7 bundle or, if ``permit_pem`` is set, a series of PEM blocks
    holding either. Servers are notoriously sloppy about the content type,
    so the DER structure decides which of the first two we're looking at.

    :raises ValueError:
        If the payload cannot be decoded.
    """
    if pem.detect(response_data):
        if not permit_pem:
            raise ValueError(
                f"Response from {url} is PEM-encoded, which is not permitted."
            )
        certs = []
        for _, _, der_bytes in pem.unarmor(response_data, multiple=True):
            certs.extend(_unpack_der(der_bytes, url))
        return certs
    if content_type is None:
        logger.warning(
            f"Response from {url} has no content type; "
            f"guessing the format from the DER structure."
        )
    return _unpack_der(response_data, url)


def _unpack_der(der_bytes: bytes, url: str) -> List[x509.Certificate]:
    # a certificate is a sequence of three elements, a ContentInfo of two
    if len(core.Sequence.load(der_bytes)) == 3:
        return [x509.Certificate.load(der_bytes)]
    content_info = cms.ContentInfo.load(der_bytes)
    content_type = content_info['content_type'].native
    if content_type != 'signed_data':
        raise ValueError(
            f"Expected CMS SignedData in certificate bundle from {url}, "
            f"not '{content_type}'."
        )
    certificates = content_info['content']['certificates']
    if isinstance(certificates, core.Void):
        return []
    return [
        choice.chosen
        for choice in certificates
        if choice.name == 'certificate'
    ]


def build_ocsp_request(
    cert: x509.Certificate,
    issuer: x509.Certificate,
    *,
    certid_hash_algo: str = 'sha1',
    request_nonces: bool = True,
) -> ocsp.OCSPRequest:
    cert_id = {
        'hash_algorithm': {'algorithm': certid_hash_algo},
        'issuer_name_hash': getattr(cert.issuer, certid_hash_algo),
        'issuer_key_hash': getattr(issuer.public_key, certid_hash_algo),
        'serial_number': cert.serial_number,
    }
    tbs_request = {'request_list': [{'req_cert': cert_id}]}
    if request_nonces:
        tbs_request['request_extensions'] = [
            {
                'extn_id': 'nonce',
                'critical': False,
                'extn_value': core.OctetString(os.urandom(16)),
            }
        ]
    return ocsp.OCSPRequest({'tbs_request': tbs_request})


def check_ocsp_response(
    response_data: bytes, *, ocsp_request: ocsp.OCSPRequest, url: str
) -> bytes:
    """
    Make sure that an OCSP responder answered successfully, and that it
    echoed the nonce of the request, if it bothered to include one.

    :raises OCSPFetchError:
        If the response is unusable.
    """
    try:
        response = ocsp.OCSPResponse.load(response_data)
        status = response['response_status'].native
    except ValueError as e:
        raise errors.OCSPFetchError(
            f"Could not parse response from OCSP responder at {url}"
        ) from e
    if status != 'successful':
        raise errors.OCSPFetchError(
            f"OCSP responder at {url} answered with status '{status}'."
        )
    request_nonce = ocsp_request.nonce_value
    response_nonce = response.nonce_value
    if (
        request_nonce is not None
        and response_nonce is not None
        and request_nonce.native != response_nonce.native
    ):
        raise errors.OCSPFetchError(
            f"OCSP responder at {url} did not echo the request nonce."
        )
    return response_data


def unarmor_crl(response_data: bytes) -> bytes:
    if pem.detect(response_data):
        _, _, response_data = pem.unarmor(response_data)
    return response_data


class FetchJobCache:
    """
    Runs fetch jobs at most once per tag.

    Callers asking for a tag that is being fetched wait for the running job
    instead of starting another one. Outcomes are kept for the lifetime of
    the cache, failures included.
    """

    def __init__(self):
        self._jobs: Dict[Hashable, asyncio.Future] = {}

    async def run(
        self, tag: Hashable, job: Callable[[], Awaitable[R]]
    ) -> R:
        try:
            future = self._jobs[tag]
            logger.debug(f"Reusing fetch job for {tag!r}")
        except KeyError:
            future = self._jobs[tag] = asyncio.ensure_future(job())
        # a caller timing out must not cancel the job for everyone else
        return await asyncio.shield(future)

    def __len__(self):
        return len(self._jobs)


async def gather_successful(
    jobs: Iterable[Awaitable[R]], error_type: Type[errors.FetchError]
) -> List[R]:
    """
    Run fetch jobs concurrently and collect the results of those that
    succeed, in job order.

    Failures of type ``error_type`` are logged and skipped, unless all jobs
    fail, in which case the last one is raised. Other exceptions propagate.
    """
    outcomes = await asyncio.gather(*jobs, return_exceptions=True)
    results: List[R] = []
    last_error = None
    for outcome in outcomes:
        if isinstance(outcome, error_type):
            logger.info(f"Fetch job failed: {outcome}")
            last_error = outcome
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results.append(outcome)
    if last_error is not None and not results:
        raise last_error
    return results
