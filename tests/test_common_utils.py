import asyncio

import pytest
from asn1crypto import cms, pem

from certchain.errors import CRLFetchError, OCSPFetchError
from certchain.fetchers.common_utils import (
    FetchJobCache,
    build_ocsp_request,
    check_certid_hash_algo,
    check_ocsp_response,
    gather_successful,
    unpack_cert_content,
)
from certchain.util import get_ca_issuer_urls, get_crl_urls, get_ocsp_urls

from .common import CA_ISSUERS_URL, INTERM_CRL_URL, OCSP_URL, PKI

URL = 'http://certs.example.com/bundle'


def _pkcs7_bundle(*certs) -> bytes:
    signed_data = cms.SignedData(
        {
            'version': 'v1',
            'digest_algorithms': [],
            'encap_content_info': {'content_type': 'data'},
            'certificates': [
                cms.CertificateChoices(name='certificate', value=cert)
                for cert in certs
            ],
            'signer_infos': [],
        }
    )
    return cms.ContentInfo(
        {'content_type': 'signed_data', 'content': signed_data}
    ).dump()


@pytest.mark.parametrize(
    'content_type',
    ['application/pkcs7-mime', 'binary/octet-stream', None],
)
def test_unpack_pkcs7(content_type):
    bundle = _pkcs7_bundle(PKI.interm.cert, PKI.root.cert)
    certs = list(
        unpack_cert_content(
            response_data=bundle,
            content_type=content_type,
            url=URL,
            permit_pem=True,
        )
    )
    assert [cert.sha256 for cert in certs] == [
        PKI.interm.cert.sha256,
        PKI.root.cert.sha256,
    ]


@pytest.mark.parametrize(
    'content_type', ['application/pkix-cert', 'binary/octet-stream', None]
)
def test_unpack_der_cert(content_type):
    certs = list(
        unpack_cert_content(
            response_data=PKI.interm.der,
            content_type=content_type,
            url=URL,
            permit_pem=True,
        )
    )
    assert [cert.sha256 for cert in certs] == [PKI.interm.cert.sha256]


def test_unpack_pem():
    data = PKI.interm.pem + pem.armor('PKCS7', _pkcs7_bundle(PKI.root.cert))
    certs = list(
        unpack_cert_content(
            response_data=data,
            content_type='application/x-pem-file',
            url=URL,
            permit_pem=True,
        )
    )
    assert [cert.sha256 for cert in certs] == [
        PKI.interm.cert.sha256,
        PKI.root.cert.sha256,
    ]


def test_unpack_pkcs7_wrong_content_type():
    data = cms.ContentInfo(
        {'content_type': 'data', 'content': b'hello'}
    ).dump()
    with pytest.raises(ValueError, match='Expected CMS SignedData'):
        list(
            unpack_cert_content(
                response_data=data,
                content_type='application/pkcs7-mime',
                url=URL,
                permit_pem=False,
            )
        )


def test_url_enumeration():
    assert get_crl_urls(PKI.signer.cert) == [INTERM_CRL_URL]
    assert get_ocsp_urls(PKI.signer.cert) == [OCSP_URL]
    assert get_ca_issuer_urls(PKI.signer.cert) == [CA_ISSUERS_URL]
    assert get_crl_urls(PKI.root.cert) == []
    assert get_ocsp_urls(PKI.root.cert) == []
    assert get_ca_issuer_urls(PKI.root.cert) == []


def test_pem_rejected_unless_permitted():
    with pytest.raises(ValueError, match='PEM'):
        unpack_cert_content(
            response_data=PKI.interm.pem,
            content_type='application/x-pem-file',
            url=URL,
            permit_pem=False,
        )


def test_certid_hash_algo():
    assert check_certid_hash_algo('sha256') == 'sha256'
    with pytest.raises(ValueError, match='certid_hash_algo'):
        check_certid_hash_algo('md5')


def test_ocsp_request():
    request = build_ocsp_request(
        PKI.signer.cert, PKI.interm.cert, certid_hash_algo='sha256'
    )
    (req,) = request['tbs_request']['request_list']
    cert_id = req['req_cert']
    assert cert_id['hash_algorithm']['algorithm'].native == 'sha256'
    assert cert_id['serial_number'].native == PKI.signer.serial_number
    issuer_key_hash = PKI.interm.cert.public_key.sha256
    assert cert_id['issuer_key_hash'].native == issuer_key_hash
    assert len(request.nonce_value.native) == 16

    request = build_ocsp_request(
        PKI.signer.cert, PKI.interm.cert, request_nonces=False
    )
    assert request.nonce_value is None


def test_check_ocsp_response():
    request = build_ocsp_request(PKI.signer.cert, PKI.interm.cert)
    response = PKI.signer_ocsp()
    # responses without a nonce are accepted
    assert check_ocsp_response(response, ocsp_request=request, url=URL) == (
        response
    )
    with pytest.raises(OCSPFetchError, match='Could not parse'):
        check_ocsp_response(b'garbage', ocsp_request=request, url=URL)


@pytest.mark.asyncio
async def test_fetch_job_cache_runs_each_tag_once():
    cache = FetchJobCache()
    calls = []

    async def _job():
        calls.append(None)
        return b'data'

    results = await asyncio.gather(
        cache.run('tag', _job), cache.run('tag', _job)
    )
    assert results == [b'data', b'data']
    assert await cache.run('tag', _job) == b'data'
    assert len(calls) == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_fetch_job_cache_keeps_failures():
    cache = FetchJobCache()
    calls = []

    async def _job():
        calls.append(None)
        raise CRLFetchError('nope')

    for _ in range(2):
        with pytest.raises(CRLFetchError):
            await cache.run('tag', _job)
    assert len(calls) == 1


async def _succeed(value):
    return value


async def _fail(message):
    raise CRLFetchError(message)


async def _fail_ocsp():
    raise OCSPFetchError('wrong kind')


@pytest.mark.asyncio
async def test_gather_successful():
    results = await gather_successful(
        [_succeed(1), _fail('first'), _succeed(2)], CRLFetchError
    )
    assert results == [1, 2]
    assert await gather_successful([], CRLFetchError) == []


@pytest.mark.asyncio
async def test_gather_successful_all_failed():
    with pytest.raises(CRLFetchError, match='second'):
        await gather_successful(
            [_fail('first'), _fail('second')], CRLFetchError
        )


@pytest.mark.asyncio
async def test_gather_successful_other_errors_propagate():
    with pytest.raises(OCSPFetchError):
        await gather_successful([_succeed(1), _fail_ocsp()], CRLFetchError)
