from datetime import timedelta

import pytest

from certchain._state import ValProcState
from certchain.builder import ValidatorChainBuilder
from certchain.context import CertificateOrigin
from certchain.extensions import OCSP_SIGNING, BasicConstraintsExtension
from certchain.fetchers import EmbeddedCRLClient, EmbeddedOCSPClient
from certchain.policy_decl import SignatureValidationProperties
from certchain.report import ReportItemStatus, ValidationResult

from .common import (
    PKI,
    VALIDATION_TIME,
    issue,
    make_ocsp_response,
    signer_context,
    utc,
)


def _builder(crls=None, ocsp_responses=(), known=None):
    if crls is None:
        crls = [PKI.root_crl(), PKI.interm_crl()]
    if known is None:
        known = [PKI.interm.cert]
    return (
        ValidatorChainBuilder()
        .with_trusted_certificates([PKI.root.cert])
        .with_known_certificates(known)
        .with_crl_client(EmbeddedCRLClient(crls))
        .with_ocsp_client(EmbeddedOCSPClient(ocsp_responses))
    )


async def _validate(builder, cert=None, validation_time=VALIDATION_TIME):
    return await builder.get_certificate_chain_validator().validate(
        signer_context(), cert or PKI.signer.cert, validation_time
    )


def _messages(report, status):
    return [item.message for item in report.items if item.status == status]


@pytest.mark.asyncio
async def test_valid_chain_with_crls():
    report = await _validate(_builder())
    assert report.validation_result == ValidationResult.VALID
    assert report.failures == ()
    log = str(report)
    assert 'Certchain Test Root is trusted' in log
    assert 'Alice is not found on the CRL' in log


@pytest.mark.asyncio
async def test_valid_chain_with_ocsp():
    builder = _builder(
        crls=[PKI.root_crl()], ocsp_responses=[PKI.signer_ocsp()]
    )
    report = await _validate(builder)
    assert report.validation_result == ValidationResult.VALID
    assert "Alice has status 'good' according to OCSP" in str(report)


@pytest.mark.asyncio
async def test_revoked_signer():
    crl_bytes = PKI.interm_crl(
        revoked=[(PKI.signer.serial_number, utc(2024, 5, 1), None)]
    )
    report = await _validate(_builder(crls=[PKI.root_crl(), crl_bytes]))
    assert report.validation_result == ValidationResult.INVALID
    (failure,) = report.failures
    assert 'Alice was revoked by' in failure.message


@pytest.mark.asyncio
async def test_revoked_intermediate():
    root_crl = PKI.root_crl(
        revoked=[(PKI.interm.serial_number, utc(2024, 5, 1), None)]
    )
    report = await _validate(_builder(crls=[root_crl, PKI.interm_crl()]))
    assert report.validation_result == ValidationResult.INVALID
    invalid = _messages(report, ReportItemStatus.INVALID)
    assert any(
        'Certchain Test Intermediate was revoked by' in msg for msg in invalid
    )


@pytest.mark.asyncio
async def test_no_revocation_data():
    report = await _validate(_builder(crls=[PKI.root_crl()]))
    assert report.validation_result == ValidationResult.INDETERMINATE
    (failure,) = report.failures
    assert 'no revocation data available' in failure.message


@pytest.mark.asyncio
async def test_trusted_signer():
    builder = _builder(crls=[]).with_trusted_certificates([PKI.signer.cert])
    report = await _validate(builder)
    assert report.validation_result == ValidationResult.VALID
    assert len(report) == 1
    assert 'Alice is trusted' in str(report)


@pytest.mark.asyncio
async def test_missing_key_usage():
    cert = issue(
        'Bob',
        issuer=PKI.interm,
        key_usage=('digital_signature',),
    ).cert
    report = await _validate(_builder(), cert=cert)
    assert report.validation_result == ValidationResult.INVALID
    invalid = _messages(report, ReportItemStatus.INVALID)
    assert invalid == [
        'Required extension key_usage {non_repudiation} is missing or '
        'incorrect.'
    ]


@pytest.mark.asyncio
async def test_custom_required_extensions():
    properties = SignatureValidationProperties()
    properties.set_required_extensions(
        [BasicConstraintsExtension(True)],
        certificate_origins=CertificateOrigin.SIGNER_CERT,
    )
    report = await _validate(_builder().with_properties(properties))
    assert report.validation_result == ValidationResult.INVALID
    assert 'basic_constraints {ca: True}' in str(report)


@pytest.mark.asyncio
async def test_path_length_exceeded():
    # the intermediate has path length 0, so it can't issue another CA
    sub_ca = issue(
        'Sub CA',
        issuer=PKI.interm,
        ca=True,
        key_usage=('key_cert_sign', 'crl_sign'),
    )
    leaf = issue(
        'Carol', issuer=sub_ca, key_usage=('non_repudiation',)
    )
    builder = _builder().with_known_certificates([sub_ca.cert])
    report = await _validate(builder, cert=leaf.cert)
    assert report.validation_result == ValidationResult.INVALID
    invalid = _messages(report, ReportItemStatus.INVALID)
    assert any('path_len >= 1' in msg for msg in invalid)


@pytest.mark.asyncio
async def test_expired():
    report = await _validate(_builder(), validation_time=utc(2034, 6, 1))
    assert report.validation_result == ValidationResult.INVALID
    assert 'Alice expired on' in str(report)


@pytest.mark.asyncio
async def test_not_yet_valid():
    report = await _validate(_builder(), validation_time=utc(2022, 6, 1))
    assert report.validation_result == ValidationResult.INVALID
    assert 'Alice is not yet valid' in str(report)


@pytest.mark.asyncio
async def test_missing_issuer():
    report = await _validate(_builder(known=[]))
    assert report.validation_result == ValidationResult.INDETERMINATE
    assert "its issuer certificate cannot be found" in str(report)


@pytest.mark.asyncio
async def test_untrusted_root():
    builder = (
        ValidatorChainBuilder()
        .with_known_certificates([PKI.interm.cert, PKI.root.cert])
        .with_crl_client(
            EmbeddedCRLClient([PKI.root_crl(), PKI.interm_crl()])
        )
    )
    report = await _validate(builder)
    assert report.validation_result == ValidationResult.INDETERMINATE
    assert 'Certchain Test Root is self-signed, but it is not trusted' in (
        str(report)
    )


@pytest.mark.asyncio
async def test_bad_issuer_signature():
    forged = issue(
        'Mallory',
        issuer=PKI.interm,
        key_usage=('non_repudiation',),
        forge_signature=True,
    )
    report = await _validate(_builder(), cert=forged.cert)
    assert report.validation_result == ValidationResult.INVALID
    invalid = _messages(report, ReportItemStatus.INVALID)
    assert len(invalid) == 1
    assert 'does not verify against the public key' in invalid[0]


@pytest.mark.asyncio
async def test_max_chain_length():
    report = await _validate(_builder().with_max_chain_length(2))
    assert report.validation_result == ValidationResult.INVALID
    assert 'longer than the maximum of 2 certificates' in str(report)


@pytest.mark.asyncio
async def test_max_chain_length_sufficient():
    report = await _validate(_builder().with_max_chain_length(3))
    assert report.validation_result == ValidationResult.VALID


@pytest.mark.asyncio
async def test_continue_after_failure():
    cert = issue(
        'Bob', issuer=PKI.interm, key_usage=('digital_signature',)
    ).cert
    report = await _validate(_builder(), cert=cert)
    # the walk goes on to the root after the failure
    assert 'Certchain Test Root is trusted' in str(report)

    properties = SignatureValidationProperties().set_continue_after_failure(
        False
    )
    report = await _validate(_builder().with_properties(properties), cert=cert)
    assert report.validation_result == ValidationResult.INVALID
    assert len(report) == 1


@pytest.mark.asyncio
async def test_stale_revocation_data_for_historical_check():
    # at this time, the 30-day tolerance covers the CRLs
    report = await _validate(_builder(), validation_time=utc(2024, 7, 1))
    assert report.validation_result == ValidationResult.VALID

    properties = SignatureValidationProperties().set_freshness(
        timedelta(days=1)
    )
    report = await _validate(
        _builder().with_properties(properties),
        validation_time=utc(2024, 7, 1),
    )
    assert report.validation_result == ValidationResult.INDETERMINATE
    assert 'CRL is stale' in str(report)


@pytest.mark.asyncio
async def test_cross_issued_loop():
    loop_b_root = issue('Loop B', ca=True, key_usage=('key_cert_sign',))
    loop_a = issue(
        'Loop A', issuer=loop_b_root, ca=True, key_usage=('key_cert_sign',)
    )
    # same name and key as the self-signed certificate, but issued by A
    loop_b = issue(
        'Loop B',
        issuer=loop_a,
        ca=True,
        key_usage=('key_cert_sign',),
        key=loop_b_root.key,
    )
    cert = issue(
        'Bob',
        issuer=loop_a,
        key_usage=('digital_signature', 'non_repudiation'),
    ).cert
    builder = _builder(crls=[], known=[loop_a.cert, loop_b.cert])
    report = await _validate(builder, cert=cert)
    assert report.validation_result == ValidationResult.INVALID
    (failure,) = _messages(report, ReportItemStatus.INVALID)
    assert 'Loop A' in failure
    assert failure.endswith('appears twice in the certificate chain.')


@pytest.mark.asyncio
async def test_responder_vouching_for_itself():
    responder = issue(
        'Self-reliant Responder',
        issuer=PKI.interm,
        key_usage=('digital_signature',),
        eku=(OCSP_SIGNING,),
    )
    responses = [
        PKI.signer_ocsp(responder=responder),
        make_ocsp_response(responder, PKI.interm, responder),
    ]
    builder = _builder(crls=[PKI.root_crl()], ocsp_responses=responses)
    report = await _validate(builder)
    assert report.validation_result == ValidationResult.INDETERMINATE
    assert 'depends on itself; refusing to recurse' in str(report)

    # the responder's status can still be established from a CRL
    builder = _builder(
        crls=[PKI.root_crl(), PKI.interm_crl()], ocsp_responses=responses
    )
    report = await _validate(builder)
    assert report.validation_result == ValidationResult.VALID
    assert 'depends on itself' in str(report)


@pytest.mark.asyncio
async def test_nesting_depth_exhausted():
    builder = _builder(ocsp_responses=[PKI.signer_ocsp()])
    report = await builder.get_certificate_chain_validator().validate(
        signer_context(),
        PKI.signer.cert,
        VALIDATION_TIME,
        proc_state=ValProcState(max_nesting_depth=1),
    )
    assert report.validation_result == ValidationResult.INDETERMINATE
    assert 'Maximal nesting depth reached' in str(report)


@pytest.mark.asyncio
async def test_unexpected_error_is_indeterminate(monkeypatch):
    builder = _builder()
    error = RuntimeError('policy table is broken')

    def _broken(context):
        raise error

    monkeypatch.setattr(builder.properties, 'get_required_extensions', _broken)
    report = await _validate(builder)
    assert report.validation_result == ValidationResult.INDETERMINATE
    (failure,) = report.failures
    assert failure.status == ReportItemStatus.INDETERMINATE
    assert failure.exception is error
    assert failure.message.startswith('Internal error while validating')
    assert 'policy table is broken' in failure.message
