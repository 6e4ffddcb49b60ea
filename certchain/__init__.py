import asyncio
from datetime import datetime, timezone
from typing import Iterable, Optional

from asn1crypto import x509

from .builder import ValidatorChainBuilder
from .context import (
    CertificateOrigin,
    TimeMode,
    ValidationContext,
    ValidatorStage,
)
from .fetchers.api import CRLClient, OCSPClient
from .policy_decl import OnlineFetching, SignatureValidationProperties
from .report import (
    CertificateReportItem,
    ReportItem,
    ReportItemStatus,
    ValidationReport,
    ValidationResult,
)
from .version import __version__, __version_info__

__all__ = [
    '__version__',
    '__version_info__',
    'validate_signer_chain',
    'async_validate_signer_chain',
    'ValidatorChainBuilder',
    'SignatureValidationProperties',
    'OnlineFetching',
    'ValidationContext',
    'CertificateOrigin',
    'ValidatorStage',
    'TimeMode',
    'ValidationReport',
    'ValidationResult',
    'ReportItem',
    'CertificateReportItem',
    'ReportItemStatus',
]


async def async_validate_signer_chain(
    signer_certificate: x509.Certificate,
    validation_time: Optional[datetime] = None,
    properties: Optional[SignatureValidationProperties] = None,
    *,
    trusted_certificates: Iterable[x509.Certificate] = (),
    other_certificates: Iterable[x509.Certificate] = (),
    crl_clients: Iterable[CRLClient] = (),
    ocsp_clients: Iterable[OCSPClient] = (),
    time_mode: TimeMode = TimeMode.PRESENT,
    builder: Optional[ValidatorChainBuilder] = None,
) -> ValidationReport:
    """
    Validate the chain of a signer's certificate.

    :param signer_certificate:
        The certificate of the signer.
    :param validation_time:
        The time at which the certificate has to be valid. Must be
        timezone-aware. Defaults to the current time.
    :param properties:
        The validation policy. If not specified, the policy of the builder
        is used, which carries the built-in defaults unless configured
        otherwise.
    :param trusted_certificates:
        Certificates trusted for every purpose.
    :param other_certificates:
        Untrusted certificates that may be used to complete the chain.
    :param crl_clients:
        Sources of CRLs.
    :param ocsp_clients:
        Sources of OCSP responses.
    :param time_mode:
        Whether the validation happens against the present, or a time in
        the past.
    :param builder:
        A preconfigured :class:`.ValidatorChainBuilder`. The other arguments
        are added to it.
    :return:
        The validation report.
    :raises ValueError:
        If ``validation_time`` is a naive datetime.
    """

    if validation_time is None:
        validation_time = datetime.now(tz=timezone.utc)
    elif validation_time.utcoffset() is None:
        raise ValueError(
            "validation_time is a naive datetime object, meaning the tzinfo "
            "attribute is not set to a valid timezone"
        )
    builder = builder or ValidatorChainBuilder()
    if properties is not None:
        builder.with_properties(properties)
    builder.with_trusted_certificates(trusted_certificates)
    builder.with_known_certificates(other_certificates)
    for crl_client in crl_clients:
        builder.with_crl_client(crl_client)
    for ocsp_client in ocsp_clients:
        builder.with_ocsp_client(ocsp_client)

    context = ValidationContext(
        validator_stage=ValidatorStage.SIGNATURE,
        certificate_origin=CertificateOrigin.SIGNER_CERT,
        time_mode=time_mode,
    )
    validator = builder.get_certificate_chain_validator()
    return await validator.validate(
        context, signer_certificate, validation_time
    )


def validate_signer_chain(
    signer_certificate: x509.Certificate,
    validation_time: Optional[datetime] = None,
    properties: Optional[SignatureValidationProperties] = None,
    **kwargs,
) -> ValidationReport:
    """
    Synchronous counterpart of :func:`async_validate_signer_chain`.

    .. warning::
        This runs its own event loop, so it can't be called from
        asynchronous code.
    """
    return asyncio.run(
        async_validate_signer_chain(
            signer_certificate, validation_time, properties, **kwargs
        )
    )
