import logging
from datetime import datetime
from typing import Optional

from asn1crypto import ocsp, x509

from .._state import ValProcState
from ..context import CertificateOrigin, ValidationContext, ValidatorStage
from ..extensions import OCSP_SIGNING, ExtendedKeyUsageExtension
from ..report import CertificateReportItem, ReportItemStatus, ValidationReport
from ..util import (
    is_self_signed,
    issuer_name_hash,
    public_key_hash,
    verify_certificate_signature,
    verify_ocsp_signature,
)
from ._common import (
    generalized_time_extension,
    validate_nested_chain,
    within_freshness_window,
)
from .constants import OCSP_ARCHIVE_CUTOFF_OID

__all__ = ['OCSPValidator']

logger = logging.getLogger(__name__)


OCSP_CHECK = "OCSP response check."

SELF_SIGNED = "Certificate is self-signed: it cannot be revoked."
SERIAL_MISMATCH = (
    "OCSP response is about serial number {response_serial}, not {serial}."
)
ISSUER_UNAVAILABLE = (
    "Issuer certificate of {subject} could not be retrieved, so the OCSP "
    "response cannot be matched with it."
)
ISSUER_MISMATCH = "OCSP response does not match the issuer of {subject}."
RESPONDER_NOT_FOUND = (
    "Unable to verify OCSP response since the responder certificate could "
    "not be located."
)
SIGNATURE_INVALID = "OCSP response signature does not verify."
RESPONDER_NOT_AUTHORISED = (
    "OCSP response was signed by {responder}, which is not authorised to "
    "sign OCSP responses for {issuer}."
)
RESPONDER_WITHOUT_OCSP_SIGNING = (
    "OCSP responder {responder} lacks the OCSP signing extended key usage."
)
STALE_RESPONSE = (
    "OCSP response is stale: it is usable between {this_update} and {end}, "
    "but validation happens at {validation_time}."
)
EXPIRED_NOT_COVERED = (
    "Certificate expired on {not_after}, and the OCSP response does not "
    "provide an archive cutoff covering it."
)
GOOD = "Certificate {subject} has status 'good' according to OCSP."
REVOKED = (
    "Certificate {subject} was revoked on {revocation_time} according to "
    "OCSP (reason: {reason})."
)
REVOKED_AFTER = (
    "Certificate {subject} was revoked on {revocation_time}, after the "
    "validation time."
)
UNKNOWN = "OCSP responder does not know the status of certificate {subject}."
INTERNAL_ERROR = "Internal error evaluating OCSP response: {error}"


def _item(message, status, cert, exception=None):
    return CertificateReportItem(
        OCSP_CHECK, message, status, exception=exception, certificate=cert
    )


def _indeterminate(report: ValidationReport, message, cert):
    return report.add_item(
        _item(message, ReportItemStatus.INDETERMINATE, cert)
    )


def _match_ocsp_certid(
    cert: x509.Certificate,
    issuer: x509.Certificate,
    single_response: ocsp.SingleResponse,
) -> bool:
    cert_id = single_response['cert_id']
    hash_algo = cert_id['hash_algorithm']['algorithm'].native
    return (
        cert_id['issuer_name_hash'].native == issuer_name_hash(cert, hash_algo)
        and cert_id['issuer_key_hash'].native
        == public_key_hash(issuer, hash_algo)
    )


def _same_cert(a: x509.Certificate, b: x509.Certificate) -> bool:
    return a.sha256 == b.sha256


class OCSPValidator:
    """
    Validate a single OCSP response against a certificate.

    :param builder:
        The :class:`~certchain.builder.ValidatorChainBuilder` that supplies
        the policy, the certificate retriever and the chain validator used
        on delegated responders.
    """

    def __init__(self, builder):
        self._builder = builder

    async def validate(
        self,
        context: ValidationContext,
        certificate: x509.Certificate,
        single_response: ocsp.SingleResponse,
        basic_response: ocsp.BasicOCSPResponse,
        validation_time: datetime,
        *,
        proc_state: Optional[ValProcState] = None,
    ) -> ValidationReport:
        """
        Validate one single response, as found in a basic OCSP response,
        for a certificate at a given time.

        :return:
            A report fragment with the findings.
        """
        local_context = context.with_validator_stage(
            ValidatorStage.OCSP_VALIDATOR
        )
        try:
            return await self._validate(
                local_context,
                certificate,
                single_response,
                basic_response,
                validation_time,
                proc_state or ValProcState(),
            )
        except Exception as e:
            logger.warning(
                f"Error while evaluating OCSP response for "
                f"{certificate.subject.human_friendly}",
                exc_info=e,
            )
            return ValidationReport().add_item(
                _item(
                    INTERNAL_ERROR.format(error=e),
                    ReportItemStatus.INDETERMINATE,
                    certificate,
                    exception=e,
                )
            )

    async def _verify_responder(
        self,
        context: ValidationContext,
        cert: x509.Certificate,
        issuer: x509.Certificate,
        basic_response: ocsp.BasicOCSPResponse,
        validation_time: datetime,
        proc_state: ValProcState,
    ) -> ValidationReport:
        report = ValidationReport()
        # The issuer itself signed the response. Its chain is validated by
        # whoever walks the chain of the certificate, so there's nothing
        # left to do here.
        if verify_ocsp_signature(basic_response, issuer):
            return report

        retriever = self._builder.certificate_retriever
        responder = retriever.find_ocsp_responder(basic_response)
        if responder is None:
            return _indeterminate(report, RESPONDER_NOT_FOUND, cert)
        if _same_cert(responder, issuer) or not verify_ocsp_signature(
            basic_response, responder
        ):
            return _indeterminate(report, SIGNATURE_INVALID, cert)

        responder_name = responder.subject.human_friendly
        trust_store = retriever.trusted_certificates
        if not trust_store.is_trust_anchor(
            responder, CertificateOrigin.OCSP_ISSUER
        ):
            # RFC 6960, 4.2.2.2: delegated responders must be issued
            # directly by the CA that issued the certificate in question
            issued_by_issuer = (
                responder.issuer == issuer.subject
                and verify_certificate_signature(responder, issuer)
            )
            if not issued_by_issuer:
                return _indeterminate(
                    report,
                    RESPONDER_NOT_AUTHORISED.format(
                        responder=responder_name,
                        issuer=issuer.subject.human_friendly,
                    ),
                    cert,
                )
            if not ExtendedKeyUsageExtension(
                [OCSP_SIGNING]
            ).exists_in_certificate(responder):
                return _indeterminate(
                    report,
                    RESPONDER_WITHOUT_OCSP_SIGNING.format(
                        responder=responder_name
                    ),
                    cert,
                )
        return report.merge(
            await validate_nested_chain(
                self._builder,
                context,
                CertificateOrigin.OCSP_ISSUER,
                responder,
                validation_time,
                proc_state,
                OCSP_CHECK,
            )
        )

    async def _validate(
        self,
        context: ValidationContext,
        cert: x509.Certificate,
        single_response: ocsp.SingleResponse,
        basic_response: ocsp.BasicOCSPResponse,
        validation_time: datetime,
        proc_state: ValProcState,
    ) -> ValidationReport:
        report = ValidationReport()
        subject = cert.subject.human_friendly
        if is_self_signed(cert):
            return report.add_item(
                _item(SELF_SIGNED, ReportItemStatus.INFO, cert)
            )

        response_serial = single_response['cert_id']['serial_number'].native
        if response_serial != cert.serial_number:
            return _indeterminate(
                report,
                SERIAL_MISMATCH.format(
                    response_serial=response_serial, serial=cert.serial_number
                ),
                cert,
            )

        retriever = self._builder.certificate_retriever
        issuer = await retriever.find_issuer(cert)
        if issuer is None:
            return _indeterminate(
                report, ISSUER_UNAVAILABLE.format(subject=subject), cert
            )
        if not _match_ocsp_certid(cert, issuer, single_response):
            return _indeterminate(
                report, ISSUER_MISMATCH.format(subject=subject), cert
            )

        report = report.merge(
            await self._verify_responder(
                context,
                cert,
                issuer,
                basic_response,
                validation_time,
                proc_state,
            )
        )
        if report.status != ReportItemStatus.INFO:
            return report

        this_update = single_response['this_update'].native
        next_update = single_response['next_update'].native
        freshness = self._builder.properties.get_freshness(context)
        if not within_freshness_window(
            validation_time, this_update, next_update, freshness
        ):
            return _indeterminate(
                report,
                STALE_RESPONSE.format(
                    this_update=this_update,
                    end=(next_update or this_update) + freshness,
                    validation_time=validation_time,
                ),
                cert,
            )

        cert_status = single_response['cert_status']
        status = cert_status.name
        if status == 'good':
            tbs_response = basic_response['tbs_response_data']
            produced_at = tbs_response['produced_at'].native
            not_after = cert['tbs_certificate']['validity']['not_after'].native
            if not_after < produced_at:
                archive_cutoff = generalized_time_extension(
                    tbs_response['response_extensions'],
                    OCSP_ARCHIVE_CUTOFF_OID,
                )
                if archive_cutoff is None or not_after < archive_cutoff:
                    return _indeterminate(
                        report,
                        EXPIRED_NOT_COVERED.format(not_after=not_after),
                        cert,
                    )
            return report.add_item(
                _item(
                    GOOD.format(subject=subject), ReportItemStatus.INFO, cert
                )
            )
        elif status == 'revoked':
            revoked_info = cert_status.chosen
            revocation_time = revoked_info['revocation_time'].native
            reason = revoked_info['revocation_reason'].native or 'unspecified'
            if revocation_time > validation_time:
                return report.add_item(
                    _item(
                        REVOKED_AFTER.format(
                            subject=subject, revocation_time=revocation_time
                        ),
                        ReportItemStatus.INFO,
                        cert,
                    )
                )
            logger.info(
                f"{subject} was revoked on {revocation_time} according to "
                f"OCSP"
            )
            return report.add_item(
                _item(
                    REVOKED.format(
                        subject=subject,
                        revocation_time=revocation_time,
                        reason=reason,
                    ),
                    ReportItemStatus.INVALID,
                    cert,
                )
            )
        else:
            return _indeterminate(
                report, UNKNOWN.format(subject=subject), cert
            )
