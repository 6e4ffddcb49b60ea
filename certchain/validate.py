import logging
from datetime import datetime
from typing import Optional, Set, Tuple

from asn1crypto import x509

from ._state import ValProcState
from .context import CertificateOrigin, ValidationContext, ValidatorStage
from .report import CertificateReportItem, ReportItemStatus, ValidationReport
from .util import is_self_signed, verify_certificate_signature

__all__ = [
    'CertificateChainValidator',
    'DEFAULT_MAX_CHAIN_LENGTH',
]

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHAIN_LENGTH = 20


CERTIFICATE_CHECK = "Certificate check."
VALIDITY_CHECK = "Certificate validity period check."
EXTENSIONS_CHECK = "Required certificate extensions check."
CHAIN_CHECK = "Certificate chain check."

NOT_YET_VALID = (
    "Certificate {subject} is not yet valid: its validity period starts on "
    "{not_before}."
)
EXPIRED = "Certificate {subject} expired on {not_after}."
EXTENSION_MISSING = "Required extension {extension} is missing or incorrect."
TRUSTED = (
    "Certificate {subject} is trusted, revocation data checks are not "
    "required."
)
SELF_SIGNED_UNTRUSTED = (
    "Certificate {subject} is self-signed, but it is not trusted."
)
ISSUER_MISSING = (
    "Certificate {subject} isn't trusted and its issuer certificate "
    "cannot be found."
)
ISSUER_SIGNATURE_INVALID = (
    "The signature on certificate {subject} does not verify against the "
    "public key of its issuer {issuer}."
)
CHAIN_TOO_LONG = (
    "The certificate chain is longer than the maximum of {max_length} "
    "certificates."
)
CHAIN_LOOP = (
    "Certificate {subject} appears twice in the certificate chain."
)
INTERNAL_ERROR = "Internal error while validating {subject}: {error}"


def _item(check_name, message, status, cert, exception=None):
    return CertificateReportItem(
        check_name, message, status, exception=exception, certificate=cert
    )


def _check_validity(
    cert: x509.Certificate, validation_time: datetime
) -> ValidationReport:
    report = ValidationReport()
    subject = cert.subject.human_friendly
    validity = cert['tbs_certificate']['validity']
    not_before = validity['not_before'].native
    not_after = validity['not_after'].native
    if validation_time < not_before:
        report = report.add_item(
            _item(
                VALIDITY_CHECK,
                NOT_YET_VALID.format(subject=subject, not_before=not_before),
                ReportItemStatus.INVALID,
                cert,
            )
        )
    elif validation_time > not_after:
        report = report.add_item(
            _item(
                VALIDITY_CHECK,
                EXPIRED.format(subject=subject, not_after=not_after),
                ReportItemStatus.INVALID,
                cert,
            )
        )
    return report


class CertificateChainValidator:
    """
    Walks the chain of a certificate up to a trust anchor.

    For every certificate in the chain, the validity period, the required
    extensions and the revocation status are checked, after which the
    validator moves on to the issuer. The walk ends at the first trust
    anchor, when the issuer cannot be found, or on a failure if the
    policy says not to continue after failures.

    :param builder:
        The :class:`~certchain.builder.ValidatorChainBuilder` that supplies
        the policy, the trust store and the revocation data validator.
    """

    def __init__(self, builder):
        self._builder = builder

    @property
    def max_chain_length(self) -> int:
        return self._builder.max_chain_length

    async def validate(
        self,
        context: ValidationContext,
        certificate: x509.Certificate,
        validation_time: datetime,
        *,
        proc_state: Optional[ValProcState] = None,
    ) -> ValidationReport:
        """
        Validate the chain of a certificate at a given time.

        :param context:
            The context of the validation. Its certificate origin describes
            the role of ``certificate``; issuers further up the chain are
            validated as :attr:`.CertificateOrigin.CERT_ISSUER`.
        :param certificate:
            The certificate to validate.
        :param validation_time:
            The time at which the chain has to be valid.
        :param proc_state:
            Internal state for nested validations.
        :return:
            The report.
        """
        proc_state = proc_state or ValProcState()
        local_context = context.with_validator_stage(
            ValidatorStage.CHAIN_VALIDATOR
        )
        report = ValidationReport()
        seen: Set[bytes] = set()
        current: Optional[x509.Certificate] = certificate
        depth = 0
        while current is not None:
            subject = current.subject.human_friendly
            if depth >= self.max_chain_length:
                return report.add_item(
                    _item(
                        CHAIN_CHECK,
                        CHAIN_TOO_LONG.format(
                            max_length=self.max_chain_length
                        ),
                        ReportItemStatus.INVALID,
                        current,
                    )
                )
            if current.sha256 in seen:
                return report.add_item(
                    _item(
                        CHAIN_CHECK,
                        CHAIN_LOOP.format(subject=subject),
                        ReportItemStatus.INVALID,
                        current,
                    )
                )
            seen.add(current.sha256)
            logger.debug(
                f"Validating {subject} at chain position {depth} "
                f"({local_context})"
            )
            try:
                link_report, current = await self._validate_link(
                    local_context, current, depth, validation_time, proc_state
                )
            except Exception as e:
                logger.warning(
                    f"Error while validating {subject}", exc_info=e
                )
                return report.add_item(
                    _item(
                        CERTIFICATE_CHECK,
                        INTERNAL_ERROR.format(subject=subject, error=e),
                        ReportItemStatus.INDETERMINATE,
                        current,
                        exception=e,
                    )
                )
            report = report.merge(link_report)
            depth += 1
            local_context = local_context.with_certificate_origin(
                CertificateOrigin.CERT_ISSUER
            )
        return report

    def _should_stop(
        self, context: ValidationContext, report: ValidationReport
    ) -> bool:
        return (
            report.status != ReportItemStatus.INFO
            and not self._builder.properties.get_continue_after_failure(
                context
            )
        )

    async def _validate_link(
        self,
        context: ValidationContext,
        cert: x509.Certificate,
        depth: int,
        validation_time: datetime,
        proc_state: ValProcState,
    ) -> Tuple[ValidationReport, Optional[x509.Certificate]]:
        subject = cert.subject.human_friendly
        report = _check_validity(cert, validation_time)

        for extension in self._builder.properties.get_required_extensions(
            context
        ):
            bound = extension.bind_chain_position(depth)
            if not bound.exists_in_certificate(cert):
                report = report.add_item(
                    _item(
                        EXTENSIONS_CHECK,
                        EXTENSION_MISSING.format(
                            extension=bound.describe()
                        ),
                        ReportItemStatus.INVALID,
                        cert,
                    )
                )
        if self._should_stop(context, report):
            return report, None

        trust_store = self._builder.certificate_retriever.trusted_certificates
        if trust_store.is_trust_anchor(cert, context.certificate_origin):
            return (
                report.add_item(
                    _item(
                        CERTIFICATE_CHECK,
                        TRUSTED.format(subject=subject),
                        ReportItemStatus.INFO,
                        cert,
                    )
                ),
                None,
            )
        if is_self_signed(cert):
            return (
                report.add_item(
                    _item(
                        CERTIFICATE_CHECK,
                        SELF_SIGNED_UNTRUSTED.format(subject=subject),
                        ReportItemStatus.INDETERMINATE,
                        cert,
                    )
                ),
                None,
            )

        revocation_validator = self._builder.get_revocation_data_validator()
        report = report.merge(
            await revocation_validator.validate(
                context,
                cert,
                validation_time,
                proc_state=proc_state.push(cert),
            )
        )
        if self._should_stop(context, report):
            return report, None

        retriever = self._builder.certificate_retriever
        issuer = await retriever.find_issuer(cert)
        if issuer is None:
            return (
                report.add_item(
                    _item(
                        CERTIFICATE_CHECK,
                        ISSUER_MISSING.format(subject=subject),
                        ReportItemStatus.INDETERMINATE,
                        cert,
                    )
                ),
                None,
            )
        if not verify_certificate_signature(cert, issuer):
            report = report.add_item(
                _item(
                    CERTIFICATE_CHECK,
                    ISSUER_SIGNATURE_INVALID.format(
                        subject=subject, issuer=issuer.subject.human_friendly
                    ),
                    ReportItemStatus.INVALID,
                    cert,
                )
            )
            if self._should_stop(context, report):
                return report, None
        return report, issuer
