import logging
from datetime import datetime
from typing import Optional

from asn1crypto import core, crl, x509

from .._state import ValProcState
from ..context import CertificateOrigin, ValidationContext, ValidatorStage
from ..report import CertificateReportItem, ReportItemStatus, ValidationReport
from ..util import is_ca, is_self_signed, verify_crl_signature
from ._common import (
    generalized_time_extension,
    validate_nested_chain,
    within_freshness_window,
)
from .constants import EXPIRED_CERTS_ON_CRL_OID, VALID_REVOCATION_REASONS

__all__ = ['CRLValidator']

logger = logging.getLogger(__name__)


CRL_CHECK = "CRL response check."

SELF_SIGNED = "Certificate is self-signed: it cannot be revoked."
ISSUER_MISMATCH = (
    "CRL issued by {crl_issuer} does not cover certificates issued by "
    "{cert_issuer}."
)
CANNOT_CONFIRM_AUTHENTICITY = (
    "Cannot confirm CRL authenticity: no certificate of {crl_issuer} "
    "verifies the CRL signature."
)
STALE_CRL = (
    "CRL is stale: it is usable between {this_update} and {end}, "
    "but validation happens at {validation_time}."
)
EXPIRED_NOT_COVERED = (
    "Certificate expired on {not_after}, before the CRL was issued, and the "
    "CRL does not retain entries for expired certificates."
)
ONLY_USER_CERTS = "CRL only covers end-entity certificates, but this is a CA."
ONLY_CA_CERTS = "CRL only covers CA certificates, but this is not a CA."
ONLY_ATTRIBUTE_CERTS = "CRL only covers attribute certificates."
REASONS_NOT_COVERED = (
    "CRL does not cover all revocation reasons; revocation for the reasons "
    "{missing} cannot be excluded."
)
REVOKED = (
    "Certificate {subject} was revoked by {crl_issuer} on {revocation_date} "
    "(reason: {reason})."
)
REVOKED_AFTER = (
    "Certificate {subject} was revoked on {revocation_date}, after the "
    "validation time."
)
UNREVOKED = (
    "Certificate {subject} was removed from the CRL on {revocation_date}."
)
NOT_ON_CRL = "Certificate {subject} is not found on the CRL of {crl_issuer}."
INTERNAL_ERROR = "Internal error evaluating CRL: {error}"


def _item(message, status, cert, exception=None):
    return CertificateReportItem(
        CRL_CHECK, message, status, exception=exception, certificate=cert
    )


def _find_revoked_entry(
    certificate_list: crl.CertificateList, serial: int
) -> Optional[crl.RevokedCertificate]:
    entries = certificate_list['tbs_cert_list']['revoked_certificates']
    if isinstance(entries, core.Void):
        return None
    for entry in entries:
        if entry['user_certificate'].native == serial:
            return entry
    return None


class CRLValidator:
    """
    Validate a single CRL against a certificate.

    :param builder:
        The :class:`~certchain.builder.ValidatorChainBuilder` that supplies
        the policy, the certificate retriever and the chain validator used
        on the CRL issuer.
    """

    def __init__(self, builder):
        self._builder = builder

    async def validate(
        self,
        context: ValidationContext,
        certificate: x509.Certificate,
        certificate_list: crl.CertificateList,
        validation_time: datetime,
        *,
        proc_state: Optional[ValProcState] = None,
    ) -> ValidationReport:
        """
        Validate a CRL for a certificate at a given time.

        :return:
            A report fragment with the findings.
        """
        local_context = context.with_validator_stage(
            ValidatorStage.CRL_VALIDATOR
        )
        try:
            return await self._validate(
                local_context,
                certificate,
                certificate_list,
                validation_time,
                proc_state or ValProcState(),
            )
        except Exception as e:
            logger.warning(
                f"Error while evaluating CRL for "
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

    def _find_crl_signer(
        self, certificate_list: crl.CertificateList
    ) -> Optional[x509.Certificate]:
        retriever = self._builder.certificate_retriever
        for candidate in retriever.find_crl_issuers(certificate_list):
            if verify_crl_signature(certificate_list, candidate):
                return candidate
        return None

    async def _validate(
        self,
        context: ValidationContext,
        cert: x509.Certificate,
        certificate_list: crl.CertificateList,
        validation_time: datetime,
        proc_state: ValProcState,
    ) -> ValidationReport:
        report = ValidationReport()
        subject = cert.subject.human_friendly
        crl_issuer_name = certificate_list.issuer.human_friendly
        if is_self_signed(cert):
            return report.add_item(
                _item(SELF_SIGNED, ReportItemStatus.INFO, cert)
            )

        if certificate_list.issuer != cert.issuer:
            return report.add_item(
                _item(
                    ISSUER_MISMATCH.format(
                        crl_issuer=crl_issuer_name,
                        cert_issuer=cert.issuer.human_friendly,
                    ),
                    ReportItemStatus.INDETERMINATE,
                    cert,
                )
            )
        crl_signer = self._find_crl_signer(certificate_list)
        if crl_signer is None:
            return report.add_item(
                _item(
                    CANNOT_CONFIRM_AUTHENTICITY.format(
                        crl_issuer=crl_issuer_name
                    ),
                    ReportItemStatus.INDETERMINATE,
                    cert,
                )
            )

        tbs_cert_list = certificate_list['tbs_cert_list']
        this_update = tbs_cert_list['this_update'].native
        next_update = tbs_cert_list['next_update'].native
        freshness = self._builder.properties.get_freshness(context)
        if not within_freshness_window(
            validation_time, this_update, next_update, freshness
        ):
            return report.add_item(
                _item(
                    STALE_CRL.format(
                        this_update=this_update,
                        end=(next_update or this_update) + freshness,
                        validation_time=validation_time,
                    ),
                    ReportItemStatus.INDETERMINATE,
                    cert,
                )
            )

        not_after = cert['tbs_certificate']['validity']['not_after'].native
        if not_after < this_update:
            expired_cutoff = generalized_time_extension(
                tbs_cert_list['crl_extensions'], EXPIRED_CERTS_ON_CRL_OID
            )
            if expired_cutoff is None or not_after < expired_cutoff:
                return report.add_item(
                    _item(
                        EXPIRED_NOT_COVERED.format(not_after=not_after),
                        ReportItemStatus.INDETERMINATE,
                        cert,
                    )
                )

        idp = certificate_list.issuing_distribution_point_value
        only_some_reasons = None
        if idp is not None:
            scope_error = None
            cert_is_ca = is_ca(cert)
            if idp['only_contains_user_certs'].native and cert_is_ca:
                scope_error = ONLY_USER_CERTS
            elif idp['only_contains_ca_certs'].native and not cert_is_ca:
                scope_error = ONLY_CA_CERTS
            elif idp['only_contains_attribute_certs'].native:
                scope_error = ONLY_ATTRIBUTE_CERTS
            if scope_error is not None:
                return report.add_item(
                    _item(scope_error, ReportItemStatus.INDETERMINATE, cert)
                )
            only_some_reasons = idp['only_some_reasons'].native

        report = report.merge(
            await validate_nested_chain(
                self._builder,
                context,
                CertificateOrigin.CRL_ISSUER,
                crl_signer,
                validation_time,
                proc_state,
                CRL_CHECK,
            )
        )

        entry = _find_revoked_entry(certificate_list, cert.serial_number)
        if entry is not None:
            revocation_date = entry['revocation_date'].native
            reason_value = entry.crl_reason_value
            reason = (
                reason_value.native
                if reason_value is not None
                else 'unspecified'
            )
            if revocation_date > validation_time:
                return report.add_item(
                    _item(
                        REVOKED_AFTER.format(
                            subject=subject, revocation_date=revocation_date
                        ),
                        ReportItemStatus.INFO,
                        cert,
                    )
                )
            elif reason == 'remove_from_crl':
                report = report.add_item(
                    _item(
                        UNREVOKED.format(
                            subject=subject, revocation_date=revocation_date
                        ),
                        ReportItemStatus.INFO,
                        cert,
                    )
                )
            else:
                logger.info(
                    f"{subject} was revoked on {revocation_date} "
                    f"according to CRL issued by {crl_issuer_name}"
                )
                return report.add_item(
                    _item(
                        REVOKED.format(
                            subject=subject,
                            crl_issuer=crl_issuer_name,
                            revocation_date=revocation_date,
                            reason=reason,
                        ),
                        ReportItemStatus.INVALID,
                        cert,
                    )
                )
        else:
            report = report.add_item(
                _item(
                    NOT_ON_CRL.format(
                        subject=subject, crl_issuer=crl_issuer_name
                    ),
                    ReportItemStatus.INFO,
                    cert,
                )
            )

        if only_some_reasons is not None:
            missing = VALID_REVOCATION_REASONS - set(only_some_reasons)
            if missing:
                report = report.add_item(
                    _item(
                        REASONS_NOT_COVERED.format(
                            missing=', '.join(sorted(missing))
                        ),
                        ReportItemStatus.INDETERMINATE,
                        cert,
                    )
                )
        return report
