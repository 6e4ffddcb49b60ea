import logging
from datetime import datetime, timedelta
from typing import Optional

from asn1crypto import core, x509

from .._state import ValProcState
from ..context import CertificateOrigin, ValidationContext
from ..report import CertificateReportItem, ReportItemStatus, ValidationReport
from ..util import find_extension

logger = logging.getLogger(__name__)


def within_freshness_window(
    validation_time: datetime,
    this_update: datetime,
    next_update: Optional[datetime],
    freshness: timedelta,
) -> bool:
    """
    Check whether revocation data issued at ``this_update`` can be relied
    upon at ``validation_time``. Data is usable until its next update,
    extended by the freshness tolerance. Data without a next update
    is usable for the freshness tolerance after it was issued.
    """
    end = (next_update or this_update) + freshness
    return this_update <= validation_time <= end


def generalized_time_extension(extensions, oid: str) -> Optional[datetime]:
    ext = find_extension(extensions, oid)
    if ext is None:
        return None
    return core.GeneralizedTime.load(bytes(ext['extn_value'])).native


async def validate_nested_chain(
    builder,
    context: ValidationContext,
    origin: CertificateOrigin,
    cert: x509.Certificate,
    validation_time: datetime,
    proc_state: ValProcState,
    check_name: str,
) -> ValidationReport:
    """
    Validate the chain of a certificate that vouches for revocation data
    (a CRL issuer or an OCSP responder).

    Failures of such a chain don't prove anything about the certificate
    the revocation data is about, so they're reported as indeterminate.
    """
    if proc_state.check_path_verif_recursion(cert) is not None:
        return ValidationReport().add_item(
            CertificateReportItem(
                check_name,
                f"Validation of {cert.subject.human_friendly} depends on "
                f"itself; refusing to recurse.",
                ReportItemStatus.INDETERMINATE,
                certificate=cert,
            )
        )
    if proc_state.nesting_exhausted:
        return ValidationReport().add_item(
            CertificateReportItem(
                check_name,
                f"Maximal nesting depth reached while validating "
                f"{cert.subject.human_friendly}.",
                ReportItemStatus.INDETERMINATE,
                certificate=cert,
            )
        )
    logger.debug(
        f"Validating {origin.name} certificate "
        f"{cert.subject.human_friendly}..."
    )
    chain_validator = builder.get_certificate_chain_validator()
    report = await chain_validator.validate(
        context.with_certificate_origin(origin),
        cert,
        validation_time,
        proc_state=proc_state,
    )
    return report.cap_status(ReportItemStatus.INDETERMINATE)
