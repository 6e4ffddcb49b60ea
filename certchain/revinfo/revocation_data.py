import asyncio
import logging
from datetime import datetime
from typing import (
    Awaitable,
    Callable,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from asn1crypto import crl, ocsp, x509

from .._state import ValProcState
from ..context import CertificateOrigin, ValidationContext, ValidatorStage
from ..fetchers.api import CRLClient, OCSPClient
from ..policy_decl import OnlineFetching
from ..report import CertificateReportItem, ReportItemStatus, ValidationReport
from ..util import cert_extension, is_self_signed
from .constants import OCSP_NO_CHECK_OID, VALIDITY_ASSURED_SHORT_TERM_OID

__all__ = ['RevocationDataValidator', 'DEFAULT_FETCH_TIMEOUT']

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 10.0


REVOCATION_DATA_CHECK = "Revocation data check."

SELF_SIGNED = "Certificate is self-signed: revocation data checks are skipped."
SHORT_TERM = (
    "Certificate is a short-term certificate with assured validity: "
    "revocation data checks are not required."
)
OCSP_NO_CHECK = (
    "OCSP responder certificate carries the id-pkix-ocsp-nocheck extension: "
    "revocation data checks are not required."
)
FETCH_TIMED_OUT = "Fetching {kind} through {client} timed out."
FETCH_FAILED = "Fetching {kind} through {client} failed: {error}"
CRL_MALFORMED = "CRL is incorrectly formatted: {error}"
OCSP_MALFORMED = "OCSP response is incorrectly formatted: {error}"
OCSP_NOT_SUCCESSFUL = "OCSP response has status '{status}'."
NO_REVOCATION_DATA = (
    "Certificate revocation status cannot be checked: no revocation data "
    "available or the status cannot be determined."
)
INTERNAL_ERROR = "Internal error while checking revocation data: {error}"

OCSPCandidate = Tuple[ocsp.SingleResponse, ocsp.BasicOCSPResponse]
Client = TypeVar('Client', CRLClient, OCSPClient)


def _item(message, status, cert, exception=None):
    return CertificateReportItem(
        REVOCATION_DATA_CHECK,
        message,
        status,
        exception=exception,
        certificate=cert,
    )


def _info(message, cert, exception=None):
    return _item(message, ReportItemStatus.INFO, cert, exception=exception)


def _is_definitive(report: ValidationReport) -> bool:
    return report.status != ReportItemStatus.INDETERMINATE


def _should_go_online(
    policy: OnlineFetching, found_offline: bool
) -> bool:
    if policy == OnlineFetching.ALWAYS:
        return True
    elif policy == OnlineFetching.NEVER:
        return False
    return not found_offline


class RevocationDataValidator:
    """
    Collects CRLs and OCSP responses for a certificate from the registered
    clients, and decides on the certificate's revocation status.

    OCSP responses are preferred: CRLs are only evaluated when none of the
    OCSP responses gives a conclusive answer. Within each kind, the most
    recent evidence that is conclusive wins.

    :param builder:
        The :class:`~certchain.builder.ValidatorChainBuilder` that supplies
        the policy, the certificate retriever and the CRL and OCSP
        validators.
    """

    def __init__(self, builder):
        self._builder = builder
        self._crl_clients: List[CRLClient] = []
        self._ocsp_clients: List[OCSPClient] = []

    def add_crl_client(self, client: CRLClient) -> 'RevocationDataValidator':
        self._crl_clients.append(client)
        return self

    def add_ocsp_client(
        self, client: OCSPClient
    ) -> 'RevocationDataValidator':
        self._ocsp_clients.append(client)
        return self

    @property
    def fetch_timeout(self) -> float:
        return self._builder.fetch_timeout

    async def validate(
        self,
        context: ValidationContext,
        certificate: x509.Certificate,
        validation_time: datetime,
        *,
        proc_state: Optional[ValProcState] = None,
    ) -> ValidationReport:
        """
        Check the revocation status of a certificate at a given time.

        Problems with individual pieces of evidence are logged in the report
        as informational items. The report only contains a failure if the
        certificate is revoked, or if no evidence allows to reach a
        conclusion.
        """
        local_context = context.with_validator_stage(
            ValidatorStage.REVOCATION_DATA_VALIDATOR
        )
        try:
            return await self._validate(
                local_context,
                certificate,
                validation_time,
                proc_state or ValProcState(),
            )
        except Exception as e:
            logger.warning(
                f"Error while checking revocation status of "
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

    async def _validate(
        self,
        context: ValidationContext,
        cert: x509.Certificate,
        validation_time: datetime,
        proc_state: ValProcState,
    ) -> ValidationReport:
        report = ValidationReport()
        if is_self_signed(cert):
            return report.add_item(_info(SELF_SIGNED, cert))
        if cert_extension(cert, VALIDITY_ASSURED_SHORT_TERM_OID) is not None:
            return report.add_item(_info(SHORT_TERM, cert))
        if (
            context.certificate_origin == CertificateOrigin.OCSP_ISSUER
            and cert_extension(cert, OCSP_NO_CHECK_OID) is not None
        ):
            return report.add_item(_info(OCSP_NO_CHECK, cert))

        online_policy = self._builder.properties.get_revocation_online_fetching(
            context
        )
        issuer = await self._builder.certificate_retriever.find_issuer(cert)

        async def _fetch_ocsp(client: OCSPClient) -> List[bytes]:
            return list(await client.fetch_all(cert, issuer))

        async def _fetch_crls(client: CRLClient) -> List[bytes]:
            return list(await client.fetch(cert))

        fetch_report, ocsp_data = await self._collect(
            cert, 'OCSP response', self._ocsp_clients, _fetch_ocsp,
            online_policy,
        )
        report = report.merge(fetch_report)
        parse_report, ocsp_candidates = self._parse_ocsp(cert, ocsp_data)
        report = report.merge(parse_report)
        ocsp_validator = self._builder.get_ocsp_validator()
        fragments = await asyncio.gather(
            *(
                ocsp_validator.validate(
                    context,
                    cert,
                    single_response,
                    basic_response,
                    validation_time,
                    proc_state=proc_state,
                )
                for single_response, basic_response in ocsp_candidates
            )
        )
        report, adopted = _adopt_first_definitive(report, fragments)
        if adopted:
            return report

        fetch_report, crl_data = await self._collect(
            cert, 'CRLs', self._crl_clients, _fetch_crls, online_policy
        )
        report = report.merge(fetch_report)
        parse_report, crls = self._parse_crls(cert, crl_data)
        report = report.merge(parse_report)
        crl_validator = self._builder.get_crl_validator()
        fragments = await asyncio.gather(
            *(
                crl_validator.validate(
                    context,
                    cert,
                    certificate_list,
                    validation_time,
                    proc_state=proc_state,
                )
                for certificate_list in crls
            )
        )
        report, adopted = _adopt_first_definitive(report, fragments)
        if adopted:
            return report

        logger.debug(
            f"No conclusive revocation data for "
            f"{cert.subject.human_friendly}"
        )
        return report.add_item(
            _item(NO_REVOCATION_DATA, ReportItemStatus.INDETERMINATE, cert)
        )

    async def _collect(
        self,
        cert: x509.Certificate,
        kind: str,
        clients: Sequence[Client],
        fetch: Callable[[Client], Awaitable[List[bytes]]],
        online_policy: OnlineFetching,
    ) -> Tuple[ValidationReport, List[bytes]]:
        offline = [client for client in clients if not client.is_online]
        online = [client for client in clients if client.is_online]
        report, results = await self._fetch_from(cert, kind, offline, fetch)
        if online and _should_go_online(online_policy, bool(results)):
            online_report, online_results = await self._fetch_from(
                cert, kind, online, fetch
            )
            report = report.merge(online_report)
            results.extend(online_results)
        elif online:
            logger.debug(
                f"Not fetching {kind} for {cert.subject.human_friendly} "
                f"online: policy is {online_policy.name}"
            )
        # the same data may be served by more than one client
        return report, list(dict.fromkeys(results))

    async def _fetch_from(
        self,
        cert: x509.Certificate,
        kind: str,
        clients: Sequence[Client],
        fetch: Callable[[Client], Awaitable[List[bytes]]],
    ) -> Tuple[ValidationReport, List[bytes]]:
        async def _run(client):
            client_name = type(client).__name__
            try:
                return (
                    await asyncio.wait_for(
                        fetch(client), timeout=self.fetch_timeout
                    ),
                    None,
                )
            except asyncio.TimeoutError:
                logger.info(
                    f"Fetching {kind} for {cert.subject.human_friendly} "
                    f"through {client_name} timed out"
                )
                return [], _info(
                    FETCH_TIMED_OUT.format(kind=kind, client=client_name),
                    cert,
                )
            except Exception as e:
                logger.info(
                    f"Fetching {kind} for {cert.subject.human_friendly} "
                    f"through {client_name} failed: {e}"
                )
                return [], _info(
                    FETCH_FAILED.format(
                        kind=kind, client=client_name, error=e
                    ),
                    cert,
                    exception=e,
                )

        outcomes = await asyncio.gather(*(_run(client) for client in clients))
        report = ValidationReport()
        results: List[bytes] = []
        for fetched, item in outcomes:
            results.extend(fetched)
            if item is not None:
                report = report.add_item(item)
        return report, results

    @staticmethod
    def _parse_ocsp(
        cert: x509.Certificate, ocsp_data: List[bytes]
    ) -> Tuple[ValidationReport, List[OCSPCandidate]]:
        """
        Parse OCSP responses into candidates, most recent first.
        """
        report = ValidationReport()
        candidates: List[Tuple[datetime, OCSPCandidate]] = []
        for data in ocsp_data:
            try:
                response = ocsp.OCSPResponse.load(data)
                status = response['response_status'].native
                if status != 'successful':
                    report = report.add_item(
                        _info(OCSP_NOT_SUCCESSFUL.format(status=status), cert)
                    )
                    continue
                basic_response = response.basic_ocsp_response
                single_responses = basic_response['tbs_response_data'][
                    'responses'
                ]
                matching = [
                    (
                        single_response['this_update'].native,
                        (single_response, basic_response),
                    )
                    for single_response in single_responses
                    if single_response['cert_id']['serial_number'].native
                    == cert.serial_number
                ]
            except (ValueError, TypeError) as e:
                report = report.add_item(
                    _info(OCSP_MALFORMED.format(error=e), cert, exception=e)
                )
                continue
            candidates.extend(matching)
        candidates.sort(key=lambda c: c[0], reverse=True)
        return report, [candidate for _, candidate in candidates]

    @staticmethod
    def _parse_crls(
        cert: x509.Certificate, crl_data: List[bytes]
    ) -> Tuple[ValidationReport, List[crl.CertificateList]]:
        """
        Parse CRLs, most recent first.
        """
        report = ValidationReport()
        crls: List[Tuple[datetime, crl.CertificateList]] = []
        for data in crl_data:
            try:
                certificate_list = crl.CertificateList.load(data)
                this_update = certificate_list['tbs_cert_list'][
                    'this_update'
                ].native
            except (ValueError, TypeError) as e:
                report = report.add_item(
                    _info(CRL_MALFORMED.format(error=e), cert, exception=e)
                )
                continue
            crls.append((this_update, certificate_list))
        crls.sort(key=lambda c: c[0], reverse=True)
        return report, [certificate_list for _, certificate_list in crls]


def _adopt_first_definitive(
    report: ValidationReport, fragments: Sequence[ValidationReport]
) -> Tuple[ValidationReport, bool]:
    adopted = None
    for ix, fragment in enumerate(fragments):
        if _is_definitive(fragment):
            adopted = ix
            break
    for ix, fragment in enumerate(fragments):
        if ix == adopted:
            report = report.merge(fragment)
        else:
            report = report.merge(fragment.cap_status(ReportItemStatus.INFO))
    return report, adopted is not None
