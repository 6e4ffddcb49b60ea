import asyncio
from datetime import datetime, timezone
from typing import Optional

import click
from asn1crypto import x509

from .. import async_validate_signer_chain
from ..builder import ValidatorChainBuilder
from ..context import TimeMode
from ..fetchers import EmbeddedCRLClient, EmbeddedOCSPClient, FetcherBackend
from ..loaders import (
    load_cert_from_pemder,
    load_certs_from_pemder,
    load_crls_from_pemder,
    load_ocsp_responses_from_pemder,
)
from ..policy_decl import OnlineFetching
from ..report import ValidationReport, ValidationResult
from ._ctx import CLIContext
from ._root import cli_root
from .runtime import certchain_exception_manager
from .utils import logger, readable_file

__all__ = ['validate']


def _parse_validation_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        result = datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(
            f"'{value}' is not an ISO 8601 date/time",
            param_hint='--validation-time',
        )
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def _get_fetcher_backend(name: str) -> FetcherBackend:
    if name == 'aiohttp':
        from ..fetchers.aiohttp_fetchers import AIOHttpFetcherBackend

        return AIOHttpFetcherBackend()
    else:
        from ..fetchers.requests_fetchers import RequestsFetcherBackend

        return RequestsFetcherBackend()


async def _run_validation(
    signer: x509.Certificate,
    validation_time: Optional[datetime],
    time_mode: TimeMode,
    builder: ValidatorChainBuilder,
    backend: Optional[FetcherBackend],
) -> ValidationReport:
    if backend is None:
        return await async_validate_signer_chain(
            signer, validation_time, time_mode=time_mode, builder=builder
        )
    async with backend as fetchers:
        builder.with_fetchers(fetchers)
        return await async_validate_signer_chain(
            signer, validation_time, time_mode=time_mode, builder=builder
        )


@cli_root.command(
    help='validate the certificate chain of a signer', name='validate'
)
@click.argument('cert', type=readable_file)
@click.option(
    '--trust',
    help='certificate(s) to trust for every purpose',
    multiple=True,
    type=readable_file,
)
@click.option(
    '--trust-ocsp',
    help='certificate(s) to trust as OCSP responders',
    multiple=True,
    type=readable_file,
)
@click.option(
    '--trust-crl',
    help='certificate(s) to trust as CRL issuers',
    multiple=True,
    type=readable_file,
)
@click.option(
    '--other-certs',
    help='other certificates to use when building the chain',
    multiple=True,
    type=readable_file,
)
@click.option(
    '--crl',
    help='CRL file(s) to use as revocation data',
    multiple=True,
    type=readable_file,
)
@click.option(
    '--ocsp',
    help='OCSP response file(s) to use as revocation data',
    multiple=True,
    type=readable_file,
)
@click.option(
    '--validation-time',
    help='time at which to validate (ISO 8601) [default: now]',
    required=False,
    type=str,
)
@click.option(
    '--historical',
    help='validate in historical mode, i.e. against a time in the past',
    type=bool,
    is_flag=True,
    default=False,
)
@click.option(
    '--online-fetching',
    help='when to fetch revocation data online '
    '(overrides the configured policy)',
    required=False,
    type=click.Choice(['always', 'never', 'if-no-other-options']),
)
@click.option(
    '--fetch-backend',
    help='HTTP client library used for online fetching',
    type=click.Choice(['requests', 'aiohttp']),
    default='requests',
    show_default=True,
)
@click.pass_context
def validate(
    ctx: click.Context,
    cert,
    trust,
    trust_ocsp,
    trust_crl,
    other_certs,
    crl,
    ocsp,
    validation_time,
    historical,
    online_fetching,
    fetch_backend,
):
    ctx.ensure_object(CLIContext)
    ctx_obj: CLIContext = ctx.obj
    validation_config = ctx_obj.validation
    validation_dt = _parse_validation_time(validation_time)

    with certchain_exception_manager():
        signer = load_cert_from_pemder(cert)
        properties = validation_config.properties.copy()
        if online_fetching is not None:
            properties.set_revocation_online_fetching(
                OnlineFetching[online_fetching.upper().replace('-', '_')]
            )

        builder = (
            ValidatorChainBuilder()
            .with_properties(properties)
            .with_fetch_timeout(validation_config.fetch_timeout)
            .with_max_chain_length(validation_config.max_chain_length)
            .with_trusted_certificates(load_certs_from_pemder(trust))
            .with_ocsp_trusted_certificates(load_certs_from_pemder(trust_ocsp))
            .with_crl_trusted_certificates(load_certs_from_pemder(trust_crl))
            .with_known_certificates(load_certs_from_pemder(other_certs))
            .with_crl_client(EmbeddedCRLClient(load_crls_from_pemder(crl)))
            .with_ocsp_client(
                EmbeddedOCSPClient(load_ocsp_responses_from_pemder(ocsp))
            )
        )
        backend = None
        if online_fetching != 'never':
            backend = _get_fetcher_backend(fetch_backend)
        time_mode = TimeMode.HISTORICAL if historical else TimeMode.PRESENT
        report = asyncio.run(
            _run_validation(signer, validation_dt, time_mode, builder, backend)
        )

    logger.debug(f"Validation of {signer.subject.human_friendly} finished")
    click.echo(str(report))
    if report.validation_result != ValidationResult.VALID:
        ctx.exit(1)
