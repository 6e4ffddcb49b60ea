import logging

import click

from ..config import LogConfig, parse_config, parse_logging_config
from ..errors import ConfigurationError
from ..version import __version__
from ._ctx import CLIContext
from .runtime import DEFAULT_CONFIG_FILE, logging_setup

__all__ = ['cli_root']


@click.group()
@click.version_option(prog_name='certchain', version=__version__)
@click.option(
    '--config',
    help=(
        'YAML file to load configuration from '
        f'[default: {DEFAULT_CONFIG_FILE}]'
    ),
    required=False,
    type=click.File('r'),
)
@click.option(
    '--verbose',
    help='Run in verbose mode',
    required=False,
    default=False,
    type=bool,
    is_flag=True,
)
@click.pass_context
def _root(ctx: click.Context, config, verbose):
    config_text = None
    if config is None:
        try:
            with open(DEFAULT_CONFIG_FILE, 'r') as f:
                config_text = f.read()
            config = DEFAULT_CONFIG_FILE
        except FileNotFoundError:
            pass
        except IOError as e:
            raise click.ClickException(
                f"Failed to read {DEFAULT_CONFIG_FILE}: {str(e)}"
            )
    else:
        try:
            config_text = config.read()
        except IOError as e:
            raise click.ClickException(
                f"Failed to read configuration: {str(e)}",
            )

    ctx.ensure_object(CLIContext)
    ctx_obj: CLIContext = ctx.obj
    if config_text is not None:
        try:
            cfg = parse_config(config_text)
        except ConfigurationError as e:
            raise click.ClickException(f"Configuration problem: {e}")
        ctx_obj.validation = cfg.validation
        log_config = dict(cfg.log_config)
    else:
        # grab the default
        log_config = parse_logging_config({})

    if verbose:
        # override the root logger's logging level, but preserve the output
        root_logger_config = log_config[None]
        log_config[None] = LogConfig(
            level=logging.DEBUG, output=root_logger_config.output
        )
    elif 'certchain.fetchers' not in log_config:
        # Revinfo fetch logs -> filter by default
        log_config['certchain.fetchers'] = LogConfig(
            level=logging.WARNING, output=log_config[None].output
        )

    logging_setup(log_config, verbose)

    if verbose:
        logging.debug("Running with --verbose")
    if config_text is not None:
        logging.debug(f'Finished reading configuration from {config}.')
    else:
        logging.debug('There was no configuration to parse.')


cli_root: click.Group = _root
