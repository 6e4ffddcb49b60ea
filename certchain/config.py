"""
YAML configuration for validation policies and logging.

.. note::
    On naming conventions: keys are written with hyphens in YAML, and
    converted to underscores where they map onto Python names. Enum values
    are written in lower case with hyphens, e.g. ``signer-cert`` for
    :attr:`.CertificateOrigin.SIGNER_CERT`.
"""

import binascii
import enum
import logging
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Type, TypeVar, Union

import yaml
from asn1crypto import x509

from .context import CertificateOrigin, TimeMode, ValidatorStage
from .errors import ConfigurationError
from .extensions import (
    BasicConstraintsExtension,
    CertificateExtension,
    DynamicBasicConstraintsExtension,
    ExtendedKeyUsageExtension,
    KeyUsage,
    KeyUsageExtension,
)
from .policy_decl import OnlineFetching, SignatureValidationProperties
from .revinfo.revocation_data import DEFAULT_FETCH_TIMEOUT
from .validate import DEFAULT_MAX_CHAIN_LENGTH

__all__ = [
    'StdLogOutput',
    'LogConfig',
    'ValidationConfig',
    'CertchainConfig',
    'parse_logging_config',
    'parse_policy_config',
    'parse_extension_spec',
    'parse_config',
    'check_config_keys',
]

E = TypeVar('E', bound=enum.Enum)


def get_and_apply(dictionary: dict, key, function: Callable, *, default=None):
    try:
        value = dictionary[key]
    except KeyError:
        return default
    return function(value)


def check_config_keys(config_name, expected_keys, config_dict):
    # wrapper function to provide user-friendly errors
    #  (mainly intended for the CLI)
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"{config_name} requires a dictionary to initialise."
        )
    unexpected_keys = _check_subset(config_dict.keys(), expected_keys)
    if unexpected_keys:
        # this is easier to present to the user than a TypeError
        raise ConfigurationError(
            f"Unexpected {'key' if len(unexpected_keys) == 1 else 'keys'} "
            f"in configuration for {config_name}: "
            f"{', '.join(sorted(unexpected_keys))}."
        )


def _check_subset(expected_sub, expected_sup):
    # standardise on dashes for the yaml interface
    expected_sub = {str(key).replace('_', '-') for key in expected_sub}
    expected_sup = {key.replace('_', '-') for key in expected_sup}
    return expected_sub - expected_sup


def _ensure_list(values, param_name) -> list:
    if isinstance(values, (str, int)):
        return [values]
    elif not isinstance(values, (list, tuple)):
        raise ConfigurationError(
            f"'{param_name}' must be specified as a list, or a single value."
        )
    return list(values)


def _parse_enum(enum_cls: Type[E], spec, param_name) -> E:
    if not isinstance(spec, str):
        raise ConfigurationError(
            f"Value '{spec!r}' in '{param_name}' is not a string."
        )
    try:
        return enum_cls[spec.upper().replace('-', '_')]
    except KeyError:
        valid = ', '.join(
            member.name.lower().replace('_', '-') for member in enum_cls
        )
        raise ConfigurationError(
            f"'{spec}' in '{param_name}' is not a valid "
            f"{enum_cls.__name__}; expected one of {valid}."
        )


# Logging

class StdLogOutput(enum.Enum):
    STDERR = enum.auto()
    STDOUT = enum.auto()


@dataclass(frozen=True)
class LogConfig:
    level: Union[int, str]
    """
    Logging level, should be one of the levels defined in the logging module.
    """

    output: Union[StdLogOutput, str]
    """
    Name of the output file, or a standard one.
    """

    @staticmethod
    def parse_output_spec(spec) -> Union[StdLogOutput, str]:
        if not isinstance(spec, str):
            raise ConfigurationError(
                "Log output must be specified as a string."
            )
        spec_l = spec.lower()
        if spec_l == 'stderr':
            return StdLogOutput.STDERR
        elif spec_l == 'stdout':
            return StdLogOutput.STDOUT
        else:
            return spec


DEFAULT_ROOT_LOGGER_LEVEL = logging.INFO


def _retrieve_log_level(settings_dict, key, default=None) -> Union[int, str]:
    try:
        level_spec = settings_dict[key]
    except KeyError:
        if default is not None:
            return default
        raise ConfigurationError(
            f"Logging config for '{key}' does not define a log level."
        )
    if not isinstance(level_spec, (int, str)):
        raise ConfigurationError(
            f"Log levels must be int or str, not {type(level_spec)}"
        )
    return level_spec


def parse_logging_config(log_config_spec) -> Dict[Optional[str], LogConfig]:
    """
    Parse the ``logging`` section of the configuration.

    :return:
        A dictionary mapping logger names to their settings. The ``None``
        key holds the settings of the root logger.
    """
    if not isinstance(log_config_spec, dict):
        raise ConfigurationError('logging config should be a dictionary')
    check_config_keys(
        'logging', ('root-level', 'root-output', 'by-module'), log_config_spec
    )

    root_logger_level = _retrieve_log_level(
        log_config_spec, 'root-level', default=DEFAULT_ROOT_LOGGER_LEVEL
    )

    root_logger_output = get_and_apply(
        log_config_spec,
        'root-output',
        LogConfig.parse_output_spec,
        default=StdLogOutput.STDERR,
    )

    log_config: Dict[Optional[str], LogConfig] = {
        None: LogConfig(root_logger_level, root_logger_output),
    }

    logging_by_module = log_config_spec.get('by-module', {})
    if not isinstance(logging_by_module, dict):
        raise ConfigurationError('logging.by-module should be a dict')

    for module, module_logging_settings in logging_by_module.items():
        if not isinstance(module, str):
            raise ConfigurationError(
                "Keys in logging.by-module should be strings"
            )
        if not isinstance(module_logging_settings, dict):
            raise ConfigurationError(
                f"Logging config for '{module}' should be a dictionary"
            )
        level_spec = _retrieve_log_level(module_logging_settings, 'level')
        output_spec = get_and_apply(
            module_logging_settings,
            'output',
            LogConfig.parse_output_spec,
            default=StdLogOutput.STDERR,
        )
        log_config[module] = LogConfig(level=level_spec, output=output_spec)

    return log_config


# Validation policy

OID_REGEX = re.compile(r'\d(\.\d+)+')


def _process_key_purpose(spec, param_name) -> str:
    if not isinstance(spec, str):
        raise ConfigurationError(
            f"Identifier '{spec!r}' in '{param_name}' is not a string."
        )
    if OID_REGEX.fullmatch(spec):
        return spec
    try:
        return x509.KeyPurposeId.unmap(spec)
    except ValueError:
        raise ConfigurationError(
            f"'{spec}' in '{param_name}' is not a valid key purpose."
        )


def _parse_key_usage(spec) -> CertificateExtension:
    key_usages = []
    for value in _ensure_list(spec, 'key-usage'):
        try:
            key_usages.append(KeyUsage(value))
        except ValueError:
            raise ConfigurationError(
                f"'{value!r}' is not a valid key usage flag name."
            )
    if not key_usages:
        raise ConfigurationError("'key-usage' must not be empty.")
    return KeyUsageExtension(key_usages)


def _parse_extended_key_usage(spec) -> CertificateExtension:
    purposes = [
        _process_key_purpose(value, 'extended-key-usage')
        for value in _ensure_list(spec, 'extended-key-usage')
    ]
    if not purposes:
        raise ConfigurationError("'extended-key-usage' must not be empty.")
    return ExtendedKeyUsageExtension(purposes)


def _parse_basic_constraints(spec) -> CertificateExtension:
    check_config_keys(
        'basic-constraints', ('ca', 'path-length', 'present'), spec
    )
    if len(spec) != 1:
        raise ConfigurationError(
            "basic-constraints requires exactly one of 'ca', 'path-length' "
            "or 'present'."
        )
    try:
        if 'ca' in spec:
            if not isinstance(spec['ca'], bool):
                raise ConfigurationError(
                    "basic-constraints.ca must be a boolean."
                )
            return BasicConstraintsExtension(spec['ca'])
        elif 'path-length' in spec:
            path_length = spec['path-length']
            if not isinstance(path_length, int) or isinstance(
                path_length, bool
            ):
                raise ConfigurationError(
                    "basic-constraints.path-length must be an integer."
                )
            return BasicConstraintsExtension(path_length)
        else:
            if spec['present'] is not True:
                raise ConfigurationError(
                    "basic-constraints.present can only be set to true."
                )
            return BasicConstraintsExtension(BasicConstraintsExtension.NOT_SET)
    except ValueError as e:
        raise ConfigurationError(f"Invalid basic-constraints: {e}") from e


def _parse_dynamic_basic_constraints(spec) -> CertificateExtension:
    if spec is None:
        spec = {}
    check_config_keys('dynamic-basic-constraints', (), spec)
    return DynamicBasicConstraintsExtension()


def _parse_raw_extension(spec) -> CertificateExtension:
    check_config_keys('extension', ('oid', 'value'), spec)
    try:
        oid = spec['oid']
        value = spec['value']
    except KeyError as e:
        raise ConfigurationError(
            f"Raw extension requirements need an 'oid' and a 'value', "
            f"missing {e}."
        )
    if not isinstance(oid, str) or not isinstance(value, (str, int)):
        raise ConfigurationError(
            "Raw extension OIDs and values must be strings."
        )
    try:
        der_value = binascii.unhexlify(str(value))
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(
            f"Extension value for {oid} is not valid hex: {e}"
        ) from e
    try:
        return CertificateExtension(oid, der_value)
    except ValueError as e:
        raise ConfigurationError(
            f"'{oid}' is not a valid extension identifier."
        ) from e


_EXTENSION_PARSERS: Dict[str, Callable[..., CertificateExtension]] = {
    'key-usage': _parse_key_usage,
    'extended-key-usage': _parse_extended_key_usage,
    'basic-constraints': _parse_basic_constraints,
    'dynamic-basic-constraints': _parse_dynamic_basic_constraints,
}


def parse_extension_spec(spec) -> CertificateExtension:
    """
    Parse a single required extension.

    The following forms are accepted:

     * ``{key-usage: [digital_signature, non_repudiation]}``
     * ``{extended-key-usage: [1.3.6.1.5.5.7.3.4, code_signing]}``
     * ``{basic-constraints: {ca: true}}``,
       ``{basic-constraints: {path-length: 0}}`` or
       ``{basic-constraints: {present: true}}``
     * ``{dynamic-basic-constraints: {}}``
     * ``{oid: 2.5.29.19, value: 3000}``, where the value is the hex-encoded
       DER encoding of the extension value.
    """
    if not isinstance(spec, dict):
        raise ConfigurationError(
            "Extension requirements must be dictionaries."
        )
    if 'oid' in spec:
        return _parse_raw_extension(spec)
    if len(spec) != 1:
        raise ConfigurationError(
            f"Extension requirement must have exactly one key, not "
            f"{', '.join(map(str, spec.keys()))}."
        )
    ((kind, value),) = spec.items()
    try:
        parser = _EXTENSION_PARSERS[kind]
    except KeyError:
        raise ConfigurationError(
            f"Unknown extension requirement '{kind}'; expected one of "
            f"{', '.join(_EXTENSION_PARSERS)} or oid/value."
        )
    return parser(value)


_DIMENSION_ENUMS = {
    'certificate-origins': CertificateOrigin,
    'validator-stages': ValidatorStage,
    'time-modes': TimeMode,
}


def _parse_dimensions(entry: dict) -> dict:
    result = {}
    for key, enum_cls in _DIMENSION_ENUMS.items():
        try:
            spec = entry[key]
        except KeyError:
            continue
        result[key.replace('-', '_')] = [
            _parse_enum(enum_cls, value, key)
            for value in _ensure_list(spec, key)
        ]
    return result


def _parse_freshness(value) -> timedelta:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigurationError(
            "freshness must be specified in seconds"
        )
    if value < 0:
        raise ConfigurationError("freshness must not be negative")
    return timedelta(seconds=value)


def _parse_continue_after_failure(value) -> bool:
    if not isinstance(value, bool):
        raise ConfigurationError(
            "continue-after-failure must be a boolean"
        )
    return value


def _parse_online_fetching(value) -> OnlineFetching:
    return _parse_enum(OnlineFetching, value, 'online-fetching')


def _policy_entries(policy_config: dict, key: str) -> List[dict]:
    entries = policy_config.get(key, [])
    if not isinstance(entries, list):
        raise ConfigurationError(f"policy.{key} should be a list")
    return entries


def parse_policy_config(policy_config) -> SignatureValidationProperties:
    """
    Build a :class:`.SignatureValidationProperties` object from the
    ``validation.policy`` section of the configuration.

    Every policy table is configured as a list of entries. Each entry sets a
    value for a pattern, given by the optional ``certificate-origins``,
    ``validator-stages`` and ``time-modes`` keys. Entries are applied on top
    of the built-in defaults.
    """
    if policy_config is None:
        policy_config = {}
    check_config_keys(
        'policy',
        (
            'continue-after-failure',
            'freshness',
            'online-fetching',
            'required-extensions',
        ),
        policy_config,
    )
    properties = SignatureValidationProperties()
    dimension_keys = tuple(_DIMENSION_ENUMS.keys())

    scalar_tables = (
        (
            'continue-after-failure',
            _parse_continue_after_failure,
            properties.set_continue_after_failure,
        ),
        ('freshness', _parse_freshness, properties.set_freshness),
        (
            'online-fetching',
            _parse_online_fetching,
            properties.set_revocation_online_fetching,
        ),
    )
    for key, parse_value, setter in scalar_tables:
        for entry in _policy_entries(policy_config, key):
            check_config_keys(key, ('value',) + dimension_keys, entry)
            try:
                raw_value = entry['value']
            except KeyError:
                raise ConfigurationError(
                    f"Entries in policy.{key} require a 'value'."
                )
            setter(parse_value(raw_value), **_parse_dimensions(entry))

    for entry in _policy_entries(policy_config, 'required-extensions'):
        check_config_keys(
            'required-extensions', ('extensions',) + dimension_keys, entry
        )
        extension_specs = entry.get('extensions', [])
        if not isinstance(extension_specs, list):
            raise ConfigurationError(
                "required-extensions.extensions should be a list"
            )
        properties.set_required_extensions(
            [parse_extension_spec(spec) for spec in extension_specs],
            **_parse_dimensions(entry),
        )
    return properties


@dataclass(frozen=True)
class ValidationConfig:
    """
    Settings from the ``validation`` section of the configuration.
    """

    properties: SignatureValidationProperties = field(
        default_factory=SignatureValidationProperties
    )
    """
    The validation policy.
    """

    max_chain_length: int = DEFAULT_MAX_CHAIN_LENGTH
    """
    Maximal number of certificates in a chain.
    """

    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    """
    Timeout for fetching revocation data, in seconds.
    """

    @classmethod
    def from_config(cls, config_dict) -> 'ValidationConfig':
        if config_dict is None:
            return cls()
        check_config_keys(
            cls.__name__,
            ('policy', 'max-chain-length', 'fetch-timeout'),
            config_dict,
        )
        kwargs = {}
        if 'max-chain-length' in config_dict:
            max_chain_length = config_dict['max-chain-length']
            if not isinstance(max_chain_length, int) or max_chain_length < 1:
                raise ConfigurationError(
                    "max-chain-length must be a positive integer"
                )
            kwargs['max_chain_length'] = max_chain_length
        if 'fetch-timeout' in config_dict:
            fetch_timeout = config_dict['fetch-timeout']
            if (
                not isinstance(fetch_timeout, (int, float))
                or isinstance(fetch_timeout, bool)
                or fetch_timeout <= 0
            ):
                raise ConfigurationError(
                    "fetch-timeout must be a positive number of seconds"
                )
            kwargs['fetch_timeout'] = float(fetch_timeout)
        return cls(
            properties=parse_policy_config(config_dict.get('policy')),
            **kwargs,
        )


@dataclass(frozen=True)
class CertchainConfig:
    log_config: Dict[Optional[str], LogConfig]
    """
    Per-module logging configuration. The ``None`` key houses the
    configuration for the root logger.
    """

    validation: ValidationConfig
    """
    Validation settings.
    """


def parse_config(yaml_str) -> CertchainConfig:
    """
    Parse a YAML configuration file.

    :param yaml_str:
        The configuration, as a string or a stream.
    :raises ConfigurationError:
        if the configuration is malformed.
    """
    try:
        config_dict = yaml.safe_load(yaml_str) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse configuration: {e}") from e
    check_config_keys('configuration', ('logging', 'validation'), config_dict)
    return CertchainConfig(
        log_config=parse_logging_config(config_dict.get('logging', {})),
        validation=ValidationConfig.from_config(
            config_dict.get('validation')
        ),
    )
