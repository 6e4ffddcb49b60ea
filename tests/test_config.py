import logging
from datetime import timedelta

import pytest

from certchain.config import (
    LogConfig,
    StdLogOutput,
    ValidationConfig,
    parse_config,
    parse_extension_spec,
    parse_logging_config,
    parse_policy_config,
)
from certchain.context import (
    CertificateOrigin,
    TimeMode,
    ValidationContext,
    ValidatorStage,
)
from certchain.errors import ConfigurationError
from certchain.extensions import (
    CODE_SIGNING,
    EMAIL_PROTECTION,
    BasicConstraintsExtension,
    CertificateExtension,
    DynamicBasicConstraintsExtension,
    ExtendedKeyUsageExtension,
    KeyUsage,
    KeyUsageExtension,
)
from certchain.policy_decl import OnlineFetching
from certchain.revinfo import DEFAULT_FETCH_TIMEOUT
from certchain.validate import DEFAULT_MAX_CHAIN_LENGTH


def _ctx(
    origin=CertificateOrigin.SIGNER_CERT,
    stage=ValidatorStage.CHAIN_VALIDATOR,
    time_mode=TimeMode.PRESENT,
):
    return ValidationContext(
        validator_stage=stage, certificate_origin=origin, time_mode=time_mode
    )


FULL_CONFIG = """
logging:
    root-level: WARNING
    by-module:
        certchain.fetchers:
            level: DEBUG
            output: fetch.log
validation:
    max-chain-length: 5
    fetch-timeout: 2.5
    policy:
        continue-after-failure:
            - value: false
              certificate-origins: [signer-cert]
        freshness:
            - value: 3600
              validator-stages: ocsp-validator
              time-modes: present
        online-fetching:
            - value: never
        required-extensions:
            - certificate-origins: signer-cert
              extensions:
                - key-usage: [digital_signature]
                - extended-key-usage: [email_protection]
"""


def test_parse_full_config():
    config = parse_config(FULL_CONFIG)
    assert config.log_config[None] == LogConfig(
        'WARNING', StdLogOutput.STDERR
    )
    assert config.log_config['certchain.fetchers'] == LogConfig(
        'DEBUG', 'fetch.log'
    )
    validation = config.validation
    assert validation.max_chain_length == 5
    assert validation.fetch_timeout == 2.5

    props = validation.properties
    assert props.get_continue_after_failure(_ctx()) is False
    assert props.get_continue_after_failure(
        _ctx(CertificateOrigin.CERT_ISSUER)
    ) is True
    ocsp_ctx = _ctx(stage=ValidatorStage.OCSP_VALIDATOR)
    assert props.get_freshness(ocsp_ctx) == timedelta(hours=1)
    assert props.get_freshness(_ctx()) == timedelta(days=30)
    assert props.get_revocation_online_fetching(_ctx()) == (
        OnlineFetching.NEVER
    )
    assert props.get_required_extensions(_ctx()) == [
        KeyUsageExtension(KeyUsage.DIGITAL_SIGNATURE),
        ExtendedKeyUsageExtension([EMAIL_PROTECTION]),
    ]
    # other defaults are untouched
    assert props.get_required_extensions(
        _ctx(CertificateOrigin.CRL_ISSUER)
    ) == [KeyUsageExtension(KeyUsage.CRL_SIGN)]


def test_empty_config():
    config = parse_config('')
    assert config.log_config[None].level == logging.INFO
    assert config.validation.max_chain_length == DEFAULT_MAX_CHAIN_LENGTH
    assert config.validation.fetch_timeout == DEFAULT_FETCH_TIMEOUT
    assert config.validation.properties.get_required_extensions(_ctx()) == [
        KeyUsageExtension(KeyUsage.NON_REPUDIATION)
    ]


@pytest.mark.parametrize(
    'config_str',
    [
        'foo: bar',
        'validation: {blah: 1}',
        'validation: {policy: {freshness: [{value: 10, origins: x}]}}',
        'validation: {policy: {unknown-policy: []}}',
        'logging: {root-level: 10, foo: 1}',
    ],
)
def test_unexpected_keys(config_str):
    with pytest.raises(ConfigurationError, match='Unexpected key'):
        parse_config(config_str)


@pytest.mark.parametrize(
    'config_str,message',
    [
        ('validation: {max-chain-length: 0}', 'max-chain-length'),
        ('validation: {fetch-timeout: -1}', 'fetch-timeout'),
        ('validation: {fetch-timeout: true}', 'fetch-timeout'),
        (
            'validation: {policy: {freshness: [{value: -5}]}}',
            'must not be negative',
        ),
        (
            'validation: {policy: {freshness: [{value: 1 day}]}}',
            'seconds',
        ),
        (
            'validation: {policy: {online-fetching: [{value: sometimes}]}}',
            'not a valid OnlineFetching',
        ),
        (
            'validation: {policy: {continue-after-failure: [{}]}}',
            "require a 'value'",
        ),
        (
            'validation: {policy: {continue-after-failure: '
            '[{value: true, time-modes: [yesterday]}]}}',
            'not a valid TimeMode',
        ),
        ('validation: {policy: {freshness: 1}}', 'should be a list'),
    ],
)
def test_invalid_values(config_str, message):
    with pytest.raises(ConfigurationError, match=message):
        parse_config(config_str)


def test_invalid_yaml():
    with pytest.raises(ConfigurationError, match='Failed to parse'):
        parse_config('validation: [')


def test_parse_policy_none():
    props = parse_policy_config(None)
    assert props.get_freshness(_ctx()) == timedelta(days=30)


def test_validation_config_defaults():
    config = ValidationConfig.from_config(None)
    assert config.max_chain_length == DEFAULT_MAX_CHAIN_LENGTH


@pytest.mark.parametrize(
    'spec,expected',
    [
        (
            {'key-usage': 'key_cert_sign'},
            KeyUsageExtension(KeyUsage.KEY_CERT_SIGN),
        ),
        (
            {'extended-key-usage': ['1.3.6.1.5.5.7.3.3']},
            ExtendedKeyUsageExtension([CODE_SIGNING]),
        ),
        (
            {'extended-key-usage': 'code_signing'},
            ExtendedKeyUsageExtension([CODE_SIGNING]),
        ),
        (
            {'basic-constraints': {'ca': True}},
            BasicConstraintsExtension(True),
        ),
        (
            {'basic-constraints': {'path-length': 2}},
            BasicConstraintsExtension(2),
        ),
        (
            {'basic-constraints': {'present': True}},
            BasicConstraintsExtension(BasicConstraintsExtension.NOT_SET),
        ),
        (
            {'dynamic-basic-constraints': {}},
            DynamicBasicConstraintsExtension(),
        ),
        (
            {'dynamic-basic-constraints': None},
            DynamicBasicConstraintsExtension(),
        ),
        (
            {'oid': '1.3.6.1.5.5.7.48.1.5', 'value': '0500'},
            CertificateExtension('ocsp_no_check', b'\x05\x00'),
        ),
    ],
)
def test_parse_extension_spec(spec, expected):
    assert parse_extension_spec(spec) == expected


@pytest.mark.parametrize(
    'spec',
    [
        'key-usage',
        {'key-usage': ['sign_everything']},
        {'key-usage': []},
        {'extended-key-usage': ['not_a_purpose']},
        {'basic-constraints': {'ca': 'yes'}},
        {'basic-constraints': {'path-length': -1}},
        {'basic-constraints': {'ca': True, 'path-length': 1}},
        {'basic-constraints': {'present': False}},
        {'oid': '1.3.6.1.5.5.7.48.1.5', 'value': 'xyz'},
        {'oid': '1.3.6.1.5.5.7.48.1.5'},
        {'key-usage': 'crl_sign', 'basic-constraints': {'ca': True}},
        {'name-constraints': {}},
    ],
)
def test_parse_extension_spec_errors(spec):
    with pytest.raises(ConfigurationError):
        parse_extension_spec(spec)


def test_logging_output_spec():
    log_config = parse_logging_config(
        {
            'root-output': 'STDOUT',
            'by-module': {'certchain': {'level': 'DEBUG'}},
        }
    )
    assert log_config[None] == LogConfig(logging.INFO, StdLogOutput.STDOUT)
    assert log_config['certchain'] == LogConfig(
        'DEBUG', StdLogOutput.STDERR
    )


@pytest.mark.parametrize(
    'spec',
    [
        {'by-module': {'certchain': {}}},
        {'by-module': {'certchain': 'DEBUG'}},
        {'by-module': ['certchain']},
        {'root-level': 1.5},
        {'root-output': 3},
    ],
)
def test_logging_config_errors(spec):
    with pytest.raises(ConfigurationError):
        parse_logging_config(spec)
