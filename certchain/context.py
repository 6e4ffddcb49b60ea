import enum
from dataclasses import dataclass, replace

__all__ = [
    'CertificateOrigin',
    'ValidatorStage',
    'TimeMode',
    'ValidationContext',
]


@enum.unique
class CertificateOrigin(enum.Enum):
    """
    The role of the certificate being validated.
    """

    SIGNER_CERT = 'signer_cert'
    CERT_ISSUER = 'cert_issuer'
    CRL_ISSUER = 'crl_issuer'
    OCSP_ISSUER = 'ocsp_issuer'
    TIMESTAMP = 'timestamp'


@enum.unique
class ValidatorStage(enum.Enum):
    """
    The validator that is requesting a policy decision.
    """

    CHAIN_VALIDATOR = 'chain_validator'
    REVOCATION_DATA_VALIDATOR = 'revocation_data_validator'
    CRL_VALIDATOR = 'crl_validator'
    OCSP_VALIDATOR = 'ocsp_validator'
    SIGNATURE = 'signature'


@enum.unique
class TimeMode(enum.Enum):
    """
    Whether validation happens against the present or a point in the past.
    """

    PRESENT = 'present'
    HISTORICAL = 'historical'


@dataclass(frozen=True)
class ValidationContext:
    """
    Describes why a certificate is being checked. Used as the key for
    policy lookups in
    :class:`~certchain.policy_decl.SignatureValidationProperties`.
    """

    validator_stage: ValidatorStage
    certificate_origin: CertificateOrigin
    time_mode: TimeMode = TimeMode.PRESENT

    def with_validator_stage(
        self, validator_stage: ValidatorStage
    ) -> 'ValidationContext':
        return replace(self, validator_stage=validator_stage)

    def with_certificate_origin(
        self, certificate_origin: CertificateOrigin
    ) -> 'ValidationContext':
        return replace(self, certificate_origin=certificate_origin)

    def with_time_mode(self, time_mode: TimeMode) -> 'ValidationContext':
        return replace(self, time_mode=time_mode)

    def __str__(self):
        return (
            f"{self.validator_stage.name}/{self.certificate_origin.name}/"
            f"{self.time_mode.name}"
        )
