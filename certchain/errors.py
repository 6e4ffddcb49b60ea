# coding: utf-8


class CertchainError(Exception):
    pass


class ConfigurationError(CertchainError):
    """
    Signal configuration errors.
    """

    pass


class FetchError(CertchainError):
    pass


class CRLFetchError(FetchError):
    pass


class OCSPFetchError(FetchError):
    pass


class CertificateFetchError(FetchError):
    pass


class SignatureVerificationError(CertchainError):
    pass


class DSAParametersUnavailable(SignatureVerificationError):
    # DSA public keys can inherit their parameters from the issuer's key;
    # such keys cannot be used on their own
    pass


class PSSParameterMismatch(SignatureVerificationError):
    pass
