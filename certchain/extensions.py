"""
Predicates testing whether a certificate grants a requested capability.

Each predicate exposes :meth:`CertificateExtension.exists_in_certificate`.
The set of variants is closed: generic exact-match extensions, key usage,
extended key usage and basic constraints (static or bound to a position in
the chain).
"""

import enum
from typing import FrozenSet, Iterable, Tuple, Union

from asn1crypto import core, x509

from .util import cert_extension, extension_value_bytes

__all__ = [
    'KeyUsage',
    'CertificateExtension',
    'KeyUsageExtension',
    'ExtendedKeyUsageExtension',
    'BasicConstraintsExtension',
    'DynamicBasicConstraintsExtension',
    'SERVER_AUTH',
    'CLIENT_AUTH',
    'CODE_SIGNING',
    'EMAIL_PROTECTION',
    'TIME_STAMPING',
    'OCSP_SIGNING',
    'ANY_EXTENDED_KEY_USAGE',
]

SERVER_AUTH = '1.3.6.1.5.5.7.3.1'
CLIENT_AUTH = '1.3.6.1.5.5.7.3.2'
CODE_SIGNING = '1.3.6.1.5.5.7.3.3'
EMAIL_PROTECTION = '1.3.6.1.5.5.7.3.4'
TIME_STAMPING = '1.3.6.1.5.5.7.3.8'
OCSP_SIGNING = '1.3.6.1.5.5.7.3.9'
ANY_EXTENDED_KEY_USAGE = '2.5.29.37.0'

KEY_USAGE_OID = '2.5.29.15'
EXTENDED_KEY_USAGE_OID = '2.5.29.37'
BASIC_CONSTRAINTS_OID = '2.5.29.19'


@enum.unique
class KeyUsage(enum.Enum):
    """
    Key usage bits, named as in :class:`asn1crypto.x509.KeyUsage`.
    """

    DIGITAL_SIGNATURE = 'digital_signature'
    NON_REPUDIATION = 'non_repudiation'
    KEY_ENCIPHERMENT = 'key_encipherment'
    DATA_ENCIPHERMENT = 'data_encipherment'
    KEY_AGREEMENT = 'key_agreement'
    KEY_CERT_SIGN = 'key_cert_sign'
    CRL_SIGN = 'crl_sign'
    ENCIPHER_ONLY = 'encipher_only'
    DECIPHER_ONLY = 'decipher_only'


def _normalise_oid(oid: str) -> str:
    # accepts both asn1crypto extension names and dotted OIDs
    return x509.ExtensionId(oid).dotted


class CertificateExtension:
    """
    Require a certificate extension with an exact value.

    :param oid:
        Dotted OID of the extension, or its name in asn1crypto.
    :param expected_value:
        Expected value of the extension, either as an asn1crypto value or as
        the DER encoding thereof.
    """

    def __init__(self, oid: str, expected_value: Union[bytes, core.Asn1Value]):
        self._oid = _normalise_oid(oid)
        if isinstance(expected_value, core.Asn1Value):
            expected_value = expected_value.dump()
        self._expected_value = bytes(expected_value)

    @property
    def oid(self) -> str:
        return self._oid

    @property
    def expected_value(self) -> bytes:
        return self._expected_value

    @property
    def name(self) -> str:
        return x509.ExtensionId.map(self._oid)

    def describe(self) -> str:
        return f"{self.name} = {self._expected_value.hex()}"

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        ext = cert_extension(certificate, self._oid)
        if ext is None:
            return False
        return extension_value_bytes(ext) == self._expected_value

    def bind_chain_position(self, position: int) -> 'CertificateExtension':
        """
        Return the predicate to apply to the certificate at the given
        position in the chain (the signer being at position 0).
        Only position-dependent predicates return something other than
        ``self``.
        """
        return self

    def _eq_key(self) -> Tuple:
        return type(self), self._oid, self._expected_value

    def __eq__(self, other):
        if not isinstance(other, CertificateExtension):
            return NotImplemented
        return self._eq_key() == other._eq_key()

    def __hash__(self):
        return hash(self._eq_key())

    def __repr__(self):
        return f"{type(self).__name__}({self.describe()})"

    def __str__(self):
        return self.describe()


def _as_key_usages(
    key_usages: Union[KeyUsage, Iterable[KeyUsage]]
) -> FrozenSet[KeyUsage]:
    if isinstance(key_usages, KeyUsage):
        return frozenset((key_usages,))
    return frozenset(KeyUsage(ku) for ku in key_usages)


class KeyUsageExtension(CertificateExtension):
    """
    Require a set of key usage bits to be present. Other bits set in the
    certificate are irrelevant.
    """

    def __init__(self, key_usages: Union[KeyUsage, Iterable[KeyUsage]]):
        self.key_usages = _as_key_usages(key_usages)
        super().__init__(
            KEY_USAGE_OID,
            x509.KeyUsage(set(ku.value for ku in self.key_usages)),
        )

    def describe(self) -> str:
        names = ', '.join(sorted(ku.value for ku in self.key_usages))
        return f"key_usage {{{names}}}"

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        key_usage = certificate.key_usage_value
        if key_usage is None:
            return False
        granted = key_usage.native
        return all(ku.value in granted for ku in self.key_usages)


class ExtendedKeyUsageExtension(CertificateExtension):
    """
    Require a set of extended key usage purposes to be present.
    A certificate that lists ``anyExtendedKeyUsage`` satisfies any request.
    """

    def __init__(self, key_purposes: Iterable[str]):
        self.key_purposes = frozenset(
            x509.KeyPurposeId(kp).dotted for kp in key_purposes
        )
        super().__init__(
            EXTENDED_KEY_USAGE_OID,
            x509.ExtKeyUsageSyntax(sorted(self.key_purposes)),
        )

    def describe(self) -> str:
        names = ', '.join(
            x509.KeyPurposeId.map(kp) for kp in sorted(self.key_purposes)
        )
        return f"extended_key_usage {{{names}}}"

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        eku = certificate.extended_key_usage_value
        if eku is None:
            return False
        granted = {purpose.dotted for purpose in eku}
        if ANY_EXTENDED_KEY_USAGE in granted:
            return True
        return self.key_purposes <= granted


class BasicConstraintsExtension(CertificateExtension):
    """
    Require the basic constraints extension to be present.

    A boolean requirement is compared with the CA flag of the certificate.
    An integer requirement asks for a CA certificate with an explicit path
    length constraint that allows at least that many intermediate CAs
    below it.

    .. note::
        :attr:`NOT_SET` only requires the extension to be present.
        A certificate without the basic constraints extension never
        satisfies this predicate, whatever the requirement; callers that do
        not care about basic constraints must not register the predicate
        at all.
    """

    NOT_SET = -2

    def __init__(self, requirement: Union[bool, int]):
        if isinstance(requirement, bool):
            self.requires_ca = requirement
            self.path_length = None
            value = {'ca': requirement}
        else:
            if requirement < 0 and requirement != self.NOT_SET:
                raise ValueError(
                    f"Path length requirement must be nonnegative, "
                    f"not {requirement}."
                )
            self.requires_ca = None
            self.path_length = requirement
            value = (
                {'ca': True}
                if requirement == self.NOT_SET
                else {'ca': True, 'path_len_constraint': requirement}
            )
        super().__init__(BASIC_CONSTRAINTS_OID, x509.BasicConstraints(value))

    def describe(self) -> str:
        if self.requires_ca is not None:
            return f"basic_constraints {{ca: {self.requires_ca}}}"
        elif self.path_length == self.NOT_SET:
            return "basic_constraints {present}"
        return f"basic_constraints {{path_len >= {self.path_length}}}"

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        bc = certificate.basic_constraints_value
        if bc is None:
            return False
        is_ca = bool(bc['ca'].native)
        if self.requires_ca is not None:
            return is_ca == self.requires_ca
        if self.path_length == self.NOT_SET:
            return True
        path_len = bc['path_len_constraint'].native
        return is_ca and path_len is not None and path_len >= self.path_length


class DynamicBasicConstraintsExtension(CertificateExtension):
    """
    Require a CA certificate whose path length constraint, if any,
    accommodates the number of CA certificates that sit below it in the
    chain being validated.

    :param certificate_chain_size:
        Position of the certificate in the chain, the signer being at
        position 0.
    """

    def __init__(self, certificate_chain_size: int = 0):
        self.certificate_chain_size = certificate_chain_size
        super().__init__(
            BASIC_CONSTRAINTS_OID, x509.BasicConstraints({'ca': True})
        )

    def describe(self) -> str:
        return (
            f"basic_constraints {{ca: True, "
            f"path_len >= {max(self.certificate_chain_size - 1, 0)}}}"
        )

    def bind_chain_position(self, position: int) -> CertificateExtension:
        return DynamicBasicConstraintsExtension(position)

    def exists_in_certificate(self, certificate: x509.Certificate) -> bool:
        bc = certificate.basic_constraints_value
        if bc is None or not bc['ca'].native:
            return False
        path_len = bc['path_len_constraint'].native
        return path_len is None or path_len >= self.certificate_chain_size - 1

    def _eq_key(self) -> Tuple:
        return super()._eq_key() + (self.certificate_chain_size,)
