import pytest
from asn1crypto import core

from certchain.extensions import (
    ANY_EXTENDED_KEY_USAGE,
    CODE_SIGNING,
    OCSP_SIGNING,
    TIME_STAMPING,
    BasicConstraintsExtension,
    CertificateExtension,
    DynamicBasicConstraintsExtension,
    ExtendedKeyUsageExtension,
    KeyUsage,
    KeyUsageExtension,
)

from .common import PKI, issue

SIGNER = PKI.signer.cert
ROOT = PKI.root.cert
INTERM = PKI.interm.cert
RESPONDER = PKI.responder.cert
NO_EXTENSIONS = issue('Bare', ca=None).cert


def test_key_usage_subset():
    assert KeyUsageExtension(KeyUsage.NON_REPUDIATION).exists_in_certificate(
        SIGNER
    )
    assert KeyUsageExtension(
        [KeyUsage.NON_REPUDIATION, KeyUsage.DIGITAL_SIGNATURE]
    ).exists_in_certificate(SIGNER)


def test_key_usage_missing_bit():
    ext = KeyUsageExtension([KeyUsage.NON_REPUDIATION, KeyUsage.KEY_CERT_SIGN])
    assert not ext.exists_in_certificate(SIGNER)


def test_key_usage_absent():
    assert not KeyUsageExtension(
        KeyUsage.DIGITAL_SIGNATURE
    ).exists_in_certificate(NO_EXTENSIONS)


def test_eku():
    assert ExtendedKeyUsageExtension([OCSP_SIGNING]).exists_in_certificate(
        RESPONDER
    )
    assert not ExtendedKeyUsageExtension(
        [OCSP_SIGNING, TIME_STAMPING]
    ).exists_in_certificate(RESPONDER)
    assert not ExtendedKeyUsageExtension([OCSP_SIGNING]).exists_in_certificate(
        SIGNER
    )


def test_eku_by_name():
    ext = ExtendedKeyUsageExtension(['ocsp_signing'])
    assert ext.key_purposes == frozenset([OCSP_SIGNING])
    assert ext.exists_in_certificate(RESPONDER)


def test_any_eku_satisfies_everything():
    cert = issue('Anything goes', eku=(ANY_EXTENDED_KEY_USAGE,)).cert
    assert ExtendedKeyUsageExtension(
        [CODE_SIGNING, TIME_STAMPING]
    ).exists_in_certificate(cert)


def test_basic_constraints_bool():
    assert BasicConstraintsExtension(True).exists_in_certificate(ROOT)
    assert not BasicConstraintsExtension(True).exists_in_certificate(SIGNER)
    assert BasicConstraintsExtension(False).exists_in_certificate(SIGNER)
    assert not BasicConstraintsExtension(False).exists_in_certificate(ROOT)


def test_basic_constraints_path_length():
    # intermediate has pathLen 0, root has no constraint
    assert BasicConstraintsExtension(0).exists_in_certificate(INTERM)
    assert not BasicConstraintsExtension(1).exists_in_certificate(INTERM)
    assert not BasicConstraintsExtension(0).exists_in_certificate(ROOT)


def test_basic_constraints_not_set():
    ext = BasicConstraintsExtension(BasicConstraintsExtension.NOT_SET)
    assert ext.exists_in_certificate(SIGNER)
    assert ext.exists_in_certificate(ROOT)


@pytest.mark.parametrize(
    'requirement',
    [True, False, 0, BasicConstraintsExtension.NOT_SET],
)
def test_basic_constraints_absent_never_satisfied(requirement):
    ext = BasicConstraintsExtension(requirement)
    assert not ext.exists_in_certificate(NO_EXTENSIONS)


def test_basic_constraints_negative_path_length():
    with pytest.raises(ValueError):
        BasicConstraintsExtension(-1)


def test_dynamic_basic_constraints():
    ext = DynamicBasicConstraintsExtension()
    # position 1: directly above the signer, no CA below
    assert ext.bind_chain_position(1).exists_in_certificate(INTERM)
    # position 2: one CA below, pathLen 0 does not allow that
    assert not ext.bind_chain_position(2).exists_in_certificate(INTERM)
    assert ext.bind_chain_position(5).exists_in_certificate(ROOT)
    assert not ext.bind_chain_position(1).exists_in_certificate(SIGNER)


def test_bind_chain_position_static():
    ext = KeyUsageExtension(KeyUsage.KEY_CERT_SIGN)
    assert ext.bind_chain_position(3) is ext


def test_generic_extension_exact_match():
    ext = CertificateExtension('ocsp_no_check', core.Null())
    assert ext.exists_in_certificate(RESPONDER)
    assert not ext.exists_in_certificate(SIGNER)
    other = CertificateExtension('1.3.6.1.5.5.7.48.1.5', b'\x05\x00')
    assert other == ext
    assert hash(other) == hash(ext)


def test_generic_extension_value_mismatch():
    ext = CertificateExtension('ocsp_no_check', b'\x04\x00')
    assert not ext.exists_in_certificate(RESPONDER)


def test_equality():
    assert KeyUsageExtension(KeyUsage.CRL_SIGN) == KeyUsageExtension(
        [KeyUsage.CRL_SIGN]
    )
    assert KeyUsageExtension(KeyUsage.CRL_SIGN) != KeyUsageExtension(
        KeyUsage.KEY_CERT_SIGN
    )
    assert DynamicBasicConstraintsExtension(1) != (
        DynamicBasicConstraintsExtension(2)
    )


def test_describe():
    assert str(KeyUsageExtension(KeyUsage.CRL_SIGN)) == 'key_usage {crl_sign}'
    assert 'ocsp_signing' in ExtendedKeyUsageExtension([OCSP_SIGNING]).describe()
