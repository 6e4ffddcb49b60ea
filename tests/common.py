"""
On-the-fly test PKI.

Certificates, CRLs and OCSP responses are produced with the builders from
``cryptography``, and handed to the code under test as ``asn1crypto``
objects or DER bytes.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Tuple

from asn1crypto import crl, ocsp, x509
from cryptography import x509 as cx509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509 import ocsp as cocsp
from cryptography.x509.oid import AuthorityInformationAccessOID, NameOID

from certchain.context import (
    CertificateOrigin,
    TimeMode,
    ValidationContext,
    ValidatorStage,
)
from certchain.extensions import OCSP_SIGNING

UTC = timezone.utc
VALIDATION_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

ROOT_CRL_URL = 'http://crl.example.com/root.crl'
INTERM_CRL_URL = 'http://crl.example.com/interm.crl'
OCSP_URL = 'http://ocsp.example.com'
CA_ISSUERS_URL = 'http://certs.example.com/interm.cer'

VALIDITY_ASSURED_SHORT_TERM_OID = '0.4.0.194121.2.1'


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def signer_context(time_mode=TimeMode.PRESENT) -> ValidationContext:
    return ValidationContext(
        validator_stage=ValidatorStage.SIGNATURE,
        certificate_origin=CertificateOrigin.SIGNER_CERT,
        time_mode=time_mode,
    )


def _name(common_name: str) -> cx509.Name:
    return cx509.Name(
        [
            cx509.NameAttribute(NameOID.ORGANIZATION_NAME, 'Certchain Test'),
            cx509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def _key_usage(names: Iterable[str]) -> cx509.KeyUsage:
    names = set(names)
    return cx509.KeyUsage(
        digital_signature='digital_signature' in names,
        content_commitment='non_repudiation' in names,
        key_encipherment='key_encipherment' in names,
        data_encipherment='data_encipherment' in names,
        key_agreement='key_agreement' in names,
        key_cert_sign='key_cert_sign' in names,
        crl_sign='crl_sign' in names,
        encipher_only=False,
        decipher_only=False,
    )


@dataclass(frozen=True)
class Issued:
    key: ec.EllipticCurvePrivateKey
    crypto_cert: cx509.Certificate

    @property
    def der(self) -> bytes:
        return self.crypto_cert.public_bytes(serialization.Encoding.DER)

    @property
    def pem(self) -> bytes:
        return self.crypto_cert.public_bytes(serialization.Encoding.PEM)

    @property
    def cert(self) -> x509.Certificate:
        return x509.Certificate.load(self.der)

    @property
    def serial_number(self) -> int:
        return self.crypto_cert.serial_number


def issue(
    common_name: str,
    *,
    issuer: Optional[Issued] = None,
    not_before: datetime = utc(2023, 1, 1),
    not_after: datetime = utc(2034, 1, 1),
    ca: Optional[bool] = False,
    path_length: Optional[int] = None,
    key_usage: Sequence[str] = (),
    eku: Sequence[str] = (),
    ocsp_nocheck: bool = False,
    crl_url: Optional[str] = None,
    ocsp_url: Optional[str] = None,
    ca_issuers_url: Optional[str] = None,
    extra_extensions: Sequence[cx509.ExtensionType] = (),
    forge_signature: bool = False,
    key: Optional[ec.EllipticCurvePrivateKey] = None,
) -> Issued:
    """
    Issue a certificate. Without an issuer, the certificate is self-signed.
    Pass ``ca=None`` to omit the basic constraints extension.
    With ``forge_signature``, the certificate names the issuer, but is
    signed with an unrelated key. Pass ``key`` to reuse an existing key pair.
    """
    key = key or ec.generate_private_key(ec.SECP256R1())
    subject = _name(common_name)
    if issuer is None:
        issuer_name, signing_key = subject, key
    else:
        issuer_name, signing_key = issuer.crypto_cert.subject, issuer.key
    builder = (
        cx509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(cx509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(
            cx509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
        .add_extension(
            cx509.AuthorityKeyIdentifier.from_issuer_public_key(
                signing_key.public_key()
            ),
            critical=False,
        )
    )
    if ca is not None:
        builder = builder.add_extension(
            cx509.BasicConstraints(ca=ca, path_length=path_length),
            critical=True,
        )
    if key_usage:
        builder = builder.add_extension(_key_usage(key_usage), critical=True)
    if eku:
        builder = builder.add_extension(
            cx509.ExtendedKeyUsage([cx509.ObjectIdentifier(o) for o in eku]),
            critical=False,
        )
    if ocsp_nocheck:
        builder = builder.add_extension(cx509.OCSPNoCheck(), critical=False)
    if crl_url:
        builder = builder.add_extension(
            cx509.CRLDistributionPoints(
                [
                    cx509.DistributionPoint(
                        full_name=[cx509.UniformResourceIdentifier(crl_url)],
                        relative_name=None,
                        reasons=None,
                        crl_issuer=None,
                    )
                ]
            ),
            critical=False,
        )
    access_descriptions = []
    if ocsp_url:
        access_descriptions.append(
            cx509.AccessDescription(
                AuthorityInformationAccessOID.OCSP,
                cx509.UniformResourceIdentifier(ocsp_url),
            )
        )
    if ca_issuers_url:
        access_descriptions.append(
            cx509.AccessDescription(
                AuthorityInformationAccessOID.CA_ISSUERS,
                cx509.UniformResourceIdentifier(ca_issuers_url),
            )
        )
    if access_descriptions:
        builder = builder.add_extension(
            cx509.AuthorityInformationAccess(access_descriptions),
            critical=False,
        )
    for ext in extra_extensions:
        builder = builder.add_extension(ext, critical=False)
    if forge_signature:
        signing_key = ec.generate_private_key(ec.SECP256R1())
    return Issued(key=key, crypto_cert=builder.sign(signing_key, hashes.SHA256()))


def short_term_extension() -> cx509.ExtensionType:
    return cx509.UnrecognizedExtension(
        cx509.ObjectIdentifier(VALIDITY_ASSURED_SHORT_TERM_OID), b'\x05\x00'
    )


def make_crl(
    issuer: Issued,
    *,
    this_update: datetime = utc(2024, 5, 31),
    next_update: Optional[datetime] = utc(2024, 6, 7),
    revoked: Iterable[Tuple[int, datetime, Optional[cx509.ReasonFlags]]] = (),
    extensions: Sequence[Tuple[cx509.ExtensionType, bool]] = (),
    signing_key: Optional[ec.EllipticCurvePrivateKey] = None,
) -> bytes:
    builder = (
        cx509.CertificateRevocationListBuilder()
        .issuer_name(issuer.crypto_cert.subject)
        .last_update(this_update)
        .add_extension(cx509.CRLNumber(1), critical=False)
        .add_extension(
            cx509.AuthorityKeyIdentifier.from_issuer_public_key(
                issuer.key.public_key()
            ),
            critical=False,
        )
    )
    if next_update is not None:
        builder = builder.next_update(next_update)
    for serial, revocation_date, reason in revoked:
        entry = (
            cx509.RevokedCertificateBuilder()
            .serial_number(serial)
            .revocation_date(revocation_date)
        )
        if reason is not None:
            entry = entry.add_extension(
                cx509.CRLReason(reason), critical=False
            )
        builder = builder.add_revoked_certificate(entry.build())
    for ext, critical in extensions:
        builder = builder.add_extension(ext, critical=critical)
    result = builder.sign(signing_key or issuer.key, hashes.SHA256())
    return result.public_bytes(serialization.Encoding.DER)


def load_crl(data: bytes) -> crl.CertificateList:
    return crl.CertificateList.load(data)


def make_ocsp_response(
    subject: Issued,
    issuer: Issued,
    responder: Issued,
    *,
    status: str = 'good',
    this_update: datetime = utc(2024, 6, 1),
    next_update: Optional[datetime] = utc(2024, 6, 8),
    revocation_time: Optional[datetime] = None,
    revocation_reason: Optional[cx509.ReasonFlags] = None,
    include_responder_cert: bool = True,
    responder_by_name: bool = False,
) -> bytes:
    cert_status = {
        'good': cocsp.OCSPCertStatus.GOOD,
        'revoked': cocsp.OCSPCertStatus.REVOKED,
        'unknown': cocsp.OCSPCertStatus.UNKNOWN,
    }[status]
    builder = (
        cocsp.OCSPResponseBuilder()
        .add_response(
            cert=subject.crypto_cert,
            issuer=issuer.crypto_cert,
            algorithm=hashes.SHA1(),
            cert_status=cert_status,
            this_update=this_update,
            next_update=next_update,
            revocation_time=revocation_time,
            revocation_reason=revocation_reason,
        )
        .responder_id(
            cocsp.OCSPResponderEncoding.NAME
            if responder_by_name
            else cocsp.OCSPResponderEncoding.HASH,
            responder.crypto_cert,
        )
    )
    if include_responder_cert and responder is not issuer:
        builder = builder.certificates([responder.crypto_cert])
    response = builder.sign(responder.key, hashes.SHA256())
    return response.public_bytes(serialization.Encoding.DER)


def parse_ocsp(
    data: bytes,
) -> Tuple[ocsp.SingleResponse, ocsp.BasicOCSPResponse]:
    basic_response = ocsp.OCSPResponse.load(data).basic_ocsp_response
    (single_response,) = basic_response['tbs_response_data']['responses']
    return single_response, basic_response


class SimplePKI:
    """
    A root, an intermediate CA, an end-entity signer and a delegated OCSP
    responder issued by the intermediate.
    """

    def __init__(self):
        self.root = issue(
            'Certchain Test Root',
            not_before=utc(2020, 1, 1),
            not_after=utc(2040, 1, 1),
            ca=True,
            key_usage=('key_cert_sign', 'crl_sign'),
        )
        self.interm = issue(
            'Certchain Test Intermediate',
            issuer=self.root,
            not_before=utc(2021, 1, 1),
            not_after=utc(2035, 1, 1),
            ca=True,
            path_length=0,
            key_usage=('key_cert_sign', 'crl_sign'),
            crl_url=ROOT_CRL_URL,
        )
        self.signer = issue(
            'Alice',
            issuer=self.interm,
            key_usage=('digital_signature', 'non_repudiation'),
            crl_url=INTERM_CRL_URL,
            ocsp_url=OCSP_URL,
            ca_issuers_url=CA_ISSUERS_URL,
        )
        self.responder = issue(
            'Certchain Test OCSP Responder',
            issuer=self.interm,
            key_usage=('digital_signature',),
            eku=(OCSP_SIGNING,),
            ocsp_nocheck=True,
        )

    def root_crl(self, **kwargs) -> bytes:
        return make_crl(self.root, **kwargs)

    def interm_crl(self, **kwargs) -> bytes:
        return make_crl(self.interm, **kwargs)

    def signer_ocsp(self, responder: Optional[Issued] = None, **kwargs):
        return make_ocsp_response(
            self.signer, self.interm, responder or self.responder, **kwargs
        )


PKI = SimplePKI()
