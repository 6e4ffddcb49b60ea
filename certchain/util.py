from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Generic, Iterator, List, Optional, TypeVar

from asn1crypto import algos, core, crl, ocsp, x509
from asn1crypto.keys import PublicKeyInfo
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import (
    dsa,
    ec,
    ed448,
    ed25519,
    padding,
    rsa,
)

from .errors import (
    DSAParametersUnavailable,
    PSSParameterMismatch,
    SignatureVerificationError,
)

logger = logging.getLogger(__name__)


def is_self_signed(cert: x509.Certificate) -> bool:
    # asn1crypto reports 'maybe' when the names match but the key
    # identifiers are missing, so we check the signature in that case
    self_signed = cert.self_signed
    if self_signed == 'no':
        return False
    return verify_certificate_signature(cert, cert)


def is_ca(cert: x509.Certificate) -> bool:
    bc = cert.basic_constraints_value
    return bc is not None and bool(bc['ca'].native)


def find_extension(extensions, oid: str) -> Optional[x509.Extension]:
    """
    Look up an extension by its dotted OID in an extension list
    (of a certificate, a CRL or an OCSP response).
    """

    if extensions is None or isinstance(extensions, core.Void):
        return None
    for ext in extensions:
        if ext['extn_id'].dotted == oid:
            return ext
    return None


def cert_extension(cert: x509.Certificate, oid: str):
    return find_extension(cert['tbs_certificate']['extensions'], oid)


def extension_value_bytes(ext) -> bytes:
    return bytes(ext['extn_value'])


def issuer_name_hash(cert: x509.Certificate, hash_algo: str) -> bytes:
    return hashlib.new(hash_algo, cert.issuer.dump()).digest()


def public_key_hash(cert: x509.Certificate, hash_algo: str) -> bytes:
    # same definition as PublicKeyInfo.sha1, i.e. over the key bits only
    key_bits = bytes(cert.public_key['public_key'])
    return hashlib.new(hash_algo, key_bits).digest()


def _get_http_aia_urls(aia_ext, access_method: str):
    if aia_ext is None:
        return

    for entry in aia_ext:
        # compare x509.Certificate.ocsp_urls
        if entry['access_method'].native == access_method:
            location = entry['access_location']
            if location.name != 'uniform_resource_identifier':
                continue
            url = location.native
            if url.lower().startswith(
                (
                    'http://',
                    'https://',
                )
            ):
                yield url


def get_ocsp_urls(cert: x509.Certificate) -> List[str]:
    return list(
        _get_http_aia_urls(cert.authority_information_access_value, 'ocsp')
    )


def get_ca_issuer_urls(cert: x509.Certificate) -> List[str]:
    return list(
        _get_http_aia_urls(
            cert.authority_information_access_value, 'ca_issuers'
        )
    )


def get_crl_urls(cert: x509.Certificate) -> List[str]:
    # asn1crypto only keeps distribution points with absolute HTTP(S) URLs
    urls = []
    for dp in cert.crl_distribution_points:
        dp_name = dp['distribution_point']
        if isinstance(dp_name, core.Void):
            continue
        for general_name in dp_name.chosen:
            if general_name.name != 'uniform_resource_identifier':
                continue
            url = general_name.native
            if url.lower().startswith(('http://', 'https://')):
                urls.append(url)
    return urls


def validate_sig(
    signature: bytes,
    signed_data: bytes,
    public_key_info: PublicKeyInfo,
    sig_algo: str,
    hash_algo: str,
    parameters=None,
):
    if (
        sig_algo == 'dsa'
        and public_key_info['algorithm']['parameters'].native is None
    ):
        raise DSAParametersUnavailable(
            "DSA public key parameters were not provided."
        )

    # pyca/cryptography can't load PSS-exclusive keys without some help:
    if public_key_info.algorithm == 'rsassa_pss':
        public_key_info = public_key_info.copy()
        assert isinstance(parameters, algos.RSASSAPSSParams)
        pss_key_params = public_key_info['algorithm']['parameters'].native
        if pss_key_params is not None and pss_key_params != parameters.native:
            raise PSSParameterMismatch(
                "Public key info includes PSS parameters that do not match "
                "those on the signature"
            )
        # set key type to generic RSA, discard parameters
        public_key_info['algorithm'] = {'algorithm': 'rsa'}

    pub_key = serialization.load_der_public_key(public_key_info.dump())

    if sig_algo == 'rsassa_pkcs1v15':
        assert isinstance(pub_key, rsa.RSAPublicKey)
        h = getattr(hashes, hash_algo.upper())()
        pub_key.verify(signature, signed_data, padding.PKCS1v15(), h)
    elif sig_algo == 'rsassa_pss':
        assert isinstance(pub_key, rsa.RSAPublicKey)
        assert isinstance(parameters, algos.RSASSAPSSParams)
        mga: algos.MaskGenAlgorithm = parameters['mask_gen_algorithm']
        if not mga['algorithm'].native == 'mgf1':
            raise NotImplementedError("Only MFG1 is supported")

        mgf_md_name = mga['parameters']['algorithm'].native

        salt_len: int = parameters['salt_length'].native

        mgf_md = getattr(hashes, mgf_md_name.upper())()
        pss_padding = padding.PSS(
            mgf=padding.MGF1(algorithm=mgf_md), salt_length=salt_len
        )
        hash_spec = getattr(hashes, hash_algo.upper())()
        pub_key.verify(signature, signed_data, pss_padding, hash_spec)
    elif sig_algo == 'dsa':
        assert isinstance(pub_key, dsa.DSAPublicKey)
        hash_spec = getattr(hashes, hash_algo.upper())()
        pub_key.verify(signature, signed_data, hash_spec)
    elif sig_algo == 'ecdsa':
        assert isinstance(pub_key, ec.EllipticCurvePublicKey)
        hash_spec = getattr(hashes, hash_algo.upper())()
        pub_key.verify(signature, signed_data, ec.ECDSA(hash_spec))
    elif sig_algo == 'ed25519':
        assert isinstance(pub_key, ed25519.Ed25519PublicKey)
        pub_key.verify(signature, signed_data)
    elif sig_algo == 'ed448':
        assert isinstance(pub_key, ed448.Ed448PublicKey)
        pub_key.verify(signature, signed_data)
    else:  # pragma: nocover
        raise NotImplementedError(
            f"Signature mechanism {sig_algo} is not supported."
        )


def _verify(
    signature: bytes,
    signed_data: bytes,
    public_key_info: PublicKeyInfo,
    sig_algo_id: algos.SignedDigestAlgorithm,
) -> bool:
    try:
        validate_sig(
            signature,
            signed_data,
            public_key_info,
            sig_algo_id.signature_algo,
            sig_algo_id.hash_algo,
            parameters=sig_algo_id['parameters'],
        )
    except (InvalidSignature, SignatureVerificationError) as e:
        logger.debug("Signature verification failed: %s", e)
        return False
    except (AssertionError, ValueError, TypeError) as e:
        # key type does not match the signature mechanism,
        # or garbage in the key/signature
        logger.debug("Signature could not be processed: %s", e)
        return False
    return True


def verify_certificate_signature(
    cert: x509.Certificate, issuer: x509.Certificate
) -> bool:
    return _verify(
        cert['signature_value'].native,
        cert['tbs_certificate'].dump(),
        issuer.public_key,
        cert['signature_algorithm'],
    )


def verify_crl_signature(
    certificate_list: crl.CertificateList, issuer: x509.Certificate
) -> bool:
    return _verify(
        certificate_list['signature'].native,
        certificate_list['tbs_cert_list'].dump(),
        issuer.public_key,
        certificate_list['signature_algorithm'],
    )


def verify_ocsp_signature(
    basic_response: ocsp.BasicOCSPResponse, responder: x509.Certificate
) -> bool:
    return _verify(
        basic_response['signature'].native,
        basic_response['tbs_response_data'].dump(),
        responder.public_key,
        basic_response['signature_algorithm'],
    )


ListElem = TypeVar('ListElem')


@dataclass(frozen=True)
class ConsList(Generic[ListElem]):
    head: Optional[ListElem]
    tail: Optional[ConsList[ListElem]] = None

    @staticmethod
    def empty() -> ConsList[ListElem]:
        return ConsList(head=None)

    @staticmethod
    def sing(value: ListElem) -> ConsList[ListElem]:
        return ConsList(value, ConsList.empty())

    def __iter__(self) -> Iterator[ListElem]:
        cur = self
        while cur.head is not None:
            yield cur.head
            cur = cur.tail

    def __len__(self):
        return sum(1 for _ in self)

    def cons(self, head: ListElem) -> ConsList[ListElem]:
        return ConsList(head, self)

    def __repr__(self):  # pragma: nocover
        return f"ConsList({list(reversed(list(self)))})"

    def __bool__(self):
        return self.head is not None
