"""
Convenience functions to load certificates, CRLs and OCSP responses from
PEM or DER files.
"""

from typing import Iterable, Iterator

from asn1crypto import crl, ocsp, pem, x509

__all__ = [
    'load_cert_from_pemder',
    'load_certs_from_pemder',
    'load_certs_from_pemder_data',
    'load_crls_from_pemder',
    'load_ocsp_responses_from_pemder',
]


def _unarmor(data: bytes, accepted_types) -> Iterator[bytes]:
    # use the pattern from the asn1crypto docs
    # to distinguish PEM/DER and read multiple objects
    # from one PEM file (if necessary)
    if pem.detect(data):
        for type_name, _, der in pem.unarmor(data, multiple=True):
            if type_name is None or type_name.lower() in accepted_types:
                yield der
    else:
        # no need to unarmor
        yield data


def _read_all(file_names: Iterable[str]) -> Iterator[bytes]:
    for file_name in file_names:
        with open(file_name, 'rb') as f:
            yield f.read()


def load_certs_from_pemder(cert_files: Iterable[str]):
    """
    A convenience function to load PEM/DER-encoded certificates from files.

    :param cert_files:
        An iterable of file names.
    :return:
        A generator producing :class:`.asn1crypto.x509.Certificate` objects.
    """
    for cert_data_bytes in _read_all(cert_files):
        yield from load_certs_from_pemder_data(cert_data_bytes)


def load_certs_from_pemder_data(cert_data_bytes: bytes):
    """
    A convenience function to load PEM/DER-encoded certificates from
    binary data.

    :param cert_data_bytes:
        ``bytes`` object from which to extract certificates.
    :return:
        A generator producing :class:`.asn1crypto.x509.Certificate` objects.
    """
    for der in _unarmor(cert_data_bytes, ('certificate',)):
        yield x509.Certificate.load(der)


def load_cert_from_pemder(cert_file: str) -> x509.Certificate:
    """
    A convenience function to load a single PEM/DER-encoded certificate
    from a file.

    :param cert_file:
        A file name.
    :return:
        An :class:`.asn1crypto.x509.Certificate` object.
    """
    certs = list(load_certs_from_pemder([cert_file]))
    if len(certs) != 1:
        raise ValueError(f"Number of certs in {cert_file} should be exactly 1")
    return certs[0]


def load_crls_from_pemder(crl_files: Iterable[str]):
    """
    Load PEM/DER-encoded CRLs from files.

    :return:
        A generator producing :class:`.asn1crypto.crl.CertificateList`
        objects.
    """
    for data in _read_all(crl_files):
        for der in _unarmor(data, ('x509 crl',)):
            yield crl.CertificateList.load(der)


def load_ocsp_responses_from_pemder(response_files: Iterable[str]):
    """
    Load OCSP responses from files. OCSP responses are usually distributed
    in DER form, but PEM armor is tolerated.

    :return:
        A generator producing :class:`.asn1crypto.ocsp.OCSPResponse`
        objects.
    """
    for data in _read_all(response_files):
        for der in _unarmor(data, ('ocsp response',)):
            yield ocsp.OCSPResponse.load(der)
