"""
CSR creation and certificate-chain encoding.

Boundary: this module owns everything cryptographic that is *certificate*-specific.
Key storage lives in ca/keystore.py, account-key signing in ca/jws.py.
"""
from __future__ import annotations

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID


def create_csr(private_key: ec.EllipticCurvePrivateKey, domains: list[str]) -> bytes:
    """
    Create a DER-encoded CSR for an ordered domain set.

    The Common Name is domains[0]; every domain, in order, is a
    SubjectAlternativeName.
    """
    if not domains:
        raise ValueError("cannot build a CSR for an empty domain set")
    all_domains = list(dict.fromkeys(domains))  # deduplicate, preserve order

    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, all_domains[0])])
        )
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in all_domains]),
            critical=False,
        )
    )

    csr = builder.sign(private_key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.DER)


def der_chain_to_pem(der_chain: list[bytes]) -> bytes:
    """PEM-encode each DER certificate and concatenate them in the order given."""
    return b"".join(
        x509.load_der_x509_certificate(der).public_bytes(serialization.Encoding.PEM)
        for der in der_chain
    )


def pem_chain_to_der(pem_chain: bytes) -> list[bytes]:
    """Split a PEM chain (leaf first) into DER certificates, keeping their order."""
    return [
        cert.public_bytes(serialization.Encoding.DER)
        for cert in x509.load_pem_x509_certificates(pem_chain)
    ]
