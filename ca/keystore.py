"""
Private-key store for the ACME account key and the certificate key.

Both keys follow the same policy: read the PEM at a fixed path; if it is
missing or unusable, generate a fresh EC P-256 key and write it with
owner-only permissions.  A readable, valid key is never regenerated.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from errors import KeyStoreError
from storage.filesystem import write_private_pem

logger = logging.getLogger(__name__)

KEY_PEM_TYPE = "EC PRIVATE KEY"

_PEM_LABEL = re.compile(rb"-----BEGIN ([A-Z0-9 ]+)-----")


def read_key(path: str | Path) -> ec.EllipticCurvePrivateKey:
    """Parse the P-256 private key at *path*; raises OSError or ValueError when unusable."""
    data = Path(path).read_bytes()
    match = _PEM_LABEL.search(data)
    if match is None:
        raise ValueError(f"Key block not found in {str(path)!r}")
    label = match.group(1).decode("ascii")
    if label != KEY_PEM_TYPE:
        raise ValueError(f"Key block type {label!r} is not supported")

    key = serialization.load_pem_private_key(data, password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ValueError(f"{str(path)!r} does not hold an EC private key")
    if not isinstance(key.curve, ec.SECP256R1):
        raise ValueError(f"{str(path)!r} holds a {key.curve.name} key, not P-256")
    return key


def key_to_pem(key: ec.EllipticCurvePrivateKey) -> bytes:
    # TraditionalOpenSSL is what produces the "EC PRIVATE KEY" label
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def generate_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def load_or_create_key(path: str | Path) -> ec.EllipticCurvePrivateKey:
    """
    Return the key stored at *path*, creating and persisting a new one if
    the file is missing or cannot be parsed.

    Raises KeyStoreError if a new key cannot be generated or written.
    """
    try:
        return read_key(path)
    except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as exc:
        logger.warning("Cannot use key at %s (%s); generating a new P-256 key", path, exc)

    try:
        key = generate_key()
        write_private_pem(Path(path), key_to_pem(key))
    except (OSError, ValueError) as exc:
        raise KeyStoreError(f"Failed to create key at {path}: {exc}") from exc

    logger.info("Wrote new P-256 key to %s", path)
    return key
