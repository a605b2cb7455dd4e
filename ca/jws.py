"""
JWK / JWS utilities for the ACME protocol (RFC 8555, RFC 7515, RFC 7638).

Uses *josepy* for the JWK side: the public JWK members and the RFC 7638
thumbprint.  Signing stays here because ACME wants the raw r || s form.

Responsibilities (boundary with ca/keystore.py, which owns key I/O):
  - Public JWK for an EC P-256 account key
  - JWK thumbprint and DNS-01 key-authorization digest
  - Sign ACME POST bodies as flattened JWS (jwk header for newAccount,
    kid header for everything after)
"""
from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

from josepy.jwk import JWKEC
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

ALG = "ES256"
COORDINATE_SIZE = 32


# ─── JWK ──────────────────────────────────────────────────────────────────────


def account_jwk(key: ec.EllipticCurvePrivateKey) -> JWKEC:
    """Wrap a P-256 private key in a josepy JWKEC."""
    if not isinstance(key.curve, ec.SECP256R1):
        raise ValueError(f"Unsupported account key curve: {key.curve.name}")
    return JWKEC(key=key)


def public_jwk(key: ec.EllipticCurvePrivateKey) -> dict[str, str]:
    """Return the public JWK of *key* as it goes into a newAccount header."""
    jwk = account_jwk(key).public_key().fields_to_partial_json()
    jwk["kty"] = "EC"
    return jwk


def compute_jwk_thumbprint(key: ec.EllipticCurvePrivateKey) -> str:
    """base64url SHA-256 thumbprint of the public JWK (RFC 7638)."""
    return b64url(account_jwk(key).thumbprint(hash_function=hashes.SHA256))


def compute_key_authorization(token: str, key: ec.EllipticCurvePrivateKey) -> str:
    return f"{token}.{compute_jwk_thumbprint(key)}"


def compute_dns_txt_value(key_authorization: str) -> str:
    """Return base64url(SHA-256(key_authorization)) with no padding (RFC 8555 §8.4)."""
    digest = hashlib.sha256(key_authorization.encode("ascii")).digest()
    return b64url(digest)


def dns01_record_value(token: str, key: ec.EllipticCurvePrivateKey) -> str:
    return compute_dns_txt_value(compute_key_authorization(token, key))


# ─── JWS signing ─────────────────────────────────────────────────────────────


def sign_request(
    payload: dict | None,
    account_key: ec.EllipticCurvePrivateKey,
    nonce: str,
    url: str,
    account_url: str | None = None,
) -> dict:
    """
    Sign an ACME request payload and return the JWS dict to POST.

    If *account_url* is None the protected header carries the full JWK (used
    for newAccount); otherwise it carries the "kid" form.  A None payload
    produces the empty string payload used for POST-as-GET.
    """
    jwk = account_jwk(account_key)
    header: dict[str, Any] = {
        "alg": ALG,
        "nonce": nonce,
        "url": url,
    }
    if account_url:
        header["kid"] = account_url
    else:
        header["jwk"] = public_jwk(account_key)

    protected = b64url(json.dumps(header).encode())
    payload_b64 = "" if payload is None else b64url(json.dumps(payload).encode())

    signing_input = f"{protected}.{payload_b64}".encode()
    return {
        "protected": protected,
        "payload": payload_b64,
        "signature": b64url(_sign_ec(jwk, signing_input)),
    }


# ─── Internal helpers ─────────────────────────────────────────────────────────


def b64url(data: bytes) -> str:
    """URL-safe base64 encoding with no padding (as required by JOSE)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def b64url_decode(s: str) -> bytes:
    """URL-safe base64 decode, adding padding as needed."""
    pad = 4 - len(s) % 4
    if pad != 4:
        s += "=" * pad
    return base64.urlsafe_b64decode(s)


def _sign_ec(jwk: JWKEC, data: bytes) -> bytes:
    """ECDSA P-256 signature in the fixed-width r || s form JWS expects, not DER."""
    r, s = decode_dss_signature(jwk.key.sign(data, ec.ECDSA(hashes.SHA256())))
    return r.to_bytes(COORDINATE_SIZE, "big") + s.to_bytes(COORDINATE_SIZE, "big")
