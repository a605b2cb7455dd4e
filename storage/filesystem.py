"""
Work-directory layout and PEM inspection for the certificate lifecycle.

Layout (flat, one directory per device):
  <work_dir>/
      account.key        ACME account key, EC P-256, mode 0o600
      account.json       registered ACME account, mode 0o600
      <primary>.key      certificate private key, mode 0o600
      <primary>.crt      PEM chain as returned by the CA, mode 0o644

All writes go through storage.atomic (temp file + fsync + rename).
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from cryptography import x509

from storage.atomic import atomic_write_bytes, atomic_write_text

logger = logging.getLogger(__name__)

ACCOUNT_KEY_FILENAME = "account.key"
ACCOUNT_FILENAME = "account.json"

PRIVATE_MODE = 0o600
PUBLIC_MODE = 0o644
DIRECTORY_MODE = 0o700


# ─── Paths ─────────────────────────────────────────────────────────────────────


def ensure_work_directory(work_dir: str | Path) -> Path:
    p = Path(work_dir)
    p.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
    return p


def account_key_path(work_dir: str | Path) -> Path:
    return Path(work_dir) / ACCOUNT_KEY_FILENAME


def account_path(work_dir: str | Path) -> Path:
    return Path(work_dir) / ACCOUNT_FILENAME


def cert_pair_paths(work_dir: str | Path, domains: list[str]) -> tuple[Path, Path]:
    """Return (certificate path, key path) for a domain set, named after its primary domain."""
    if not domains:
        raise ValueError("domain set must not be empty")
    # "*.example.com" must not produce a glob-looking file name
    primary = domains[0].replace("*.", "wildcard.").replace("/", "").replace("\\", "")
    base = Path(work_dir)
    return base / f"{primary}.crt", base / f"{primary}.key"


# ─── Writes ────────────────────────────────────────────────────────────────────


def write_private_pem(path: Path, pem: bytes) -> None:
    atomic_write_bytes(path, pem, mode=PRIVATE_MODE)


def write_account_json(path: Path, content: str) -> None:
    atomic_write_text(path, content, mode=PRIVATE_MODE)


def write_cert_chain(path: Path, chain_pem: bytes) -> None:
    atomic_write_bytes(path, chain_pem, mode=PUBLIC_MODE)


# ─── Certificate inspection ────────────────────────────────────────────────────


def load_leaf_certificate(path: Path) -> Optional[x509.Certificate]:
    """Return the first certificate in the PEM chain at *path*, or None if it is missing."""
    if not path.exists():
        return None
    return x509.load_pem_x509_certificate(path.read_bytes())


def parse_expiry(cert: x509.Certificate) -> datetime:
    """Return the notAfter field as a timezone-aware UTC datetime."""
    # cryptography >= 42 exposes .not_valid_after_utc (timezone-aware)
    try:
        return cert.not_valid_after_utc
    except AttributeError:
        return cert.not_valid_after.replace(tzinfo=timezone.utc)


def days_until_expiry(expiry: datetime, now: Optional[datetime] = None) -> int:
    """Return integer days until expiry (negative if already expired)."""
    now = now or datetime.now(tz=timezone.utc)
    return (expiry - now).days


def certificate_dns_names(cert: x509.Certificate) -> list[str]:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(x509.DNSName)
