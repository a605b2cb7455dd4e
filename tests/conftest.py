"""
Shared pytest fixtures.

FakeDnsProvider
---------------
An in-memory zone that implements the DnsProvider interface and records every
call, so reconciler, solver and controller tests can assert exactly which
provider calls were made.  Changes start "pending" and report "done" after
`polls_until_done` get_change calls.

RecordingContext
----------------
A polling.Context whose sleep() records the requested duration instead of
blocking, so a 300 s propagation wait costs nothing.  Cancellation and
deadline checks still run.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from polling import Context
from zone.provider import DnsProvider
from zone.records import CHANGE_DONE, CHANGE_PENDING, Change, RecordSet


# ─── Context ──────────────────────────────────────────────────────────────────


class RecordingContext(Context):
    def __init__(self, timeout: Optional[float] = None) -> None:
        super().__init__(timeout=timeout)
        self.sleeps: list[float] = []

    def sleep(self, seconds: float) -> None:
        self.raise_if_done()
        self.sleeps.append(seconds)


@pytest.fixture()
def ctx() -> RecordingContext:
    return RecordingContext()


# ─── DNS ──────────────────────────────────────────────────────────────────────


class FakeDnsProvider(DnsProvider):
    def __init__(self, records: Iterable[RecordSet] = (), polls_until_done: int = 1) -> None:
        self.records: list[RecordSet] = list(records)
        self.polls_until_done = polls_until_done
        self.calls: list[tuple] = []
        self.changes: list[Change] = []
        self.fail_on: Optional[str] = None
        self._polls: dict[str, int] = {}

    def list_record_sets(self, ctx, name, record_type):
        ctx.raise_if_done()
        self.calls.append(("list", name, record_type))
        self._maybe_fail("list")
        return [r for r in self.records if r.name == name and r.type == record_type]

    def create_change(self, ctx, additions, deletions):
        ctx.raise_if_done()
        additions, deletions = tuple(additions), tuple(deletions)
        self.calls.append(("create", additions, deletions))
        self._maybe_fail("create")
        for record in deletions:
            self.records.remove(record)
        self.records.extend(additions)
        status = CHANGE_DONE if self.polls_until_done == 0 else CHANGE_PENDING
        change = Change(id=str(len(self.changes) + 1), status=status, additions=additions, deletions=deletions)
        self.changes.append(change)
        self._polls[change.id] = 0
        return change

    def get_change(self, ctx, change_id):
        ctx.raise_if_done()
        self.calls.append(("get", change_id))
        self._maybe_fail("get")
        self._polls[change_id] += 1
        original = self.changes[int(change_id) - 1]
        status = CHANGE_DONE if self._polls[change_id] >= self.polls_until_done else CHANGE_PENDING
        return Change(id=change_id, status=status, additions=original.additions, deletions=original.deletions)

    def call_kinds(self) -> list[str]:
        return [c[0] for c in self.calls]

    def _maybe_fail(self, kind: str) -> None:
        if self.fail_on == kind:
            from errors import DnsProviderError
            raise DnsProviderError(f"simulated {kind} failure")


@pytest.fixture()
def dns_provider() -> FakeDnsProvider:
    return FakeDnsProvider()


# ─── Keys & certificates ──────────────────────────────────────────────────────


@pytest.fixture(scope="module")
def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def make_certificate(
    key: ec.EllipticCurvePrivateKey,
    domains: list[str],
    days: int = 90,
    issuer_key: Optional[ec.EllipticCurvePrivateKey] = None,
    issuer_cn: Optional[str] = None,
    not_before: Optional[datetime] = None,
) -> x509.Certificate:
    """Build a certificate for *domains*; self-signed unless issuer_key is given."""
    not_before = not_before or datetime.now(tz=timezone.utc) - timedelta(minutes=5)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, issuer_cn or domains[0])])
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]), critical=False)
        .sign(issuer_key or key, hashes.SHA256())
    )


def to_der(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.DER)


def to_pem(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


@pytest.fixture()
def work_dir(tmp_path: Path) -> Path:
    d = tmp_path / "certs"
    d.mkdir()
    return d


# ─── Settings ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def make_settings(work_dir: Path, monkeypatch):
    """Factory for Settings isolated from the developer's environment and .env."""
    from config import Settings

    for name in ("MANAGED_DOMAINS", "WORK_DIRECTORY", "CA_PROVIDER", "ACME_DIRECTORY_URL"):
        monkeypatch.delenv(name, raising=False)

    def _make(**overrides) -> Settings:
        values = {
            "WORK_DIRECTORY": str(work_dir),
            "MANAGED_DOMAINS": ["rover.example.com"],
            "DNS_ZONE": "rover-zone",
            "GOOGLE_PROJECT_ID": "rover-project",
            "CA_PROVIDER": "letsencrypt_staging",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
