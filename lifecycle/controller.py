"""
CertificateLifecycleController: the two operations the rover service calls.

  check_or_refresh(ctx, domains)   startup: return usable cert/key paths,
                                   refreshing through the ACME graph first
                                   when the stored certificate will not do
  update_address_record(ctx, ip)   publish the primary domain's A/AAAA record

Freshness is decided from the certificate itself, not from the file merely
existing: it must parse, cover exactly the requested domains, and have at
least RENEWAL_THRESHOLD_DAYS of validity left.
"""
from __future__ import annotations

import ipaddress
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ca.client import AcmeClient
from ca.keystore import load_or_create_key, read_key
from ca.messages import normalize_domain
from lifecycle.account import ensure_account
from lifecycle.authorization import AuthorizationSolver
from lifecycle.graph import build_refresh_graph, initial_state, run_config
from lifecycle.issuer import CertificateIssuer
from lifecycle.state import RefreshState
from polling import Context
from storage.filesystem import (
    account_key_path,
    account_path,
    cert_pair_paths,
    certificate_dns_names,
    days_until_expiry,
    ensure_work_directory,
    load_leaf_certificate,
    parse_expiry,
)
from zone.provider import DnsProvider, make_dns_provider
from zone.reconciler import DnsReconciler
from zone.records import Change, RecordSet

if TYPE_CHECKING:
    from config import Settings

logger = logging.getLogger(__name__)

ClientFactory = Callable[["Settings", ec.EllipticCurvePrivateKey], AcmeClient]


class CertificateLifecycleController:
    def __init__(
        self,
        settings: "Settings",
        dns_provider: DnsProvider,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.settings = settings
        self.work_directory = Path(settings.WORK_DIRECTORY)
        self.reconciler = DnsReconciler(dns_provider, poll_interval=settings.DNS_POLL_INTERVAL_SECONDS)
        self._client_factory = client_factory or AcmeClient.from_settings

    @classmethod
    def from_settings(cls, settings: "Settings") -> "CertificateLifecycleController":
        return cls(settings, make_dns_provider(settings))

    # ── Certificates ──────────────────────────────────────────────────────

    def cert_paths(self, domains: Optional[list[str]] = None) -> tuple[Path, Path]:
        return cert_pair_paths(self.work_directory, self._domains(domains))

    def needs_refresh(self, domains: Optional[list[str]] = None, now: Optional[datetime] = None) -> bool:
        """True when the stored certificate for *domains* is missing, unusable, mismatched or expiring."""
        domains = self._domains(domains)
        cert_path, key_path = self.cert_paths(domains)

        if not key_path.exists():
            logger.info("No certificate key at %s; refresh needed", key_path)
            return True
        try:
            cert = load_leaf_certificate(cert_path)
        except (OSError, ValueError) as exc:
            logger.warning("Cannot parse certificate %s (%s); refresh needed", cert_path, exc)
            return True
        if cert is None:
            logger.info("No certificate at %s; refresh needed", cert_path)
            return True

        try:
            key = read_key(key_path)
        except (OSError, ValueError, TypeError, UnsupportedAlgorithm) as exc:
            logger.warning("Cannot use certificate key %s (%s); refresh needed", key_path, exc)
            return True
        if _public_der(key.public_key()) != _public_der(cert.public_key()):
            logger.warning("Key %s does not match certificate %s; refresh needed", key_path, cert_path)
            return True

        names = certificate_dns_names(cert)
        if {normalize_domain(n) for n in names} != set(domains):
            logger.info("Certificate %s covers %s, wanted %s; refresh needed", cert_path, names, domains)
            return True

        days_left = days_until_expiry(parse_expiry(cert), now)
        threshold = self.settings.RENEWAL_THRESHOLD_DAYS
        if days_left < threshold:
            logger.info(
                "Certificate %s expires in %d day(s) (threshold %d); refresh needed",
                cert_path, days_left, threshold,
            )
            return True

        logger.info("Certificate %s is valid for %d more day(s)", cert_path, days_left)
        return False

    def check_or_refresh(self, ctx: Context, domains: Optional[list[str]] = None) -> tuple[Path, Path]:
        """
        Return (cert_path, key_path) for *domains*, refreshing first if needed.

        Any failure aborts the whole refresh and propagates; a certificate for
        only some of the domains is never issued.
        """
        domains = self._domains(domains)
        if not self.needs_refresh(domains):
            return self.cert_paths(domains)
        return self.refresh(ctx, domains)

    def refresh(self, ctx: Context, domains: list[str]) -> tuple[Path, Path]:
        """Run the ACME refresh graph for *domains* unconditionally."""
        domains = self._domains(domains)
        run = _RefreshRun(self, ctx)
        graph = build_refresh_graph(
            account_setup=run.account_setup,
            open_order=run.open_order,
            authorize_domain=run.authorize_domain,
            issue_certificate=run.issue_certificate,
        )
        final = graph.invoke(initial_state(domains), config=run_config(domains))
        return Path(final["cert_path"]), Path(final["key_path"])

    # ── DNS ───────────────────────────────────────────────────────────────

    def update_address_record(
        self,
        ctx: Context,
        ip: str,
        domains: Optional[list[str]] = None,
    ) -> Optional[Change]:
        """Point the primary domain at *ip* (A for IPv4, AAAA for IPv6) and wait for propagation."""
        address = ipaddress.ip_address(ip.strip())
        record_type = "A" if address.version == 4 else "AAAA"
        primary = self._domains(domains)[0].rstrip(".")
        record = RecordSet.of(f"{primary}.", record_type, self.settings.ADDRESS_RECORD_TTL, [str(address)])
        logger.info("Publishing %s %s -> %s", record_type, record.name, address)
        return self.reconciler.reconcile(ctx, record, wait_propagation=True)

    def _domains(self, domains: Optional[list[str]]) -> list[str]:
        domains = list(domains) if domains else list(self.settings.MANAGED_DOMAINS)
        domains = [normalize_domain(d) for d in domains]
        if not domains:
            raise ValueError("at least one domain is required")
        return domains


def _public_der(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


class _RefreshRun:
    """Graph nodes for one refresh, sharing the context and the bound ACME client."""

    def __init__(self, controller: CertificateLifecycleController, ctx: Context) -> None:
        self.controller = controller
        self.settings = controller.settings
        self.ctx = ctx
        self.client: Optional[AcmeClient] = None
        self.issuer: Optional[CertificateIssuer] = None

    def account_setup(self, state: RefreshState) -> dict:
        work_dir = ensure_work_directory(self.controller.work_directory)
        account_key = load_or_create_key(account_key_path(work_dir))
        self.client = self.controller._client_factory(self.settings, account_key)
        self.issuer = CertificateIssuer(self.client, work_dir, self.settings.CERT_VALIDITY_DAYS)
        account = ensure_account(self.ctx, self.client, account_path(work_dir))
        return {"account": account}

    def open_order(self, state: RefreshState) -> dict:
        order = self.client.new_order(self.ctx, state["domains"], self.issuer.requested_not_after())
        return {"order": order}

    def authorize_domain(self, state: RefreshState) -> dict:
        domain = state["current_domain"]
        solver = AuthorizationSolver(
            self.client, self.controller.reconciler, self.settings.CHALLENGE_RECORD_TTL
        )
        solver.authorize(self.ctx, state["order"], domain)
        return {"authorized_domains": list(state.get("authorized_domains", [])) + [domain]}

    def issue_certificate(self, state: RefreshState) -> dict:
        cert_path, key_path = self.issuer.issue(self.ctx, state["order"], state["domains"])
        return {"cert_path": str(cert_path), "key_path": str(key_path)}
