"""
CertificateIssuer: finalize an authorized order and store the chain.

The certificate key has the same create-if-absent policy as the account key
but is a separate key.  Writing the chain is the last step, so a failure at
any earlier point leaves no certificate file behind.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from ca.client import AcmeClient
from ca.crypto import create_csr, der_chain_to_pem
from ca.keystore import load_or_create_key
from ca.messages import Order
from polling import Context
from storage.filesystem import cert_pair_paths, write_cert_chain

logger = logging.getLogger(__name__)


class CertificateIssuer:
    def __init__(self, client: AcmeClient, work_directory: str | Path, validity_days: int = 0) -> None:
        self.client = client
        self.work_directory = Path(work_directory)
        self.validity_days = validity_days

    def requested_not_after(self, now: Optional[datetime] = None) -> Optional[datetime]:
        """notAfter to put in newOrder, or None to take the CA's default validity."""
        if self.validity_days <= 0:
            return None
        return (now or datetime.now(tz=timezone.utc)) + timedelta(days=self.validity_days)

    def issue(self, ctx: Context, order: Order, domains: list[str]) -> tuple[Path, Path]:
        """Return (cert_path, key_path) after writing the issued chain for *domains*."""
        cert_path, key_path = cert_pair_paths(self.work_directory, domains)

        key = load_or_create_key(key_path)
        csr_der = create_csr(key, domains)
        logger.info("Finalizing order %s for %s", order.uri, ", ".join(domains))

        chain = self.client.create_cert(ctx, order, csr_der)
        write_cert_chain(cert_path, der_chain_to_pem(chain))
        logger.info("Stored certificate chain (%d cert(s)) at %s", len(chain), cert_path)
        return cert_path, key_path
