"""
State carried through the certificate refresh graph.

The account key and certificate key are never put in state; nodes reach them
through the controller that owns the AcmeClient.
"""
from __future__ import annotations

from typing import List, Optional

from typing_extensions import TypedDict

from ca.messages import Account, Order


class RefreshState(TypedDict):
    # ── Input ──────────────────────────────────────────────────────────────
    domains: List[str]                # ordered; domains[0] is the primary

    # ── Per-domain loop ────────────────────────────────────────────────────
    pending_domains: List[str]        # still to authorize, in order
    current_domain: Optional[str]
    authorized_domains: List[str]

    # ── ACME flow ──────────────────────────────────────────────────────────
    account: Optional[Account]
    order: Optional[Order]

    # ── Output ─────────────────────────────────────────────────────────────
    cert_path: Optional[str]
    key_path: Optional[str]
