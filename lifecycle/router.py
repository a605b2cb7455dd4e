"""
Per-domain loop of the refresh graph.

pick_next_domain is a node; domain_loop_router is the conditional edge after
authorize_domain that either loops back or moves on to issuance.
"""
from __future__ import annotations

import logging

from lifecycle.state import RefreshState

logger = logging.getLogger(__name__)


def pick_next_domain(state: RefreshState) -> dict:
    """Pop the next domain from pending_domains into current_domain."""
    pending = list(state.get("pending_domains", []))
    if not pending:
        return {"current_domain": None}

    next_domain, remaining = pending[0], pending[1:]
    logger.info("Authorizing domain: %s", next_domain)
    return {
        "current_domain": next_domain,
        "pending_domains": remaining,
    }


def domain_loop_router(state: RefreshState) -> str:
    """
    Returns:
      "next_domain"  more domains to authorize
      "all_done"     every domain is authorized, go issue
    """
    if state.get("pending_domains"):
        return "next_domain"
    return "all_done"
