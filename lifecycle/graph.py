"""
LangGraph StateGraph for one certificate refresh.

Graph topology:
  START
    → account_setup
    → open_order
    → pick_next_domain          ← loop entry point
    → authorize_domain
    → [conditional: next_domain → pick_next_domain]
                   all_done    → issue_certificate
    → END

There is no error branch: a node that raises aborts the whole run, so a
certificate is never issued for a subset of the domains.  Nodes are passed in
by the controller, which binds them to its client and context.
"""
from __future__ import annotations

from typing import Callable

from langgraph.graph import END, START, StateGraph

from lifecycle.router import domain_loop_router, pick_next_domain
from lifecycle.state import RefreshState

Node = Callable[[RefreshState], dict]

# Every domain costs two steps (pick + authorize) plus the fixed nodes
_FIXED_STEPS = 6


def build_refresh_graph(
    account_setup: Node,
    open_order: Node,
    authorize_domain: Node,
    issue_certificate: Node,
):
    """Build and compile the refresh StateGraph from the four action nodes."""
    builder = StateGraph(RefreshState)

    # ── Register nodes ────────────────────────────────────────────────────
    builder.add_node("account_setup", account_setup)
    builder.add_node("open_order", open_order)
    builder.add_node("pick_next_domain", pick_next_domain)
    builder.add_node("authorize_domain", authorize_domain)
    builder.add_node("issue_certificate", issue_certificate)

    # ── Deterministic edges ───────────────────────────────────────────────
    builder.add_edge(START, "account_setup")
    builder.add_edge("account_setup", "open_order")
    builder.add_edge("open_order", "pick_next_domain")
    builder.add_edge("pick_next_domain", "authorize_domain")

    builder.add_conditional_edges(
        "authorize_domain",
        domain_loop_router,
        {
            "next_domain": "pick_next_domain",
            "all_done": "issue_certificate",
        },
    )

    builder.add_edge("issue_certificate", END)

    return builder.compile()


def initial_state(domains: list[str]) -> RefreshState:
    return {
        "domains": list(domains),
        "pending_domains": list(domains),
        "current_domain": None,
        "authorized_domains": [],
        "account": None,
        "order": None,
        "cert_path": None,
        "key_path": None,
    }


def run_config(domains: list[str]) -> dict:
    """invoke() config with a recursion limit sized to the domain count."""
    return {"recursion_limit": _FIXED_STEPS + 2 * len(domains)}
