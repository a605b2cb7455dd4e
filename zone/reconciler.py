"""
Converge one (name, type) record set in the zone to a desired value.

reconcile() is read-diff-write against a fresh listing on every call: there
is no client-side cache of the zone.  It assumes it is the only writer of the
records it manages and does not lock the zone between the list and the change.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from polling import Context, poll_until
from zone.provider import DnsProvider
from zone.records import Change, RecordSet

logger = logging.getLogger(__name__)

DEFAULT_CHANGE_POLL_INTERVAL = 0.5


@dataclass
class ChangePlan:
    additions: list[RecordSet] = field(default_factory=list)
    deletions: list[RecordSet] = field(default_factory=list)
    max_ttl: int = 0

    @property
    def empty(self) -> bool:
        return not self.additions and not self.deletions


def plan_change(desired: RecordSet, existing: list[RecordSet]) -> ChangePlan:
    """
    Diff *desired* against the record sets currently at its (name, type).

    The first existing set equal in ttl and rrdatas is kept and cancels the
    addition; every other match is staged for deletion.  max_ttl covers every
    record touched so the propagation wait outlives cached copies of the old
    value too.
    """
    plan = ChangePlan(additions=[desired], max_ttl=desired.ttl)
    for record in existing:
        if not record.same_key(desired):
            continue
        plan.max_ttl = max(plan.max_ttl, record.ttl)
        if len(plan.additions) == 1 and record.same_content(desired):
            logger.info("Keeping existing record %s %s: %s", record.type, record.name, list(record.rrdatas))
            plan.additions = []
        else:
            logger.info("Deleting existing record %s %s: %s", record.type, record.name, list(record.rrdatas))
            plan.deletions.append(record)
    return plan


class DnsReconciler:
    def __init__(self, provider: DnsProvider, poll_interval: float = DEFAULT_CHANGE_POLL_INTERVAL) -> None:
        self.provider = provider
        self.poll_interval = poll_interval

    def reconcile(self, ctx: Context, desired: RecordSet, wait_propagation: bool = False) -> Optional[Change]:
        """
        Make the zone hold exactly *desired* at its (name, type).

        Returns the completed Change, or None when the zone already matched
        and no change was submitted.  With *wait_propagation* the call blocks
        for the largest TTL involved after the change is done, so resolvers
        that cached the old value have expired it.
        """
        existing = self.provider.list_record_sets(ctx, desired.name, desired.type)
        plan = plan_change(desired, existing)
        if plan.empty:
            logger.debug("%s %s already up to date", desired.type, desired.name)
            return None

        for record in plan.additions:
            logger.info("Adding new record %s %s: %s", record.type, record.name, list(record.rrdatas))

        change = self.provider.create_change(ctx, plan.additions, plan.deletions)
        logger.info(
            "Change #%s started at %s with status: %s", change.id, change.start_time or "unknown", change.status
        )
        if not change.done:
            change = poll_until(
                ctx,
                lambda: self._fetch_change(ctx, change.id),
                lambda c: c.done,
                self.poll_interval,
                label=f"DNS change #{change.id}",
            )

        if wait_propagation and plan.max_ttl > 0:
            logger.info("Waiting %ds for %s %s to propagate", plan.max_ttl, desired.type, desired.name)
            ctx.sleep(plan.max_ttl)
        return change

    def _fetch_change(self, ctx: Context, change_id: str) -> Change:
        change = self.provider.get_change(ctx, change_id)
        logger.info("Change #%s: %s", change.id, change.status)
        return change
