"""Dedup ledger: the single gate in front of notification creation."""

from typing import NamedTuple

from notifyflow.common.logging import logger
from notifyflow.common.storage import insert_or_skip
from notifyflow.services.notification.models import DedupLedgerEntry


class ClaimResult(NamedTuple):
    claimed: bool
    entry_id: str | None = None


def claim(
    db,
    tenant_id: str,
    rule_id: str,
    entity_type: str,
    entity_id: str,
    scope_key: str = "",
) -> ClaimResult:
    """Claim (tenant, rule, entity) for scheduling.

    A unique-constraint conflict means another call already scheduled this
    scope; that is reported as `claimed=False`, not as an error. Rules whose
    dedupe scope is `none` always pass without writing a row. The row is only
    durable once the caller commits, so the claim and the notifications it
    guards land (or roll back) together.
    """

    if entity_type == "none":
        return ClaimResult(claimed=True)
    entry_id = insert_or_skip(
        db,
        DedupLedgerEntry,
        {
            "tenant_id": tenant_id,
            "rule_id": rule_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "scope_key": scope_key,
        },
        conflict_columns=["tenant_id", "rule_id", "entity_id"],
    )
    if entry_id is None:
        logger.info(
            "ledger conflict rule_id=%s entity=%s:%s scope_key=%s",
            rule_id,
            entity_type,
            entity_id,
            scope_key,
        )
        return ClaimResult(claimed=False)
    return ClaimResult(claimed=True, entry_id=entry_id)
