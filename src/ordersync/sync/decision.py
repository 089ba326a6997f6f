"""
Create / update / skip decision for one order against remote state.

Kept free of I/O so the monotonic-status and idempotency rules live in one
place and are shared by fresh polls and queue retries.
"""
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from ordersync.models.order import LifecycleStatus, legacy_marker


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


def status_rank(value: Any) -> int:
    """Rank of a status string; unknown values rank below RECEIVED."""
    try:
        return LifecycleStatus(value).rank
    except ValueError:
        return -1


def find_matching_order(
    orders: Iterable[Dict[str, Any]], external_id: str
) -> Optional[Dict[str, Any]]:
    """
    First remote order linked to ``external_id``.

    A remote order matches when its osNumber equals the id, or when its
    optionalDescription carries the legacy marker (the link survives a
    renumbering on the remote side).
    """
    marker = legacy_marker(external_id)
    for order in orders:
        if not isinstance(order, dict):
            continue
        if str(order.get("osNumber") or "") == external_id:
            return order
        if marker in str(order.get("optionalDescription") or ""):
            return order
    return None


def decide_action(
    existing: Optional[Dict[str, Any]], incoming: LifecycleStatus
) -> SyncAction:
    """
    Decide what to do with an incoming status given the remote order (if any).

    - no remote order → CREATE
    - remote already COMPLETED → SKIP (terminal, never touched again)
    - incoming strictly after the remote status → UPDATE
    - otherwise → SKIP (never regress, never re-send an equal status)
    """
    if existing is None:
        return SyncAction.CREATE

    remote_status = existing.get("currentStatus")
    if remote_status == LifecycleStatus.COMPLETED.value:
        return SyncAction.SKIP
    if incoming.rank > status_rank(remote_status):
        return SyncAction.UPDATE
    return SyncAction.SKIP
