"""
ROS Restaurant Engine — Policies
"""

from __future__ import annotations

from typing import Optional

from core.commands.rejection import ReasonCode, RejectionReason


def table_must_be_free_policy(table_id: str, table) -> Optional[RejectionReason]:
    """Dine-in orders claim only free tables."""
    if table is None:
        return RejectionReason(
            code=ReasonCode.TABLE_NOT_FOUND,
            message=f"Table '{table_id}' not found.",
            policy_name="table_must_be_free_policy",
        )
    if table.status != "free":
        return RejectionReason(
            code=ReasonCode.TABLE_NOT_FREE,
            message=f"Table {table.number} is {table.status}.",
            policy_name="table_must_be_free_policy",
        )
    return None


def rider_must_be_active_policy(rider_id: str, rider) -> Optional[RejectionReason]:
    if rider is None or not rider.active:
        return RejectionReason(
            code=ReasonCode.RIDER_NOT_AVAILABLE,
            message=f"Rider '{rider_id}' is not available.",
            policy_name="rider_must_be_active_policy",
        )
    return None
