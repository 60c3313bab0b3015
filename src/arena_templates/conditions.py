"""Helpers for maintaining status conditions."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from arena_templates.models import Condition


if TYPE_CHECKING:
    from arena_templates.models import ConditionStatus


def find_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    """Return the condition of the given type, if present."""
    return next((c for c in conditions if c.type == condition_type), None)


def set_condition(
    conditions: list[Condition],
    generation: int,
    condition_type: str,
    status: ConditionStatus,
    reason: str,
    message: str = "",
    *,
    now: datetime | None = None,
) -> Condition:
    """Insert or update a condition in place.

    An existing entry keeps its position in the list. Its transition time
    only moves when the status actually changes.

    Returns:
        The stored condition
    """
    now = now or datetime.now(UTC)
    existing = find_condition(conditions, condition_type)
    if existing is None:
        condition = Condition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            observed_generation=generation,
            last_transition_time=now,
        )
        conditions.append(condition)
        return condition

    if existing.status != status:
        existing.last_transition_time = now
    existing.status = status
    existing.reason = reason
    existing.message = message
    existing.observed_generation = generation
    return existing


def is_condition_true(conditions: list[Condition], condition_type: str) -> bool:
    condition = find_condition(conditions, condition_type)
    return condition is not None and condition.status == "True"
