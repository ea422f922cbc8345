"""Status condition bookkeeping."""

from __future__ import annotations

from datetime import UTC, datetime

from kubeaction.models.rules import AutomationRule, Condition


def set_condition(rule: AutomationRule, condition: Condition, now: datetime | None = None) -> None:
    """Insert or replace the condition of the same type on ``rule.status``.

    ``last_transition_time`` moves only when ``status`` changes; a new
    reason or message alone keeps the stored transition time.
    """
    now = now or datetime.now(tz=UTC)
    condition.observed_generation = rule.generation
    if condition.last_transition_time is None:
        condition.last_transition_time = now

    conditions = rule.status.conditions
    for i, existing in enumerate(conditions):
        if existing.type != condition.type:
            continue
        if existing.status != condition.status:
            condition.last_transition_time = now
        else:
            condition.last_transition_time = existing.last_transition_time or now
        conditions[i] = condition
        return

    conditions.append(condition)
