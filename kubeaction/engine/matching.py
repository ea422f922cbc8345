"""Rule matching: selector, event membership and object filters."""

from __future__ import annotations

import re

from kubeaction.models.events import EventType, LifecycleEvent, ObjectSnapshot
from kubeaction.models.rules import AutomationRule, RuleFilter


def _search(pattern: str, value: str) -> bool:
    """Unanchored regex search. A malformed pattern never matches."""
    try:
        return re.search(pattern, value) is not None
    except re.error:
        return False


def matches_filter(rule_filter: RuleFilter | None, snapshot: ObjectSnapshot) -> bool:
    """Conjunction of name regex, namespace regex and label equalities."""
    if rule_filter is None:
        return True
    if rule_filter.name_regex and not _search(rule_filter.name_regex, snapshot.name):
        return False
    if rule_filter.namespace_regex and not _search(rule_filter.namespace_regex, snapshot.namespace):
        return False
    # a missing label compares as the empty string
    for key, value in rule_filter.labels.items():
        if snapshot.labels.get(key, "") != value:
            return False
    return True


def contains_event(events: frozenset[EventType], event_type: EventType) -> bool:
    return event_type in events


def rule_matches(rule: AutomationRule, event: LifecycleEvent) -> bool:
    """True iff selector, event set and filter all accept *event*."""
    return (
        rule.selector.matches(event.resource_type)
        and contains_event(rule.events, event.event_type)
        and matches_filter(rule.filter, event.snapshot)
    )


def already_executed(rule: AutomationRule, uid: str, event_type: EventType) -> bool:
    """Whether the rule's persisted ledger already records (uid, event)."""
    return (uid, event_type.value) in rule.status.executed_keys()
