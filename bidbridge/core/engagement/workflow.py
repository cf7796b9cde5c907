"""Transition tables for projects and quotes.

Every status change in the core goes through ``ensure_transition`` so the
legal edges live in one place.
"""

from __future__ import annotations

from enum import Enum

from bidbridge.common.enums import ProjectStatus, QuoteStatus
from bidbridge.common.exceptions import IllegalTransitionError

PROJECT_TRANSITIONS: dict[ProjectStatus, frozenset[ProjectStatus]] = {
    ProjectStatus.OPEN: frozenset({ProjectStatus.ASSIGNED, ProjectStatus.CANCELLED}),
    ProjectStatus.ASSIGNED: frozenset({ProjectStatus.COMPLETED, ProjectStatus.CANCELLED}),
    ProjectStatus.COMPLETED: frozenset(),
    ProjectStatus.CANCELLED: frozenset(),
}

# Decided quotes are immutable
QUOTE_TRANSITIONS: dict[QuoteStatus, frozenset[QuoteStatus]] = {
    QuoteStatus.SUBMITTED: frozenset(
        {QuoteStatus.APPROVED, QuoteStatus.REJECTED, QuoteStatus.WITHDRAWN}
    ),
    QuoteStatus.APPROVED: frozenset(),
    QuoteStatus.REJECTED: frozenset(),
    QuoteStatus.WITHDRAWN: frozenset(),
}

_TABLES = {
    ProjectStatus: ("Project", PROJECT_TRANSITIONS),
    QuoteStatus: ("Quote", QUOTE_TRANSITIONS),
}


def can_transition(current: Enum, target: Enum) -> bool:
    _, table = _TABLES[type(target)]
    return target in table.get(type(target)(current), frozenset())


def ensure_transition(current: Enum | str, target: Enum, resource_id: str) -> None:
    status_type = type(target)
    resource, _ = _TABLES[status_type]
    current = status_type(current)
    if not can_transition(current, target):
        raise IllegalTransitionError(resource, resource_id, current.value, target.value)


def is_terminal(status: ProjectStatus | str) -> bool:
    return not PROJECT_TRANSITIONS[ProjectStatus(status)]
