"""Allowed lifecycle transitions for doctor identities."""

from __future__ import annotations

from credguard.models import LifecycleState
from credguard.services.errors import InvalidTransition

TRANSITIONS: dict[LifecycleState, frozenset[LifecycleState]] = {
    LifecycleState.PENDING: frozenset({LifecycleState.ACTIVE}),
    LifecycleState.ACTIVE: frozenset(
        {LifecycleState.SUSPENDED, LifecycleState.TERMINATED}
    ),
    # a suspended provider may collect further suspensions
    LifecycleState.SUSPENDED: frozenset(
        {LifecycleState.ACTIVE, LifecycleState.SUSPENDED, LifecycleState.TERMINATED}
    ),
    LifecycleState.TERMINATED: frozenset(),
}


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: LifecycleState, target: LifecycleState) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(
            f"Cannot move from {current.value} to {target.value}",
            detail={"from": current.value, "to": target.value},
        )
