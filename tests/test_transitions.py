import pytest

from credguard.models import LifecycleState
from credguard.services.errors import InvalidTransition
from credguard.services.transitions import TRANSITIONS, can_transition, ensure_transition


def test_every_state_has_a_transition_row():
    assert set(TRANSITIONS) == set(LifecycleState)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (LifecycleState.PENDING, LifecycleState.ACTIVE),
        (LifecycleState.ACTIVE, LifecycleState.SUSPENDED),
        (LifecycleState.SUSPENDED, LifecycleState.SUSPENDED),
        (LifecycleState.SUSPENDED, LifecycleState.ACTIVE),
        (LifecycleState.ACTIVE, LifecycleState.TERMINATED),
        (LifecycleState.SUSPENDED, LifecycleState.TERMINATED),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)
    ensure_transition(current, target)


@pytest.mark.parametrize(
    ("current", "target"),
    [
        (LifecycleState.PENDING, LifecycleState.TERMINATED),
        (LifecycleState.PENDING, LifecycleState.SUSPENDED),
        (LifecycleState.ACTIVE, LifecycleState.ACTIVE),
        (LifecycleState.ACTIVE, LifecycleState.PENDING),
        (LifecycleState.TERMINATED, LifecycleState.ACTIVE),
    ],
)
def test_illegal_transitions_raise(current, target):
    assert not can_transition(current, target)
    with pytest.raises(InvalidTransition) as excinfo:
        ensure_transition(current, target)
    assert excinfo.value.detail == {"from": current.value, "to": target.value}
    assert excinfo.value.http_status == 409
