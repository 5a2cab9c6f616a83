"""Execution status machine.

    running <-> waiting
    running | waiting -> completed | failed | cancelled
    failed | cancelled -> running        (retry only)
"""

from typing import Any

from core.constants import ExecutionStatus, TERMINAL_STATUSES
from core.exceptions import InvalidStateTransition

S = ExecutionStatus

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    S.RUNNING.value: {S.WAITING.value, S.COMPLETED.value, S.FAILED.value, S.CANCELLED.value},
    S.WAITING.value: {S.RUNNING.value, S.COMPLETED.value, S.FAILED.value, S.CANCELLED.value},
    S.FAILED.value: {S.RUNNING.value},
    S.CANCELLED.value: {S.RUNNING.value},
    S.COMPLETED.value: set(),
}


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: str, new: str) -> bool:
    if current == new and not is_terminal(current):
        return True
    return new in ALLOWED_TRANSITIONS.get(current, set())


def transition(execution: Any, new: ExecutionStatus | str) -> None:
    """Set ``execution.status`` after checking the move is allowed."""
    new_value = new.value if isinstance(new, ExecutionStatus) else new
    if not can_transition(execution.status, new_value):
        raise InvalidStateTransition(execution.status, new_value)
    execution.status = new_value
