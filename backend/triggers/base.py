"""Record events and the decisions the trigger evaluator makes about them."""

from dataclasses import dataclass, field
from typing import Any, Optional

from core.constants import EventKind


@dataclass
class RecordEvent:
    """A mutation of one business record, emitted by the CRM write path.

    ``record`` holds the new field values, ``previous`` the values before
    the change (empty for creates).
    """

    organization_id: str
    object_type: str
    record_id: str
    event_kind: str = EventKind.CREATE.value
    record: dict[str, Any] = field(default_factory=dict)
    previous: dict[str, Any] = field(default_factory=dict)
    changed_fields: Optional[list[str]] = None


@dataclass
class CreateIntent:
    """Instruction to start one execution of one workflow for one record."""

    workflow_id: str
    organization_id: str
    record_type: str
    record_id: str
    trigger_type: str
    initial_step_key: str
    record_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class TriggerDecision:
    """Why a candidate workflow did or did not fire for an event."""

    workflow_id: str
    matched: bool
    reason: str
    intent: Optional[CreateIntent] = None


@dataclass
class TriggerOutcome:
    """What happened for one workflow after the decision was acted on."""

    workflow_id: str
    triggered: bool
    reason: str
    execution_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "workflow_id": self.workflow_id,
            "triggered": self.triggered,
            "reason": self.reason,
            "execution_id": self.execution_id,
            "error": self.error,
        }
