"""Structural validation of a workflow's step graph.

Errors block activation; warnings are shown to the user, who may activate
anyway.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pydantic import ValidationError as PydanticValidationError

from core.constants import ReentryMode, StepType
from workflow.graph import StepGraph
from workflow.step_configs import STEP_CONFIG_MODELS, parse_step_config


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"is_valid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


def _label(node) -> str:
    label = node.config.get("label") if isinstance(node.config, dict) else None
    return f"'{label}' ({node.key})" if label else f"'{node.key}'"


def validate_workflow(workflow: Any, steps: Iterable[Any]) -> ValidationReport:
    """Validate ``steps`` (WorkflowStep rows) for ``workflow``.

    ``workflow`` only needs ``entry_criteria``, ``reentry_mode`` and
    ``reentry_wait_days`` attributes.
    """
    steps = list(steps)
    report = ValidationReport()
    graph = StepGraph.from_steps(steps)

    duplicates = [key for key, count in Counter(s.step_key for s in steps).items() if count > 1]
    for key in duplicates:
        report.errors.append(f"Step key '{key}' is used more than once")

    triggers = graph.triggers
    if not triggers:
        report.errors.append("Workflow has no trigger step")
    elif len(triggers) > 1:
        report.errors.append("Workflow has more than one trigger step")

    non_trigger = [n for n in graph.nodes if n.step_type != StepType.TRIGGER]
    if not non_trigger:
        report.errors.append("Workflow has no steps after the trigger")

    trigger = graph.trigger
    if trigger and non_trigger and not trigger.next_step_key:
        report.errors.append("Trigger is not connected to any step")

    for node in graph.nodes:
        if node.step_type not in STEP_CONFIG_MODELS:
            report.errors.append(f"Step {_label(node)} has unknown type '{node.step_type}'")
            continue

        if node.step_type == StepType.DECISION:
            branches = node.branches
            if not any(branches.values()):
                report.errors.append(f"Decision {_label(node)} has no branches")
            else:
                for branch in ("true", "false"):
                    if not branches.get(branch):
                        report.errors.append(f"Decision {_label(node)} is missing its '{branch}' branch")
            targets = [(f"{branch} branch", key) for branch, key in branches.items() if key]
        else:
            targets = [("next step", node.next_step_key)] if node.next_step_key else []

        for what, target in targets:
            if target not in graph:
                report.errors.append(f"Step {_label(node)} points its {what} at missing step '{target}'")

        try:
            config = parse_step_config(node.step_type, node.config)
        except PydanticValidationError as e:
            report.errors.append(f"Step {_label(node)} has invalid settings: {e.errors()[0]['msg']}")
            continue
        for problem in config.problems():
            report.errors.append(f"Step {_label(node)} {problem}")

    entry = graph.entry_step_key()
    reachable = graph.reachable_from(entry) if entry else set()

    if trigger and entry in graph:
        ends = [k for k in reachable if graph.get(k).step_type == StepType.END]
        if not ends:
            report.errors.append("No end step can be reached from the trigger")
        terminating = graph.reaching(ends)
        for key in sorted(reachable):
            node = graph.get(key)
            if node.step_type not in (StepType.END, StepType.DECISION) and not node.next_step_key:
                report.errors.append(f"Step {_label(node)} has no next step and is not an end step")
            elif ends and key not in terminating:
                report.errors.append(f"Step {_label(node)} is in a loop that never reaches an end step")

    trigger_keys = {t.key for t in triggers}
    for node in graph.nodes:
        if node.key not in reachable and node.key not in trigger_keys:
            report.warnings.append(f"Step {_label(node)} is not reachable from the trigger")

    criteria = getattr(workflow, "entry_criteria", None) or {}
    if not criteria.get("conditions"):
        report.warnings.append("No entry criteria: every matching record will enter this workflow")

    mode: Optional[str] = getattr(workflow, "reentry_mode", None)
    if mode == ReentryMode.REENTRY_AFTER_DAYS and not getattr(workflow, "reentry_wait_days", None):
        report.warnings.append("Re-entry after days is selected but no wait period is set")

    return report
