"""Execution context and ``{{ placeholder }}`` rendering.

Context layout persisted on ``WorkflowExecution.context``::

    {
        "trigger_type": "record_create",
        "triggered_at": "2025-01-01T09:00:00",
        "record_data": {...record fields...},
        "step_results": {"send_welcome": {...output...}},
        "variables": {...}
    }

Placeholders resolve, in order, against record fields (``{{ first_name }}``),
then the named scopes ``record.``, ``steps.<step_key>.``, ``variables.`` and
``trigger.``. A placeholder that resolves to nothing renders as an empty string.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from workflow.conditions import resolve_field

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
_WHOLE_PLACEHOLDER = re.compile(r"^\s*\{\{\s*([^{}]+?)\s*\}\}\s*$")
_UNRESOLVED = object()


@dataclass
class ExecutionContext:
    """Data carried from step to step through one execution."""

    trigger_type: str = ""
    triggered_at: Optional[str] = None
    record_data: dict[str, Any] = field(default_factory=dict)
    step_results: dict[str, Any] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def start(cls, trigger_type: str, record_data: dict, now: datetime) -> "ExecutionContext":
        return cls(
            trigger_type=trigger_type,
            triggered_at=now.isoformat(),
            record_data=dict(record_data or {}),
        )

    def record_step_result(self, step_key: str, output: Any) -> None:
        self.step_results[step_key] = output

    def get_step_output(self, step_key: str) -> Any:
        return self.step_results.get(step_key)

    def lookup_data(self) -> dict:
        """Flat view used by decisions: record fields plus the named scopes."""
        data = dict(self.record_data)
        data.setdefault("record", self.record_data)
        data.setdefault("steps", self.step_results)
        data.setdefault("variables", self.variables)
        data.setdefault("trigger", {"type": self.trigger_type, "triggered_at": self.triggered_at})
        return data

    def to_dict(self) -> dict:
        return {
            "trigger_type": self.trigger_type,
            "triggered_at": self.triggered_at,
            "record_data": dict(self.record_data),
            "step_results": dict(self.step_results),
            "variables": dict(self.variables),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ExecutionContext":
        data = data or {}
        return cls(
            trigger_type=data.get("trigger_type", ""),
            triggered_at=data.get("triggered_at"),
            record_data=dict(data.get("record_data") or {}),
            step_results=dict(data.get("step_results") or {}),
            variables=dict(data.get("variables") or {}),
        )


class TemplateRenderer:
    """Renders ``{{ path }}`` placeholders against an ExecutionContext."""

    @staticmethod
    def resolve(path: str, context: ExecutionContext) -> Any:
        """Resolve one placeholder path; returns the raw value or None."""
        value = resolve_field(context.lookup_data(), path.strip(), _UNRESOLVED)
        if value is _UNRESOLVED:
            logger.debug("Placeholder '%s' did not resolve", path)
            return None
        return value

    @staticmethod
    def render(template: Any, context: ExecutionContext) -> Any:
        """Render a string template.

        A string that is exactly one placeholder keeps the resolved value's
        type (so ``"{{ amount }}"`` stays a number); mixed text is rendered
        to a string. Non-strings pass through unchanged.
        """
        if not isinstance(template, str) or "{{" not in template:
            return template

        whole = _WHOLE_PLACEHOLDER.match(template)
        if whole:
            return TemplateRenderer.resolve(whole.group(1), context)

        def _sub(match: re.Match) -> str:
            value = TemplateRenderer.resolve(match.group(1), context)
            if value is None:
                return ""
            if isinstance(value, bool):
                return "true" if value else "false"
            return str(value)

        return _PLACEHOLDER.sub(_sub, template)

    @staticmethod
    def render_text(template: Optional[str], context: ExecutionContext) -> str:
        """Render for message bodies and subjects; always returns a string."""
        rendered = TemplateRenderer.render(template or "", context)
        return "" if rendered is None else str(rendered)

    @staticmethod
    def render_value(value: Any, context: ExecutionContext) -> Any:
        """Recursively render every string inside dicts and lists."""
        if isinstance(value, str):
            return TemplateRenderer.render(value, context)
        if isinstance(value, dict):
            return {k: TemplateRenderer.render_value(v, context) for k, v in value.items()}
        if isinstance(value, list):
            return [TemplateRenderer.render_value(v, context) for v in value]
        return value
