"""In-memory step graph built from workflow steps or an execution snapshot."""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from core.constants import DecisionBranch, StepType


@dataclass
class StepNode:
    """A single step as the interpreter sees it."""

    key: str
    step_type: str
    config: dict[str, Any] = field(default_factory=dict)
    next_step_key: Optional[str] = None
    step_id: Optional[str] = None
    order: int = 0

    @property
    def branches(self) -> dict[str, Optional[str]]:
        """Decision branches normalised to ``{"true": key, "false": key}``."""
        raw = self.config.get("branches") if self.step_type == StepType.DECISION else None
        if isinstance(raw, dict):
            return {k: raw.get(k) for k in (DecisionBranch.TRUE.value, DecisionBranch.FALSE.value) if k in raw}
        if isinstance(raw, list):
            return {
                entry["condition"]: entry.get("next_step_key")
                for entry in raw
                if isinstance(entry, dict) and entry.get("condition") in ("true", "false")
            }
        return {}

    def successors(self) -> list[str]:
        """Every step key this node can hand control to."""
        if self.step_type == StepType.END:
            return []
        if self.step_type == StepType.DECISION:
            return [key for key in self.branches.values() if key]
        return [self.next_step_key] if self.next_step_key else []

    def to_dict(self) -> dict:
        return {
            "step_key": self.key,
            "step_type": self.step_type,
            "step_config": self.config,
            "next_step_key": self.next_step_key,
            "step_id": self.step_id,
            "step_order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "StepNode":
        return cls(
            key=data["step_key"],
            step_type=data["step_type"],
            config=data.get("step_config") or {},
            next_step_key=data.get("next_step_key"),
            step_id=data.get("step_id"),
            order=data.get("step_order", 0),
        )


class StepGraph:
    """Lookup and reachability over a workflow's steps."""

    def __init__(self, nodes: Iterable[StepNode]):
        self.nodes: list[StepNode] = sorted(nodes, key=lambda n: n.order)
        self._by_key: dict[str, StepNode] = {}
        for node in self.nodes:
            # First occurrence wins; duplicates are reported by validation
            self._by_key.setdefault(node.key, node)

    @classmethod
    def from_steps(cls, steps: Iterable[Any]) -> "StepGraph":
        """Build from WorkflowStep rows (or anything with the same attributes)."""
        return cls(
            StepNode(
                key=step.step_key,
                step_type=step.step_type,
                config=dict(step.step_config or {}),
                next_step_key=step.next_step_key,
                step_id=getattr(step, "id", None),
                order=step.step_order or 0,
            )
            for step in steps
        )

    @classmethod
    def from_snapshot(cls, snapshot: Optional[list]) -> "StepGraph":
        return cls(StepNode.from_dict(item) for item in (snapshot or []))

    def to_snapshot(self) -> list[dict]:
        return [node.to_dict() for node in self.nodes]

    def get(self, key: Optional[str]) -> Optional[StepNode]:
        if key is None:
            return None
        return self._by_key.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def keys(self) -> list[str]:
        return [node.key for node in self.nodes]

    @property
    def triggers(self) -> list[StepNode]:
        return [node for node in self.nodes if node.step_type == StepType.TRIGGER]

    @property
    def trigger(self) -> Optional[StepNode]:
        triggers = self.triggers
        return triggers[0] if triggers else None

    def entry_step_key(self) -> Optional[str]:
        """Key of the first step after the trigger, if the trigger is connected."""
        trigger = self.trigger
        return trigger.next_step_key if trigger else None

    def reachable_from(self, key: Optional[str]) -> set[str]:
        """Keys reachable from ``key`` (inclusive), following existing nodes only."""
        seen: set[str] = set()
        stack = [key] if key in self._by_key else []
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            for nxt in self._by_key[current].successors():
                if nxt in self._by_key and nxt not in seen:
                    stack.append(nxt)
        return seen

    def reaching(self, targets: Iterable[str]) -> set[str]:
        """Keys from which some key in ``targets`` can be reached (inclusive)."""
        predecessors: dict[str, list[str]] = {key: [] for key in self._by_key}
        for key, node in self._by_key.items():
            for nxt in node.successors():
                if nxt in predecessors:
                    predecessors[nxt].append(key)

        seen: set[str] = set()
        stack = [key for key in targets if key in self._by_key]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(prev for prev in predecessors[current] if prev not in seen)
        return seen
