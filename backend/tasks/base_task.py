"""
Base interface for workflow step handlers.

Every step type (send_email, wait, decision, ...) has one handler class
inheriting from BaseTask and implementing execute(). The interpreter calls
run(), which adds timing, logging and error capture.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import StepExecutionError
from workflow.context import ExecutionContext, TemplateRenderer
from workflow.graph import StepNode

logger = structlog.get_logger(__name__)


class TaskResult:
    """Standardized result from a step handler.

    ``next_step_key`` overrides the node's successor (decisions);
    ``wait_until`` parks the execution; ``end`` completes it.
    """

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        next_step_key: Optional[str] = None,
        wait_until: Optional[datetime] = None,
        end: bool = False,
        retryable: bool = True,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.next_step_key = next_step_key
        self.wait_until = wait_until
        self.end = end
        self.retryable = retryable
        self.duration_ms = duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "next_step_key": self.next_step_key,
            "wait_until": self.wait_until.isoformat() if self.wait_until else None,
            "end": self.end,
            "duration_ms": self.duration_ms,
        }


@dataclass
class StepContext:
    """Everything a handler may touch while running one step."""

    db: Any  # AsyncSession
    execution: Any  # WorkflowExecution
    node: StepNode
    data: ExecutionContext
    now: datetime
    channels: Any = None  # notifications.channels.StepChannels
    record: Any = None  # BusinessRecord, when it exists
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def organization_id(self) -> str:
        return self.execution.organization_id

    def render(self, template: Optional[str]) -> str:
        return TemplateRenderer.render_text(template, self.data)

    def render_value(self, value: Any) -> Any:
        return TemplateRenderer.render_value(value, self.data)

    @property
    def client_id(self) -> Optional[str]:
        """Portal client the current record belongs to."""
        if self.record is not None and getattr(self.record, "client_id", None):
            return self.record.client_id
        return self.data.record_data.get("client_id") or self.execution.record_id


class BaseTask(ABC):
    """
    Abstract base class for step handlers.

    Subclasses implement execute(config, context) and set task_type to
    the StepType value they handle.
    """

    task_type: str = "base"
    display_name: str = "Base Step"
    description: str = "Abstract step"

    @abstractmethod
    async def execute(self, config: Any, context: StepContext) -> TaskResult:
        """
        Execute the step.

        Args:
            config: Parsed step config (workflow.step_configs model)
            context: The running execution and its collaborators

        Returns:
            TaskResult describing success, output and where to go next
        """
        pass

    async def run(self, config: Any, context: StepContext) -> TaskResult:
        """
        Run the handler with timing and error capture.

        StepExecutionError keeps its retryable flag; config errors are not
        retryable; anything else is assumed transient.
        """
        start = time.monotonic()
        try:
            result = await self.execute(config, context)
            result.duration_ms = (time.monotonic() - start) * 1000
            logger.info(
                "Step finished",
                step_type=self.task_type,
                step_key=context.node.key,
                success=result.success,
                duration_ms=round(result.duration_ms, 2),
            )
            return result

        except StepExecutionError as e:
            error, retryable = e.message, e.retryable
        except (PydanticValidationError, ValueError, KeyError) as e:
            error, retryable = str(e), False
        except Exception as e:
            error, retryable = str(e) or type(e).__name__, True

        duration_ms = (time.monotonic() - start) * 1000
        logger.warning(
            "Step failed",
            step_type=self.task_type,
            step_key=context.node.key,
            error=error,
            retryable=retryable,
            duration_ms=round(duration_ms, 2),
        )
        return TaskResult(success=False, error=error, retryable=retryable, duration_ms=duration_ms)
