"""
Step Type Registry: maps every step type to the handler that runs it.
"""

from typing import Dict, Optional, Type

from tasks.base_task import BaseTask
from tasks.implementations.flow_task import FLOW_TASK_TYPES
from tasks.implementations.messaging_task import MESSAGING_TASK_TYPES
from tasks.implementations.record_task import RECORD_TASK_TYPES
from tasks.implementations.webhook_task import WEBHOOK_TASK_TYPES


class TaskRegistry:
    """Central registry for all step handler implementations."""

    def __init__(self):
        self._tasks: Dict[str, Type[BaseTask]] = {}
        self._register_builtin_tasks()

    def _register_builtin_tasks(self):
        # Trigger, wait, decision, end
        for task_type, task_class in FLOW_TASK_TYPES.items():
            self.register(task_type, task_class)

        # Email, SMS, portal
        for task_type, task_class in MESSAGING_TASK_TYPES.items():
            self.register(task_type, task_class)

        # Action items and record writes
        for task_type, task_class in RECORD_TASK_TYPES.items():
            self.register(task_type, task_class)

        for task_type, task_class in WEBHOOK_TASK_TYPES.items():
            self.register(task_type, task_class)

    def register(self, task_type: str, task_class: Type[BaseTask]):
        """Register (or replace) the handler for a step type."""
        self._tasks[task_type] = task_class

    def get(self, task_type: str) -> Optional[Type[BaseTask]]:
        return self._tasks.get(task_type)

    def create_instance(self, task_type: str) -> Optional[BaseTask]:
        """Create a new handler instance by step type."""
        task_class = self.get(task_type)
        if task_class:
            return task_class()
        return None

    def list_all(self) -> list:
        """Registered step types with their display metadata."""
        return [
            {
                "task_type": task_type,
                "display_name": cls.display_name,
                "description": cls.description,
            }
            for task_type, cls in self._tasks.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._tasks.keys())


# Singleton
_registry: Optional[TaskRegistry] = None


def get_task_registry() -> TaskRegistry:
    """Get or create the singleton task registry."""
    global _registry
    if _registry is None:
        _registry = TaskRegistry()
    return _registry
