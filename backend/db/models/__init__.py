"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.organization import Organization
from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from db.models.execution import WorkflowExecution
from db.models.step_execution import StepExecution
from db.models.workflow_template import WorkflowTemplate
from db.models.sms_usage import SmsUsage
from db.models.business_record import BusinessRecord
from db.models.client_task import ClientTask
from db.models.portal_message import PortalMessage

__all__ = [
    "Organization",
    "Workflow",
    "WorkflowStep",
    "WorkflowExecution",
    "StepExecution",
    "WorkflowTemplate",
    "SmsUsage",
    "BusinessRecord",
    "ClientTask",
    "PortalMessage",
]
