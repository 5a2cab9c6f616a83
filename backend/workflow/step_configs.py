"""Typed step configurations, one pydantic model per step type.

``step_config`` is stored as free-form JSON because the canvas saves
half-finished nodes. Parsing never requires a field; instead every model
reports what it still needs through ``problems()``, which validation turns
into errors and the interpreter turns into a non-retryable step failure.
"""

from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from core.constants import DecisionBranch, StepType
from notifications.email_templates import get_email_template


class ConditionSpec(BaseModel):
    """``{field, operator, value}``; used by decisions and step gates."""

    model_config = ConfigDict(extra="ignore")

    field: Optional[str] = None
    operator: str = "equals"
    value: Any = None

    def as_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator, "value": self.value}


class StepConfigBase(BaseModel):
    """Settings every step type accepts."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    label: Optional[str] = None
    continue_on_error: bool = False
    condition: Optional[ConditionSpec] = None
    retry_policy: Optional[str] = None  # name in workflow.retry_strategies.RETRY_PRESETS

    def problems(self) -> list[str]:
        return []


class TriggerStepConfig(StepConfigBase):
    pass


class EndStepConfig(StepConfigBase):
    pass


class SendEmailConfig(StepConfigBase):
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    to_type: str = "record"  # record, field, custom
    to_email: Optional[str] = None
    to_field: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = Field(default=None, validation_alias=AliasChoices("body", "content"))

    def problems(self) -> list[str]:
        issues = []
        if not self.template_id and not self.body:
            issues.append("needs an email template or a message body")
        elif self.template_id and not self.body and get_email_template(self.template_id) is None:
            issues.append(f"uses unknown email template '{self.template_id}'")
        if self.to_type == "custom" and not self.to_email:
            issues.append("custom recipient selected but no address given")
        return issues


class SendSmsConfig(StepConfigBase):
    to_field: Optional[str] = None
    to_phone: Optional[str] = None
    body: Optional[str] = Field(default=None, validation_alias=AliasChoices("body", "message"))

    def problems(self) -> list[str]:
        return [] if self.body else ["needs a message body"]


class SendMessageConfig(StepConfigBase):
    subject: Optional[str] = None
    body: Optional[str] = Field(default=None, validation_alias=AliasChoices("body", "message", "content"))

    def problems(self) -> list[str]:
        return [] if self.body else ["needs a message body"]


class TaskSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    description: Optional[str] = None
    action_type: str = "custom"
    priority: str = "medium"
    due_days: Optional[int] = None


class CreateTaskConfig(StepConfigBase):
    title: Optional[str] = None
    description: Optional[str] = None
    action_type: str = "custom"
    priority: str = "medium"
    due_days: Optional[int] = None
    tasks: list[TaskSpec] = Field(default_factory=list)

    def task_specs(self) -> list[TaskSpec]:
        if self.tasks:
            return list(self.tasks)
        if self.title:
            return [TaskSpec(
                title=self.title,
                description=self.description,
                action_type=self.action_type,
                priority=self.priority,
                due_days=self.due_days,
            )]
        return []

    def problems(self) -> list[str]:
        specs = self.task_specs()
        if not specs:
            return ["needs at least one task title"]
        if any(not spec.title for spec in specs):
            return ["every task needs a title"]
        return []


class UpdateFieldConfig(StepConfigBase):
    field: Optional[str] = None
    value: Any = None

    def problems(self) -> list[str]:
        return [] if self.field else ["needs the field to update"]


class CreateRecordConfig(StepConfigBase):
    record_type: Optional[str] = None
    record_data: dict[str, Any] = Field(default_factory=dict)

    def problems(self) -> list[str]:
        return [] if self.record_type else ["needs a record type"]


class WaitConfig(StepConfigBase):
    wait_days: Optional[float] = None
    wait_hours: Optional[float] = None
    wait_minutes: Optional[float] = None
    wait_until: Optional[str] = None
    wait_until_field: Optional[str] = None

    @property
    def has_target(self) -> bool:
        return bool(
            self.wait_days or self.wait_hours or self.wait_minutes
            or self.wait_until or self.wait_until_field
        )

    def problems(self) -> list[str]:
        return [] if self.has_target else ["needs a duration, a date or a date field"]


class DecisionConfig(StepConfigBase):
    """Branches are an explicit ``{"true": key, "false": key}`` mapping.

    The older canvas format ``[{"condition": "true", "next_step_key": ...}]``
    and the ``condition_field``/``condition_operator``/``condition_value``
    spellings are accepted on input.
    """

    field: Optional[str] = Field(default=None, validation_alias=AliasChoices("field", "condition_field"))
    operator: str = Field(default="equals", validation_alias=AliasChoices("operator", "condition_operator"))
    value: Any = Field(default=None, validation_alias=AliasChoices("value", "condition_value"))
    branches: dict[DecisionBranch, Optional[str]] = Field(default_factory=dict)

    @field_validator("branches", mode="before")
    @classmethod
    def _branches_from_list(cls, value):
        if value is None:
            return {}
        if isinstance(value, list):
            mapping = {}
            for entry in value:
                if isinstance(entry, dict) and entry.get("condition") in ("true", "false"):
                    mapping[entry["condition"]] = entry.get("next_step_key")
            return mapping
        return value

    def branch_target(self, outcome: bool) -> Optional[str]:
        return self.branches.get(DecisionBranch.TRUE if outcome else DecisionBranch.FALSE)

    def as_condition(self) -> dict:
        return {"field": self.field, "operator": self.operator, "value": self.value}

    def problems(self) -> list[str]:
        return [] if self.field else ["needs a field to test"]


class WebhookConfig(StepConfigBase):
    url: Optional[str] = Field(default=None, validation_alias=AliasChoices("url", "webhook_url"))
    method: str = Field(default="POST", validation_alias=AliasChoices("method", "webhook_method"))
    headers: dict[str, str] = Field(
        default_factory=dict, validation_alias=AliasChoices("headers", "webhook_headers")
    )
    body: Any = Field(default=None, validation_alias=AliasChoices("body", "webhook_body"))
    timeout: Optional[float] = None

    def problems(self) -> list[str]:
        issues = [] if self.url else ["needs a URL"]
        if self.method.upper() not in ("GET", "POST", "PUT", "PATCH", "DELETE"):
            issues.append(f"unsupported HTTP method '{self.method}'")
        return issues


StepConfig = Union[
    TriggerStepConfig,
    SendEmailConfig,
    SendSmsConfig,
    SendMessageConfig,
    CreateTaskConfig,
    UpdateFieldConfig,
    CreateRecordConfig,
    WaitConfig,
    DecisionConfig,
    WebhookConfig,
    EndStepConfig,
]

STEP_CONFIG_MODELS: dict[str, type[StepConfigBase]] = {
    StepType.TRIGGER.value: TriggerStepConfig,
    StepType.SEND_EMAIL.value: SendEmailConfig,
    StepType.SEND_SMS.value: SendSmsConfig,
    StepType.SEND_MESSAGE.value: SendMessageConfig,
    StepType.CREATE_TASK.value: CreateTaskConfig,
    StepType.UPDATE_FIELD.value: UpdateFieldConfig,
    StepType.CREATE_RECORD.value: CreateRecordConfig,
    StepType.WAIT.value: WaitConfig,
    StepType.DECISION.value: DecisionConfig,
    StepType.WEBHOOK.value: WebhookConfig,
    StepType.END.value: EndStepConfig,
}


def parse_step_config(step_type: str, raw: Optional[dict]) -> StepConfigBase:
    """Parse stored JSON into the model for ``step_type``.

    Raises:
        KeyError: unknown step type
        pydantic.ValidationError: a field has the wrong shape
    """
    model = STEP_CONFIG_MODELS[step_type]
    return model.model_validate(raw or {})
