"""Constants and enums for the workflow automation engine."""

from enum import Enum


class ObjectType(str, Enum):
    """Business record types a workflow can be attached to."""

    LEAD = "lead"
    MEETING = "meeting"
    PAYMENT = "payment"
    INVOICE = "invoice"
    SERVICE = "service"
    DOCUMENT = "document"
    CONTRACT = "contract"
    INTAKE_FORM = "intake_form"


class TriggerType(str, Enum):
    """What kind of record event starts a workflow."""

    RECORD_CREATE = "record_create"
    RECORD_UPDATE = "record_update"
    FIELD_CHANGE = "field_change"
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    FORM_SUBMIT = "form_submit"
    PAYMENT_RECEIVED = "payment_received"


class EventKind(str, Enum):
    """Kinds of record events emitted by the CRM write path."""

    CREATE = "create"
    UPDATE = "update"
    FIELD_CHANGE = "field_change"
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    FORM_SUBMIT = "form_submit"
    PAYMENT_RECEIVED = "payment_received"


# Trigger types a given event kind can fire
EVENT_TRIGGER_TYPES: dict[str, tuple[str, ...]] = {
    EventKind.CREATE.value: (TriggerType.RECORD_CREATE.value,),
    EventKind.UPDATE.value: (TriggerType.RECORD_UPDATE.value, TriggerType.FIELD_CHANGE.value),
    EventKind.FIELD_CHANGE.value: (TriggerType.FIELD_CHANGE.value,),
    EventKind.MANUAL.value: (TriggerType.MANUAL.value,),
    EventKind.SCHEDULED.value: (TriggerType.SCHEDULED.value,),
    EventKind.FORM_SUBMIT.value: (TriggerType.FORM_SUBMIT.value,),
    EventKind.PAYMENT_RECEIVED.value: (TriggerType.PAYMENT_RECEIVED.value,),
}


class ReentryMode(str, Enum):
    """Whether a record may enter the same workflow more than once."""

    ALLOW_ALL = "allow_all"
    BLOCK_REENTRY = "block_reentry"
    REENTRY_AFTER_DAYS = "reentry_after_days"
    REENTRY_AFTER_EXIT = "reentry_after_exit"

    @classmethod
    def parse(cls, value: str | None) -> "ReentryMode":
        """Parse a stored mode, accepting the legacy ``no_reentry`` spelling."""
        if not value:
            return cls.ALLOW_ALL
        if value == "no_reentry":
            return cls.BLOCK_REENTRY
        return cls(value)


class StepType(str, Enum):
    """Node types on the workflow canvas."""

    TRIGGER = "trigger"
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    CREATE_TASK = "create_task"
    UPDATE_FIELD = "update_field"
    CREATE_RECORD = "create_record"
    WAIT = "wait"
    DECISION = "decision"
    SEND_MESSAGE = "send_message"
    WEBHOOK = "webhook"
    END = "end"


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (ExecutionStatus.RUNNING.value, ExecutionStatus.WAITING.value)
TERMINAL_STATUSES = (
    ExecutionStatus.COMPLETED.value,
    ExecutionStatus.FAILED.value,
    ExecutionStatus.CANCELLED.value,
)


class StepExecutionStatus(str, Enum):
    """Status of a single step attempt."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING = "waiting"  # visit that parked the execution on a wait step


class MatchType(str, Enum):
    """How entry conditions are combined."""

    ALL = "all"
    ANY = "any"


class ConditionOperator(str, Enum):
    """Operators usable in entry criteria and decision steps."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    GREATER_THAN_OR_EQUAL = "greater_than_or_equal"
    LESS_THAN = "less_than"
    LESS_THAN_OR_EQUAL = "less_than_or_equal"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"


# Older canvases stored list membership under these names
OPERATOR_ALIASES: dict[str, str] = {
    "in_list": ConditionOperator.IN.value,
    "not_in_list": ConditionOperator.NOT_IN.value,
}


class DecisionBranch(str, Enum):
    """Outgoing edges of a decision step."""

    TRUE = "true"
    FALSE = "false"


class TemplateCategory(str, Enum):
    """Workflow template gallery categories."""

    ONBOARDING = "onboarding"
    REMINDERS = "reminders"
    FOLLOW_UP = "follow_up"
    NOTIFICATIONS = "notifications"
    BILLING = "billing"
    CUSTOM = "custom"


class SubscriptionTier(str, Enum):
    """Practice subscription tiers."""

    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


# Included SMS segments per billing period; -1 means unlimited
SMS_INCLUDED_SEGMENTS: dict[str, int] = {
    SubscriptionTier.STARTER.value: 0,
    SubscriptionTier.PROFESSIONAL.value: 500,
    SubscriptionTier.ENTERPRISE.value: -1,
}


class AnalyticsRange(str, Enum):
    """Date windows offered by the workflow analytics view."""

    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    LAST_90_DAYS = "90d"
    ALL = "all"

    @property
    def days(self) -> int | None:
        return {"7d": 7, "30d": 30, "90d": 90}.get(self.value)
