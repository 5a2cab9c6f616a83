"""Messaging steps: email, SMS and portal messages to the practice's client."""

from typing import Any, Optional

from core.exceptions import StepExecutionError
from notifications.channels import DeliveryResult, Notification, NotificationChannel
from notifications.email_templates import get_email_template
from tasks.base_task import BaseTask, StepContext, TaskResult
from workflow.conditions import resolve_field
from workflow.step_configs import SendEmailConfig, SendMessageConfig, SendSmsConfig

EMAIL_FIELDS = ("email", "client_email")
PHONE_FIELDS = ("phone", "phone_number", "client_phone")


def _first_value(data: dict, fields) -> Optional[str]:
    for name in fields:
        value = resolve_field(data, name)
        if value not in (None, ""):
            return str(value)
    return None


def _raise_for_delivery(result: DeliveryResult) -> None:
    if not result.success:
        raise StepExecutionError(
            result.error or f"{result.channel.value} delivery failed",
            retryable=result.retryable,
        )


class SendEmailTask(BaseTask):
    """Send an email to the record's client, a field on the record, or a fixed address."""

    task_type = "send_email"
    display_name = "Send Email"
    description = "Email the client"

    def _recipient(self, config: SendEmailConfig, context: StepContext) -> Optional[str]:
        if config.to_type == "custom":
            return context.render(config.to_email) or None
        if config.to_field:
            return _first_value(context.data.record_data, (config.to_field,))
        return _first_value(context.data.record_data, EMAIL_FIELDS)

    async def execute(self, config: SendEmailConfig, context: StepContext) -> TaskResult:
        recipient = self._recipient(config, context)
        if not recipient:
            raise StepExecutionError("No recipient email address", retryable=False)

        subject_source, body_source = config.subject, config.body
        if config.template_id:
            template = get_email_template(config.template_id)
            if template is None and not body_source:
                raise StepExecutionError(f"Unknown email template '{config.template_id}'", retryable=False)
            if template is not None:
                subject_source = subject_source or template.subject
                body_source = body_source or template.body

        subject = context.render(subject_source)
        body = context.render(body_source)
        if not body:
            raise StepExecutionError("Email body rendered empty", retryable=False)
        result = await context.channels.email.send(Notification(
            channel=NotificationChannel.EMAIL,
            recipient=recipient,
            title=subject,
            message=body,
            organization_id=context.organization_id,
            execution_id=context.execution.id,
            template=config.template_id,
        ))
        _raise_for_delivery(result)

        return TaskResult(success=True, output={
            "to": recipient,
            "subject": subject,
            "template_id": config.template_id,
            "delivered_at": result.delivered_at,
        })


class SendSmsTask(BaseTask):
    task_type = "send_sms"
    display_name = "Send SMS"
    description = "Text the client"

    async def execute(self, config: SendSmsConfig, context: StepContext) -> TaskResult:
        if config.to_phone:
            recipient = context.render(config.to_phone) or None
        elif config.to_field:
            recipient = _first_value(context.data.record_data, (config.to_field,))
        else:
            recipient = _first_value(context.data.record_data, PHONE_FIELDS)
        if not recipient:
            raise StepExecutionError("No recipient phone number", retryable=False)

        body = context.render(config.body)
        result = await context.channels.sms.send(Notification(
            channel=NotificationChannel.SMS,
            recipient=recipient,
            message=body,
            organization_id=context.organization_id,
            execution_id=context.execution.id,
        ))
        _raise_for_delivery(result)

        output: dict[str, Any] = {"to": recipient, "sid": result.provider_id}
        output.update(result.details)
        return TaskResult(success=True, output=output)


class SendMessageTask(BaseTask):
    """Post a message to the client's portal inbox."""

    task_type = "send_message"
    display_name = "Portal Message"
    description = "Message the client in their portal"

    async def execute(self, config: SendMessageConfig, context: StepContext) -> TaskResult:
        client_id = context.client_id
        if not client_id:
            raise StepExecutionError("Record has no client to message", retryable=False)

        result = await context.channels.portal.send(Notification(
            channel=NotificationChannel.PORTAL,
            recipient=client_id,
            title=context.render(config.subject),
            message=context.render(config.body),
            organization_id=context.organization_id,
            execution_id=context.execution.id,
        ))
        _raise_for_delivery(result)
        return TaskResult(success=True, output={"client_id": client_id, "message_id": result.provider_id})


MESSAGING_TASK_TYPES = {
    "send_email": SendEmailTask,
    "send_sms": SendSmsTask,
    "send_message": SendMessageTask,
}
