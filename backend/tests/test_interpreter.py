"""Tests for the step interpreter: one step, one StepExecution row, one move along the graph."""

import json
from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql

from core.exceptions import ConflictError
from db.models.client_task import ClientTask
from db.models.execution import WorkflowExecution
from db.models.portal_message import PortalMessage
from db.models.step_execution import StepExecution
from db.models.workflow_step import WorkflowStep
from notifications.channels import PortalChannel, StepChannels
from services.record_service import RecordService
from workflow.interpreter import StepInterpreter, StepOutcome

pytestmark = pytest.mark.integration

NOW = datetime(2025, 3, 1, 9, 0)


def single_step(key, step_type, **config):
    """trigger -> <key> -> end"""
    return [
        {"step_key": "trigger", "step_type": "trigger", "next_step_key": key},
        {"step_key": key, "step_type": step_type, "step_config": config, "next_step_key": "end"},
        {"step_key": "end", "step_type": "end"},
    ]


@pytest.fixture
def channels(db_session, email_channel, sms_channel):
    return StepChannels(email=email_channel, sms=sms_channel, portal=PortalChannel(db_session))


@pytest.fixture
def interpreter(db_session, channels):
    return StepInterpreter(db_session, channels=channels)


async def row_for(db_session, result) -> StepExecution:
    return await db_session.get(StepExecution, result.step_execution_id)


# ─── Linear flow ───

class TestLinearFlow:
    async def test_send_email_advances_and_records_output(
        self, db_session, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow()
        record = await make_record(first_name="Jane", email="jane@example.com")
        execution = await start_execution(wf, record)

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.ADVANCE
        assert result.next_step_key == "end"
        assert execution.current_step_key == "end"
        assert execution.last_step_key == "welcome"
        assert execution.status == "running"

        sent = email_channel.sent[0]
        assert sent.recipient == "jane@example.com"
        assert sent.title == "Welcome Jane"
        assert sent.message == "Hi Jane!"
        assert execution.context["step_results"]["welcome"]["to"] == "jane@example.com"

        row = await row_for(db_session, result)
        step = await db_session.scalar(
            select(WorkflowStep).where(WorkflowStep.workflow_id == wf.id, WorkflowStep.step_key == "welcome")
        )
        assert row.status == "completed"
        assert row.sequence == 1
        assert row.attempt == 1
        assert row.step_id == step.id
        assert row.input["config"]["subject"] == "Welcome {{ first_name }}"

    async def test_email_template_fills_subject_and_body(
        self, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow(steps=single_step("welcome", "send_email", template_id="inquiry-response"))
        execution = await start_execution(wf, await make_record(first_name="Jane", email="jane@example.com"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.ADVANCE
        sent = email_channel.sent[0]
        assert sent.title == "Thank you for reaching out, Jane!"
        assert sent.message.startswith("Hi Jane,")
        assert sent.template == "inquiry-response"

    async def test_step_subject_overrides_template(
        self, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        steps = single_step("welcome", "send_email", template_id="inquiry-response", subject="Hello {{ first_name }}")
        wf = await make_workflow(steps=steps)
        execution = await start_execution(wf, await make_record(first_name="Jane", email="jane@example.com"))

        await interpreter.execute_step(execution, NOW)

        assert email_channel.sent[0].title == "Hello Jane"
        assert email_channel.sent[0].message.startswith("Hi Jane,")

    async def test_unknown_email_template_fails_without_sending(
        self, db_session, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow(steps=single_step("welcome", "send_email", template_id="welcome-tpl"))
        execution = await start_execution(wf, await make_record(email="jane@example.com"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.FAILED
        assert result.retryable is False
        assert "unknown email template 'welcome-tpl'" in result.error
        assert email_channel.sent == []
        assert (await row_for(db_session, result)).status == "failed"

    async def test_empty_rendered_body_fails_without_sending(
        self, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow(steps=single_step("welcome", "send_email", body="{{ nickname }}"))
        execution = await start_execution(wf, await make_record(email="jane@example.com"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.FAILED
        assert result.retryable is False
        assert result.error == "Email body rendered empty"
        assert email_channel.sent == []

    async def test_end_step_completes(self, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record(email="a@example.com"))

        await interpreter.execute_step(execution, NOW)
        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.END
        assert execution.status == "completed"
        assert execution.completed_at == NOW
        assert execution.current_step_key is None
        assert execution.last_step_key == "end"

    async def test_rows_are_sequenced(self, db_session, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record(email="a@example.com"))

        await interpreter.execute_step(execution, NOW)
        await interpreter.execute_step(execution, NOW)

        rows = (await db_session.execute(
            select(StepExecution).where(StepExecution.execution_id == execution.id).order_by(StepExecution.sequence)
        )).scalars().all()
        assert [(r.sequence, r.step_key) for r in rows] == [(1, "welcome"), (2, "end")]

    async def test_terminal_execution_is_rejected(self, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record())
        execution.status = "completed"

        with pytest.raises(ConflictError):
            await interpreter.execute_step(execution, NOW)

    async def test_no_current_step_completes_without_a_row(
        self, db_session, interpreter, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record())
        execution.current_step_key = None

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.END
        assert result.step_execution_id is None
        assert execution.status == "completed"


# ─── Gates, waits and decisions ───

class TestControlFlow:
    async def test_false_condition_skips_step(
        self, db_session, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        steps = single_step(
            "vip_email", "send_email", body="Hello",
            condition={"field": "tier", "operator": "equals", "value": "vip"},
        )
        wf = await make_workflow(steps=steps)
        execution = await start_execution(wf, await make_record(tier="basic", email="a@example.com"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.SKIPPED
        assert execution.current_step_key == "end"
        assert email_channel.sent == []
        assert (await row_for(db_session, result)).status == "skipped"

    async def test_true_condition_runs_step(self, interpreter, email_channel, make_workflow, make_record, start_execution):
        steps = single_step(
            "vip_email", "send_email", body="Hello",
            condition={"field": "tier", "operator": "equals", "value": "vip"},
        )
        wf = await make_workflow(steps=steps)
        execution = await start_execution(wf, await make_record(tier="vip", email="a@example.com"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.ADVANCE
        assert len(email_channel.sent) == 1

    async def test_wait_parks_then_resumes(self, db_session, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step("pause", "wait", wait_days=2, label="Cool off"))
        execution = await start_execution(wf, await make_record())

        first = await interpreter.execute_step(execution, NOW)
        assert first.status == StepOutcome.WAIT
        assert (await row_for(db_session, first)).status == "waiting"
        assert execution.status == "waiting"
        assert execution.next_run_at == NOW + timedelta(days=2)
        assert execution.current_step_key == "pause"
        assert execution.waiting_for == "Cool off until 2025-03-03T09:00"

        early = await interpreter.execute_step(execution, NOW + timedelta(days=1))
        assert early.status == StepOutcome.WAIT
        assert execution.next_run_at == NOW + timedelta(days=2)

        resumed = await interpreter.execute_step(execution, NOW + timedelta(days=2, minutes=1))
        assert resumed.status == StepOutcome.ADVANCE
        assert execution.status == "running"
        assert execution.next_run_at is None
        assert execution.waiting_for is None
        assert execution.current_step_key == "end"
        assert (await row_for(db_session, resumed)).status == "completed"

    async def test_wait_until_past_date_continues(self, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step("pause", "wait", wait_until_field="due_date"))
        execution = await start_execution(wf, await make_record(due_date="2020-01-01T00:00:00"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.ADVANCE
        assert execution.status == "running"

    async def test_wait_until_field_in_future(self, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step("pause", "wait", wait_until_field="due_date"))
        execution = await start_execution(wf, await make_record(due_date="2025-04-01T12:00:00Z"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.WAIT
        assert execution.next_run_at == datetime(2025, 4, 1, 12, 0)

    async def test_wait_until_field_not_a_date_fails(self, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step("pause", "wait", wait_until_field="due_date"))
        execution = await start_execution(wf, await make_record(due_date="next tuesday"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.FAILED
        assert result.retryable is False
        assert "is not a date" in result.error

    @pytest.mark.parametrize("status,branch", [("new", "welcome_sms"), ("contacted", "end")])
    async def test_decision_follows_branch(
        self, interpreter, make_workflow, make_record, start_execution, status, branch
    ):
        steps = [
            {"step_key": "trigger", "step_type": "trigger", "next_step_key": "is_new"},
            {
                "step_key": "is_new",
                "step_type": "decision",
                "step_config": {
                    "field": "status", "operator": "equals", "value": "new",
                    "branches": {"true": "welcome_sms", "false": "end"},
                },
            },
            {"step_key": "welcome_sms", "step_type": "send_sms", "step_config": {"body": "Hi"}, "next_step_key": "end"},
            {"step_key": "end", "step_type": "end"},
        ]
        wf = await make_workflow(steps=steps)
        execution = await start_execution(wf, await make_record(status=status, phone="+15125550100"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.ADVANCE
        assert execution.current_step_key == branch
        assert result.output["result"] is (status == "new")
        assert result.output["actual"] == status


# ─── Failures ───

class TestFailures:
    async def test_delivery_failure_is_retryable(
        self, db_session, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        email_channel.error = "SMTP timeout"
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record(email="a@example.com"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.FAILED
        assert result.retryable is True
        assert result.error == "SMTP timeout"
        assert execution.error_message == "SMTP timeout"
        assert execution.current_step_key == "welcome"
        assert execution.status == "running"
        row = await row_for(db_session, result)
        assert row.status == "failed"
        assert row.error_message == "SMTP timeout"

    async def test_continue_on_error_advances(
        self, db_session, interpreter, sms_channel, make_workflow, make_record, start_execution
    ):
        sms_channel.error = "carrier rejected"
        sms_channel.retryable = False
        wf = await make_workflow(steps=single_step("text", "send_sms", body="Hi", continue_on_error=True))
        execution = await start_execution(wf, await make_record(phone="+15125550100"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.ADVANCE
        assert execution.current_step_key == "end"
        assert execution.error_message is None
        assert execution.context["step_results"]["text"] == {"error": "carrier rejected"}
        assert (await row_for(db_session, result)).status == "failed"

    async def test_missing_recipient_is_not_retryable(self, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record(first_name="No Email"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.FAILED
        assert result.retryable is False
        assert result.error == "No recipient email address"

    async def test_incomplete_config_is_not_retryable(self, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step("text", "send_sms"))
        execution = await start_execution(wf, await make_record(phone="+15125550100"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.FAILED
        assert result.retryable is False
        assert "needs a message body" in result.error

    async def test_step_missing_from_snapshot(
        self, db_session, interpreter, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record())
        execution.current_step_key = "ghost"

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.FAILED
        assert result.retryable is False
        row = await row_for(db_session, result)
        assert row.step_type == "unknown"
        assert row.step_key == "ghost"

    async def test_retry_policy_is_passed_through(
        self, interpreter, sms_channel, make_workflow, make_record, start_execution
    ):
        sms_channel.error = "503"
        wf = await make_workflow(steps=single_step("text", "send_sms", body="Hi", retry_policy="messaging"))
        execution = await start_execution(wf, await make_record(phone="+15125550100"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.retry_policy == "messaging"


# ─── Snapshot and cancellation ───

class TestSnapshotAndCancel:
    async def test_edits_after_start_do_not_affect_the_run(
        self, db_session, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record(first_name="Jane", email="a@example.com"))

        step = await db_session.scalar(
            select(WorkflowStep).where(WorkflowStep.workflow_id == wf.id, WorkflowStep.step_key == "welcome")
        )
        step.step_config = {"subject": "Edited", "body": "Edited"}
        await db_session.commit()

        await interpreter.execute_step(execution, NOW)

        assert email_channel.sent[0].title == "Welcome Jane"

    async def test_deleted_step_leaves_step_id_empty(
        self, db_session, interpreter, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record(email="a@example.com"))

        step = await db_session.scalar(
            select(WorkflowStep).where(WorkflowStep.workflow_id == wf.id, WorkflowStep.step_key == "welcome")
        )
        await db_session.delete(step)
        await db_session.commit()

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.ADVANCE
        assert (await row_for(db_session, result)).step_id is None

    async def test_cancel_during_step_marks_row_skipped(
        self, db_session, interpreter, email_channel, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record(email="a@example.com"))

        async def cancel_elsewhere(_notification):
            await db_session.execute(
                update(WorkflowExecution)
                .where(WorkflowExecution.id == execution.id)
                .values(status="cancelled")
                .execution_options(synchronize_session=False)
            )

        email_channel.on_send = cancel_elsewhere

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.CANCELLED
        assert execution.status == "cancelled"
        assert execution.current_step_key == "welcome"
        row = await row_for(db_session, result)
        assert row.status == "skipped"
        assert "cancelled" in row.error_message

    async def test_cancel_check_locks_the_execution_row(
        self, db_session, interpreter, make_workflow, make_record, start_execution, monkeypatch
    ):
        wf = await make_workflow()
        execution = await start_execution(wf, await make_record(email="a@example.com"))
        statements = []
        scalar = db_session.scalar

        async def recording_scalar(statement, *args, **kwargs):
            statements.append(statement)
            return await scalar(statement, *args, **kwargs)

        monkeypatch.setattr(db_session, "scalar", recording_scalar)

        await interpreter.execute_step(execution, NOW)

        compiled = [str(s.compile(dialect=postgresql.dialect())) for s in statements]
        assert any("workflow_executions" in sql and "FOR UPDATE" in sql for sql in compiled)


# ─── Record and portal steps ───

class TestRecordSteps:
    async def test_update_field(self, db_session, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step("mark", "update_field", field="status", value="contacted"))
        record = await make_record(status="new")
        execution = await start_execution(wf, record)

        result = await interpreter.execute_step(execution, NOW)

        assert result.output == {"field": "status", "old_value": "new", "new_value": "contacted"}
        await db_session.refresh(record)
        assert record.data["status"] == "contacted"
        assert execution.context["record_data"]["status"] == "contacted"

    async def test_update_field_without_record_fails(
        self, db_session, interpreter, make_workflow, make_record, start_execution
    ):
        wf = await make_workflow(steps=single_step("mark", "update_field", field="status", value="x"))
        record = await make_record(status="new")
        execution = await start_execution(wf, record)
        await db_session.delete(record)
        await db_session.flush()

        result = await interpreter.execute_step(execution, NOW)

        assert result.status == StepOutcome.FAILED
        assert result.retryable is False

    async def test_create_task_for_client(self, db_session, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step(
            "todo", "create_task", title="Sign contract, {{ first_name }}", due_days=3, priority="high",
        ))
        execution = await start_execution(wf, await make_record(client_id="client-42", first_name="Jane"))

        result = await interpreter.execute_step(execution, NOW)

        assert result.output["count"] == 1
        item = (await db_session.execute(select(ClientTask))).scalars().one()
        assert item.client_id == "client-42"
        assert item.title == "Sign contract, Jane"
        assert item.priority == "high"
        assert item.due_date == NOW + timedelta(days=3)
        assert item.execution_id == execution.id

    async def test_create_record(self, db_session, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step(
            "invoice", "create_record", record_type="invoice", record_data={"amount": "{{ deposit }}"},
        ))
        execution = await start_execution(wf, await make_record(client_id="client-7", deposit=250))

        result = await interpreter.execute_step(execution, NOW)

        created = await RecordService(db_session).get_record(
            execution.organization_id, "invoice", result.output["record_id"]
        )
        assert created.client_id == "client-7"
        assert created.data == {"amount": 250}

    async def test_portal_message(self, db_session, interpreter, make_workflow, make_record, start_execution):
        wf = await make_workflow(steps=single_step(
            "note", "send_message", subject="Hello", body="Welcome, {{ first_name }}",
        ))
        execution = await start_execution(wf, await make_record(client_id="client-9", first_name="Ana"))

        result = await interpreter.execute_step(execution, NOW)

        message = (await db_session.execute(select(PortalMessage))).scalars().one()
        assert message.client_id == "client-9"
        assert message.body == "Welcome, Ana"
        assert result.output["message_id"] == message.id


# ─── Webhooks ───

class TestWebhookStep:
    async def _run(self, db_session, channels, handler, make_workflow, make_record, start_execution, **config):
        config.setdefault("url", "https://hooks.example.com/doula")
        wf = await make_workflow(steps=single_step("hook", "webhook", **config))
        execution = await start_execution(wf, await make_record(first_name="Jane"))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            channels.http = http
            result = await StepInterpreter(db_session, channels=channels).execute_step(execution, NOW)
        return execution, result

    async def test_posts_record_by_default(self, db_session, channels, make_workflow, make_record, start_execution):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        execution, result = await self._run(
            db_session, channels, handler, make_workflow, make_record, start_execution,
            headers={"X-Practice": "{{ first_name }}"},
        )

        assert result.status == StepOutcome.ADVANCE
        assert result.output["status_code"] == 200
        assert result.output["data"] == {"ok": True}
        request = seen[0]
        assert request.method == "POST"
        assert request.headers["X-Practice"] == "Jane"
        body = json.loads(request.content)
        assert body["execution_id"] == execution.id
        assert body["record"]["first_name"] == "Jane"

    async def test_server_error_is_retryable(self, db_session, channels, make_workflow, make_record, start_execution):
        _, result = await self._run(
            db_session, channels, lambda request: httpx.Response(503),
            make_workflow, make_record, start_execution,
        )
        assert result.status == StepOutcome.FAILED
        assert result.retryable is True
        assert "HTTP 503" in result.error

    async def test_client_error_is_not_retryable(self, db_session, channels, make_workflow, make_record, start_execution):
        _, result = await self._run(
            db_session, channels, lambda request: httpx.Response(404),
            make_workflow, make_record, start_execution,
        )
        assert result.retryable is False

    async def test_private_address_is_refused(self, db_session, channels, make_workflow, make_record, start_execution):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        _, result = await self._run(
            db_session, channels, handler, make_workflow, make_record, start_execution,
            url="http://10.0.0.5/hook",
        )
        assert result.status == StepOutcome.FAILED
        assert result.retryable is False
        assert calls == []
