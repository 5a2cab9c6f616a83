"""Integration tests for API endpoints.

These tests exercise the full HTTP stack: FastAPI → route → service → DB.
Each test gets its own SQLite database file.
"""

from uuid import uuid4

import pytest

from core.security import create_access_token
from db.models.workflow_template import WorkflowTemplate
from workflow.scheduler import ExecutionScheduler

pytestmark = pytest.mark.integration

NEW_LEADS = {"match_type": "all", "conditions": [{"field": "status", "operator": "equals", "value": "new"}]}

WELCOME_PAYLOAD = {
    "name": "New lead welcome",
    "description": "Greets every new lead",
    "object_type": "lead",
    "trigger_type": "record_create",
    "entry_criteria": NEW_LEADS,
    "steps": [
        {"step_key": "trigger", "step_type": "trigger", "next_step_key": "welcome"},
        {
            "step_key": "welcome",
            "step_type": "send_email",
            "step_config": {"subject": "Welcome {{ first_name }}", "body": "Hi!"},
            "next_step_key": "end",
        },
        {"step_key": "end", "step_type": "end"},
    ],
}


async def create_workflow(client, headers, **overrides) -> dict:
    resp = await client.post("/api/v1/workflows/", headers=headers, json={**WELCOME_PAYLOAD, **overrides})
    assert resp.status_code == 201, resp.text
    return resp.json()


# ─── Health Endpoints ───

class TestHealthIntegration:
    async def test_liveness(self, client):
        resp = await client.get("/api/v1/health/")
        assert resp.status_code == 200
        data = resp.json()
        assert data["app"] == "Doula Workflow Engine"
        assert data["status"] == "ok"

    async def test_unversioned_liveness(self, client):
        resp = await client.get("/api/health/")
        assert resp.status_code == 200
        assert resp.headers["X-Content-Type-Options"] == "nosniff"


# ─── Authentication ───

class TestAuthIntegration:
    async def test_missing_token(self, client):
        resp = await client.get("/api/v1/workflows/")
        assert resp.status_code == 401

    async def test_garbage_token(self, client):
        resp = await client.get("/api/v1/workflows/", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    async def test_unknown_organization(self, client, test_org):
        token = create_access_token(user_id="user-1", org_id="no-such-practice", email="x@example.com")
        resp = await client.get("/api/v1/workflows/", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Organization not found"


# ─── Workflow Endpoints ───

class TestWorkflowIntegration:
    async def test_create_get_and_list(self, client, auth_headers):
        created = await create_workflow(client, auth_headers)

        assert created["is_active"] is False
        assert [s["step_key"] for s in created["steps"]] == ["trigger", "welcome", "end"]
        assert created["entry_criteria"] == NEW_LEADS

        resp = await client.get(f"/api/v1/workflows/{created['id']}", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["name"] == "New lead welcome"

        resp = await client.get("/api/v1/workflows/", headers=auth_headers, params={"object_type": "lead"})
        data = resp.json()
        assert data["total"] == 1
        assert data["page"] == 1
        assert data["workflows"][0]["id"] == created["id"]

        resp = await client.get("/api/v1/workflows/", headers=auth_headers, params={"object_type": "invoice"})
        assert resp.json()["total"] == 0

    async def test_create_rejects_unknown_object_type(self, client, auth_headers):
        resp = await client.post(
            "/api/v1/workflows/", headers=auth_headers, json={**WELCOME_PAYLOAD, "object_type": "spaceship"}
        )
        assert resp.status_code == 422

    async def test_update_settings(self, client, auth_headers):
        created = await create_workflow(client, auth_headers)

        resp = await client.put(
            f"/api/v1/workflows/{created['id']}",
            headers=auth_headers,
            json={"name": "Renamed", "reentry_mode": "reentry_after_days", "reentry_wait_days": 14},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "Renamed"
        assert data["reentry_mode"] == "reentry_after_days"
        assert data["reentry_wait_days"] == 14
        assert data["description"] == "Greets every new lead"

    async def test_save_canvas(self, client, auth_headers):
        created = await create_workflow(client, auth_headers)

        resp = await client.put(
            f"/api/v1/workflows/{created['id']}/canvas",
            headers=auth_headers,
            json={
                "steps": [
                    {"step_key": "trigger", "step_type": "trigger", "next_step_key": "end"},
                    {"step_key": "end", "step_type": "end", "position_x": 120, "position_y": 40},
                ],
                "canvas_data": {"zoom": 1.5},
            },
        )

        assert resp.status_code == 200
        data = resp.json()
        assert [s["step_key"] for s in data["steps"]] == ["trigger", "end"]
        assert data["steps"][1]["position_x"] == 120
        assert data["canvas_data"] == {"zoom": 1.5}

    async def test_duplicate_and_delete(self, client, auth_headers):
        created = await create_workflow(client, auth_headers)

        resp = await client.post(f"/api/v1/workflows/{created['id']}/duplicate", headers=auth_headers)
        assert resp.status_code == 201
        copy = resp.json()
        assert copy["id"] != created["id"]
        assert copy["is_active"] is False
        assert len(copy["steps"]) == 3

        resp = await client.delete(f"/api/v1/workflows/{created['id']}", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["message"] == "Workflow deleted"

        resp = await client.get(f"/api/v1/workflows/{created['id']}", headers=auth_headers)
        assert resp.status_code == 404

    async def test_other_organization_gets_404(self, client, make_workflow, db_session):
        from db.models.organization import Organization

        wf = await make_workflow()
        other = Organization(id=str(uuid4()), name="Other Practice", slug=f"other-{uuid4().hex[:6]}")
        db_session.add(other)
        await db_session.commit()
        token = create_access_token(user_id="user-2", org_id=other.id, email="other@example.com")

        resp = await client.get(f"/api/v1/workflows/{wf.id}", headers={"Authorization": f"Bearer {token}"})

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Workflow not found"
        assert "request_id" in resp.json()


# ─── Validation and activation ───

class TestActivationIntegration:
    async def test_validate(self, client, auth_headers):
        created = await create_workflow(client, auth_headers, entry_criteria=None)

        resp = await client.get(f"/api/v1/workflows/{created['id']}/validate", headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["is_valid"] is True
        assert data["errors"] == []
        assert any("No entry criteria" in w for w in data["warnings"])

    async def test_clean_workflow_activates(self, client, auth_headers):
        created = await create_workflow(client, auth_headers)

        resp = await client.post(
            f"/api/v1/workflows/{created['id']}/toggle", headers=auth_headers, json={"active": True}
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["workflow"]["is_active"] is True
        assert data["validation"]["is_valid"] is True

    async def test_warnings_need_force(self, client, auth_headers):
        created = await create_workflow(client, auth_headers, entry_criteria=None)
        url = f"/api/v1/workflows/{created['id']}/toggle"

        resp = await client.post(url, headers=auth_headers, json={"active": True})
        assert resp.status_code == 422
        body = resp.json()
        assert body["errors"] == []
        assert body["warnings"]

        resp = await client.post(url, headers=auth_headers, json={"active": True, "force": True})
        assert resp.status_code == 200
        assert resp.json()["workflow"]["is_active"] is True

    async def test_errors_block_activation(self, client, auth_headers):
        created = await create_workflow(client, auth_headers, steps=[
            {"step_key": "trigger", "step_type": "trigger"},
            {"step_key": "end", "step_type": "end"},
        ])

        resp = await client.post(
            f"/api/v1/workflows/{created['id']}/toggle",
            headers=auth_headers,
            json={"active": True, "force": True},
        )

        assert resp.status_code == 422
        assert "Trigger is not connected to any step" in resp.json()["errors"]

        resp = await client.get(f"/api/v1/workflows/{created['id']}", headers=auth_headers)
        assert resp.json()["is_active"] is False


# ─── Executions ───

class TestExecutionIntegration:
    async def test_manual_trigger_cancel_and_retry(self, client, auth_headers, make_workflow, make_record):
        wf = await make_workflow()
        record = await make_record(first_name="Jane", email="jane@example.com")

        resp = await client.post(
            f"/api/v1/workflows/{wf.id}/trigger",
            headers=auth_headers,
            json={"object_type": "lead", "record_id": record.id},
        )
        assert resp.status_code == 201, resp.text
        execution = resp.json()
        assert execution["status"] == "running"
        assert execution["trigger_type"] == "manual"
        assert execution["current_step_key"] == "welcome"

        resp = await client.get(f"/api/v1/executions/{execution['id']}", headers=auth_headers)
        assert resp.status_code == 200
        detail = resp.json()
        assert detail["step_executions"] == []
        assert detail["context"]["record_data"]["email"] == "jane@example.com"

        resp = await client.post(f"/api/v1/executions/{execution['id']}/retry", headers=auth_headers)
        assert resp.status_code == 409
        assert "this one is running" in resp.json()["detail"]

        resp = await client.post(f"/api/v1/executions/{execution['id']}/cancel", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

        resp = await client.post(f"/api/v1/executions/{execution['id']}/retry", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "running"
        assert resp.json()["current_step_key"] == "welcome"

        resp = await client.get(f"/api/v1/workflows/{wf.id}/executions", headers=auth_headers)
        assert [e["id"] for e in resp.json()] == [execution["id"]]

    async def test_manual_trigger_needs_active_workflow(self, client, auth_headers, make_workflow, make_record):
        wf = await make_workflow(is_active=False)
        record = await make_record()

        resp = await client.post(
            f"/api/v1/workflows/{wf.id}/trigger",
            headers=auth_headers,
            json={"object_type": "lead", "record_id": record.id},
        )

        assert resp.status_code == 409

    async def test_manual_trigger_unknown_record(self, client, auth_headers, make_workflow):
        wf = await make_workflow()

        resp = await client.post(
            f"/api/v1/workflows/{wf.id}/trigger",
            headers=auth_headers,
            json={"object_type": "lead", "record_id": "missing"},
        )

        assert resp.status_code == 404

    async def test_unknown_execution(self, client, auth_headers):
        resp = await client.get("/api/v1/executions/missing", headers=auth_headers)
        assert resp.status_code == 404

    async def test_records_picker(self, client, auth_headers, make_workflow, make_record):
        wf = await make_workflow()
        lead = await make_record(first_name="Jane")
        await make_record(object_type="invoice", amount=100)

        resp = await client.get(f"/api/v1/workflows/{wf.id}/records", headers=auth_headers)

        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == [lead.id]


# ─── Record events, end to end ───

class TestRecordEventIntegration:
    async def test_event_starts_workflow_and_scheduler_finishes_it(
        self, client, auth_headers, make_workflow, session_factory, channels_factory, email_channel
    ):
        wf = await make_workflow(entry_criteria=NEW_LEADS)
        await make_workflow(entry_criteria={"conditions": [{"field": "status", "operator": "equals", "value": "won"}]})

        resp = await client.post("/api/v1/events/", headers=auth_headers, json={
            "object_type": "lead",
            "record_id": "lead-42",
            "event_kind": "create",
            "record": {"status": "new", "first_name": "Jane", "email": "jane@example.com"},
        })

        assert resp.status_code == 202
        data = resp.json()
        assert data["started"] == 1
        started = next(o for o in data["outcomes"] if o["triggered"])
        assert started["workflow_id"] == wf.id

        report = await ExecutionScheduler(session_factory, channels_factory=channels_factory).run_cycle()
        assert report.completed == 1
        assert email_channel.sent[0].recipient == "jane@example.com"

        resp = await client.get(f"/api/v1/executions/{started['execution_id']}", headers=auth_headers)
        detail = resp.json()
        assert detail["status"] == "completed"
        assert [s["step_key"] for s in detail["step_executions"]] == ["welcome", "end"]
        assert detail["duration_ms"] is not None

        resp = await client.get(f"/api/v1/workflows/{wf.id}/analytics", headers=auth_headers)
        assert resp.status_code == 200
        analytics = resp.json()
        assert analytics["range"] == "30d"
        assert analytics["summary"]["completed"] == 1
        assert analytics["summary"]["success_rate"] == 100

    async def test_event_with_no_workflows(self, client, auth_headers):
        resp = await client.post("/api/v1/events/", headers=auth_headers, json={
            "object_type": "invoice", "record_id": "inv-1", "record": {"amount": 250},
        })

        assert resp.status_code == 202
        assert resp.json() == {"outcomes": [], "started": 0}


# ─── Templates ───

class TestTemplateIntegration:
    @pytest.fixture
    async def template(self, db_session):
        template = WorkflowTemplate(
            name="Birth Announcement Follow-up",
            category="follow_up",
            object_type="meeting",
            trigger_type="field_change",
            template_data={
                "trigger_config": {"field": "status", "to_value": "delivered"},
                "steps": [
                    {"step_key": "trigger", "step_type": "trigger", "next_step_key": "end"},
                    {"step_key": "end", "step_type": "end"},
                ],
            },
        )
        db_session.add(template)
        await db_session.commit()
        return template

    async def test_list_by_category(self, client, auth_headers, template):
        resp = await client.get("/api/v1/templates/", headers=auth_headers, params={"category": "follow_up"})
        assert [t["id"] for t in resp.json()] == [template.id]

        resp = await client.get("/api/v1/templates/", headers=auth_headers, params={"category": "billing"})
        assert resp.json() == []

    async def test_instantiate(self, client, auth_headers, template):
        resp = await client.post(
            f"/api/v1/templates/{template.id}/instantiate", headers=auth_headers, json={"name": "Our follow-up"}
        )

        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "Our follow-up"
        assert data["object_type"] == "meeting"
        assert data["trigger_config"] == {"field": "status", "to_value": "delivered"}
        assert data["is_active"] is False
        assert [s["step_key"] for s in data["steps"]] == ["trigger", "end"]
