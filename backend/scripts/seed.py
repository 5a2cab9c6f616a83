"""Database seed script: creates the template gallery and a demo practice.

Run: python -m scripts.seed
"""

import asyncio
import os
import sys

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


def _step(key, step_type, order, next_step_key=None, **config):
    return {
        "step_key": key,
        "step_type": step_type,
        "step_order": order,
        "step_config": config,
        "next_step_key": next_step_key,
        "position_x": 250.0,
        "position_y": 80.0 + order * 120.0,
    }


TEMPLATES = [
    {
        "name": "New Lead Welcome",
        "description": "Greet a new inquiry and remind the practice to call within two days.",
        "category": "onboarding",
        "object_type": "lead",
        "trigger_type": "record_create",
        "template_data": {
            "entry_criteria": {"match_type": "all", "conditions": []},
            "reentry_mode": "block_reentry",
            "steps": [
                _step("trigger", "trigger", 0, "welcome_email"),
                _step(
                    "welcome_email", "send_email", 1, "call_task",
                    label="Welcome email",
                    subject="Thanks for reaching out, {{record.first_name}}",
                    body="Hi {{record.first_name}}, we received your inquiry and will be in touch soon.",
                ),
                _step(
                    "call_task", "create_task", 2, "end",
                    title="Call {{record.first_name}} {{record.last_name}}",
                    action_type="call", priority="high", due_days=2,
                ),
                _step("end", "end", 3),
            ],
        },
    },
    {
        "name": "Consultation Reminder",
        "description": "Text the client the day before a consultation.",
        "category": "reminders",
        "object_type": "meeting",
        "trigger_type": "record_create",
        "template_data": {
            "entry_criteria": {
                "match_type": "all",
                "conditions": [{"field": "meeting_type", "operator": "equals", "value": "consultation"}],
            },
            "reentry_mode": "allow_all",
            "steps": [
                _step("trigger", "trigger", 0, "wait_day_before"),
                _step("wait_day_before", "wait", 1, "reminder_sms", wait_until="{{record.reminder_at}}"),
                _step(
                    "reminder_sms", "send_sms", 2, "end",
                    body="Reminder: your consultation is tomorrow at {{record.start_time}}.",
                    continue_on_error=True,
                ),
                _step("end", "end", 3),
            ],
        },
    },
    {
        "name": "Invoice Follow-up",
        "description": "Wait a week after an invoice is sent, then nudge if it is still unpaid.",
        "category": "billing",
        "object_type": "invoice",
        "trigger_type": "field_change",
        "template_data": {
            "trigger_config": {"field": "status", "to_value": "sent"},
            "reentry_mode": "reentry_after_exit",
            "steps": [
                _step("trigger", "trigger", 0, "wait_week"),
                _step("wait_week", "wait", 1, "still_unpaid", wait_days=7),
                _step(
                    "still_unpaid", "decision", 2,
                    field="status", operator="not_equals", value="paid",
                    branches={"true": "nudge_email", "false": "end"},
                ),
                _step(
                    "nudge_email", "send_email", 3, "end",
                    subject="Friendly reminder about invoice {{record.invoice_number}}",
                    body="Hi {{record.client_name}}, invoice {{record.invoice_number}} is still open.",
                ),
                _step("end", "end", 4),
            ],
        },
    },
    {
        "name": "Postpartum Check-in",
        "description": "Portal message two weeks after a birth service is marked complete.",
        "category": "follow_up",
        "object_type": "service",
        "trigger_type": "field_change",
        "template_data": {
            "trigger_config": {"field": "status", "to_value": "completed"},
            "reentry_mode": "block_reentry",
            "steps": [
                _step("trigger", "trigger", 0, "wait_two_weeks"),
                _step("wait_two_weeks", "wait", 1, "check_in", wait_days=14),
                _step(
                    "check_in", "send_message", 2, "end",
                    subject="Thinking of you",
                    body="How are you and the baby doing? Reply here any time.",
                ),
                _step("end", "end", 3),
            ],
        },
    },
]


async def seed():
    """Seed the database with default data."""
    from sqlalchemy import select

    from db.database import AsyncSessionLocal, init_db
    from db.models.organization import Organization
    from db.models.workflow_template import WorkflowTemplate

    await init_db()

    async with AsyncSessionLocal() as db:
        # 1. Demo practice
        result = await db.execute(select(Organization).where(Organization.slug == "demo-practice"))
        org = result.scalar_one_or_none()
        if not org:
            org = Organization(
                name="Demo Doula Practice",
                slug="demo-practice",
                subscription_tier="professional",
                is_active=True,
                settings={"timezone": "America/New_York"},
            )
            db.add(org)
            await db.flush()
            print(f"[seed] Created organization: {org.name} ({org.id})")
        else:
            print(f"[seed] Organization exists: {org.name}")

        # 2. Template gallery
        created = 0
        for definition in TEMPLATES:
            result = await db.execute(
                select(WorkflowTemplate).where(WorkflowTemplate.name == definition["name"])
            )
            if result.scalar_one_or_none():
                continue
            db.add(WorkflowTemplate(is_active=True, **definition))
            created += 1
        print(f"[seed] Created {created} template(s), {len(TEMPLATES) - created} already present")

        await db.commit()
    print("[seed] Done")


if __name__ == "__main__":
    asyncio.run(seed())
