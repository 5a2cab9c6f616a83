"""Tests for typed step settings."""

import pydantic
import pytest

from workflow.step_configs import (
    CreateTaskConfig,
    DecisionConfig,
    SendEmailConfig,
    WaitConfig,
    WebhookConfig,
    parse_step_config,
)

pytestmark = pytest.mark.unit


class TestParsing:
    def test_model_per_type(self):
        assert isinstance(parse_step_config("send_email", {"body": "Hi"}), SendEmailConfig)
        assert isinstance(parse_step_config("wait", None), WaitConfig)

    def test_unknown_type(self):
        with pytest.raises(KeyError):
            parse_step_config("fax", {})

    def test_wrong_shape(self):
        with pytest.raises(pydantic.ValidationError):
            parse_step_config("wait", {"wait_days": "a week"})

    def test_extra_keys_kept(self):
        config = parse_step_config("send_sms", {"body": "Hi", "emoji": True})
        assert config.model_extra == {"emoji": True}

    def test_legacy_aliases(self):
        assert parse_step_config("send_email", {"content": "Hi"}).body == "Hi"
        assert parse_step_config("send_sms", {"message": "Hi"}).body == "Hi"
        webhook = parse_step_config("webhook", {"webhook_url": "https://x.test", "webhook_method": "PUT"})
        assert (webhook.url, webhook.method) == ("https://x.test", "PUT")


class TestProblems:
    @pytest.mark.parametrize("step_type,raw,problem", [
        ("send_email", {}, "needs an email template or a message body"),
        ("send_email", {"body": "Hi", "to_type": "custom"}, "custom recipient selected but no address given"),
        ("send_email", {"template_id": "tpl-1"}, "uses unknown email template 'tpl-1'"),
        ("send_sms", {}, "needs a message body"),
        ("send_message", {}, "needs a message body"),
        ("update_field", {"value": 1}, "needs the field to update"),
        ("create_record", {}, "needs a record type"),
        ("wait", {}, "needs a duration, a date or a date field"),
        ("decision", {}, "needs a field to test"),
        ("webhook", {}, "needs a URL"),
        ("create_task", {}, "needs at least one task title"),
        ("create_task", {"tasks": [{"title": "Call"}, {"priority": "high"}]}, "every task needs a title"),
    ])
    def test_incomplete(self, step_type, raw, problem):
        assert problem in parse_step_config(step_type, raw).problems()

    def test_unsupported_method(self):
        config = WebhookConfig(url="https://x.test", method="TRACE")
        assert config.problems() == ["unsupported HTTP method 'TRACE'"]

    @pytest.mark.parametrize("step_type,raw", [
        ("trigger", {}),
        ("end", {}),
        ("send_email", {"template_id": "inquiry-response"}),
        ("send_email", {"template_id": "Initial Inquiry Response"}),
        ("send_email", {"template_id": "retired-template", "body": "Hi"}),
        ("wait", {"wait_until_field": "due_date"}),
        ("create_task", {"title": "Schedule prenatal visit"}),
    ])
    def test_complete(self, step_type, raw):
        assert parse_step_config(step_type, raw).problems() == []


class TestDecision:
    def test_mapping_branches(self):
        config = DecisionConfig.model_validate({"field": "tier", "branches": {"true": "vip", "false": "standard"}})
        assert config.branch_target(True) == "vip"
        assert config.branch_target(False) == "standard"

    def test_list_branches_and_legacy_fields(self):
        config = DecisionConfig.model_validate({
            "condition_field": "amount",
            "condition_operator": "greater_than",
            "condition_value": 100,
            "branches": [
                {"condition": "true", "next_step_key": "thank_you"},
                {"condition": "maybe", "next_step_key": "ignored"},
            ],
        })
        assert config.as_condition() == {"field": "amount", "operator": "greater_than", "value": 100}
        assert config.branch_target(True) == "thank_you"
        assert config.branch_target(False) is None


def test_single_task_shorthand():
    specs = CreateTaskConfig(title="Send intake form", due_days=2, priority="high").task_specs()
    assert len(specs) == 1
    assert (specs[0].title, specs[0].due_days, specs[0].priority) == ("Send intake form", 2, "high")
