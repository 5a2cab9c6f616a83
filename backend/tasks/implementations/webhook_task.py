"""Outbound webhook step.

Posts the execution's record (or a rendered custom body) to a practice's
endpoint. Targets are checked against private and loopback addresses and
internal service ports before any request is made.
"""

import ipaddress
from typing import Any, Dict
from urllib.parse import urlparse

import httpx
import structlog

from app.config import get_settings
from core.exceptions import StepExecutionError
from tasks.base_task import BaseTask, StepContext, TaskResult
from workflow.step_configs import WebhookConfig

logger = structlog.get_logger(__name__)

FORBIDDEN_PORTS = (5432, 6379, 9000)  # postgres, redis, deployer
MAX_RESPONSE_CHARS = 2000


def _is_private_ip(ip_str: str) -> bool:
    """True for private, loopback, link-local and reserved addresses.

    Returns False when ``ip_str`` is a hostname rather than an IP literal.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved


def validate_url_safety(url: str) -> None:
    """Reject URLs that could reach internal services.

    Raises:
        ValueError: if the URL is unsafe or malformed
    """
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme or 'none'}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")
    if hostname.lower() in ("localhost", "localhost.localdomain"):
        raise ValueError("Connections to localhost are not allowed")
    if _is_private_ip(hostname):
        raise ValueError(f"Connections to private IP {hostname} are not allowed")

    try:
        port = parsed.port
    except ValueError as e:
        raise ValueError(f"Invalid port: {e}")
    if port in FORBIDDEN_PORTS:
        raise ValueError(f"Connections to internal port {port} are not allowed")


class WebhookTask(BaseTask):
    """Call an external endpoint.

    Config:
        url: Target URL (required, may contain placeholders)
        method: GET, POST, PUT, PATCH or DELETE (default POST)
        headers: Extra request headers
        body: JSON body; defaults to the execution and record snapshot
        timeout: Seconds (default WEBHOOK_TIMEOUT_SECONDS)

    Non-2xx responses fail the step; 5xx, 429 and network errors are retryable.
    """

    task_type = "webhook"
    display_name = "Webhook"
    description = "Send record data to an external URL"

    def _default_body(self, context: StepContext) -> Dict[str, Any]:
        execution = context.execution
        return {
            "event": "workflow.step",
            "workflow_id": execution.workflow_id,
            "execution_id": execution.id,
            "step_key": context.node.key,
            "record_type": execution.record_type,
            "record_id": execution.record_id,
            "record": context.data.record_data,
        }

    async def execute(self, config: WebhookConfig, context: StepContext) -> TaskResult:
        url = context.render(config.url)
        try:
            validate_url_safety(url)
        except ValueError as e:
            raise StepExecutionError(str(e), retryable=False)

        method = config.method.upper()
        headers = {k: context.render(v) for k, v in config.headers.items()}
        timeout = config.timeout or get_settings().WEBHOOK_TIMEOUT_SECONDS

        kwargs: Dict[str, Any] = {"headers": headers, "timeout": timeout}
        if method in ("POST", "PUT", "PATCH"):
            body = config.body if config.body is not None else self._default_body(context)
            kwargs["json"] = context.render_value(body)

        client = context.channels.http if context.channels is not None else None
        try:
            if client is not None:
                response = await client.request(method, url, **kwargs)
            else:
                async with httpx.AsyncClient() as owned:
                    response = await owned.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise StepExecutionError(f"Webhook request failed: {e}", retryable=True)

        if not response.is_success:
            raise StepExecutionError(
                f"Webhook returned HTTP {response.status_code}",
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text[:MAX_RESPONSE_CHARS]

        logger.info("Webhook delivered", url=url, status_code=response.status_code)
        return TaskResult(success=True, output={"status_code": response.status_code, "url": url, "data": data})


WEBHOOK_TASK_TYPES = {
    "webhook": WebhookTask,
}
