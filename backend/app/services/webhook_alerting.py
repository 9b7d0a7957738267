"""Webhook alerting for high-severity CORS alerts.

Sends alerts to an external webhook URL (Discord, Slack, generic HTTP).
Alerts are fire-and-forget with short timeouts to avoid blocking callers.
"""

import asyncio
import json
import logging
from datetime import UTC, datetime

import httpx

from app.core.config import settings
from app.services.alert_system import Alert, Severity

logger = logging.getLogger(__name__)

# Short timeout for webhook calls; never block the caller
_WEBHOOK_TIMEOUT = 5.0

# Strong references so pending sends are not garbage collected mid-flight
_pending: set[asyncio.Task[None]] = set()


async def send_alert(
    title: str,
    message: str,
    severity: str = "warning",
    details: dict | None = None,
) -> None:
    """Send an alert to the configured webhook URL.

    No-op without a webhook URL. Failures are logged and never raised.

    Args:
        title: Short alert title
        message: Alert description
        severity: One of "info", "warning", "critical"
        details: Optional additional context
    """
    webhook_url = settings.alert_webhook_url
    if not webhook_url:
        return

    payload = _build_payload(title, message, severity, details, webhook_url)

    try:
        async with httpx.AsyncClient(timeout=_WEBHOOK_TIMEOUT) as client:
            response = await client.post(webhook_url, json=payload)
            if response.status_code >= 400:
                logger.warning("Webhook alert failed: HTTP %d", response.status_code)
    except Exception as e:
        logger.warning("Webhook alert failed: %s", e)


def _build_payload(
    title: str,
    message: str,
    severity: str,
    details: dict | None,
    webhook_url: str,
) -> dict:
    """Build webhook payload, adapting format for known services."""
    timestamp = datetime.now(UTC).isoformat()
    severity_emoji = {"info": "ℹ️", "warning": "⚠️", "critical": "🚨"}.get(severity, "❓")

    if "discord.com/api/webhooks" in webhook_url:
        content = f"{severity_emoji} **{title}**\n{message}"
        if details:
            content += "\n```json\n" + json.dumps(details, indent=2)[:1500] + "\n```"
        return {"content": content}

    if "hooks.slack.com" in webhook_url:
        text = f"{severity_emoji} *{title}*\n{message}"
        if details:
            text += f"\n```{json.dumps(details, indent=2)[:1500]}```"
        return {"text": text}

    return {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": timestamp,
        "details": details or {},
        "source": "securityx",
    }


def notify_security_alert(alert: Alert) -> None:
    """AlertSystem notifier: forward HIGH/CRITICAL alerts in production.

    Called synchronously from the request path, so the HTTP call is
    scheduled on the running loop instead of awaited.
    """
    if not settings.is_production or not settings.alert_webhook_url:
        return
    if alert.severity not in (Severity.HIGH, Severity.CRITICAL):
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No running event loop; skipping webhook for alert %s", alert.id)
        return

    task = loop.create_task(
        send_alert(
            title=f"CORS {alert.kind.value} ({alert.severity.value})",
            message=f"{alert.origin} from {alert.client_addr}",
            severity="critical" if alert.severity is Severity.CRITICAL else "warning",
            details=alert.to_dict(),
        )
    )
    _pending.add(task)
    task.add_done_callback(_pending.discard)
