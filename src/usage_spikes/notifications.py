"""Push-notification text for spike alerts.

Turns alerts into notification payloads (title, body, urgency) and decides
which notifications a batch of alerts should produce. Nothing here talks
to a device; delivery belongs to the publisher.
"""

from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, Field

from usage_spikes.models import Alert, Severity
from usage_spikes.severity import format_bytes


MAX_INDIVIDUAL = 3
SUMMARY_APP_NAMES = 3

_TITLES = {
    Severity.CRITICAL: "🚨 Critical Data Spike!",
    Severity.HIGH: "⚠️ High Data Usage Alert",
    Severity.MEDIUM: "📊 Data Spike Detected",
    Severity.LOW: "ℹ️ Usage Update",
}

_URGENCY = {
    Severity.CRITICAL: "high",
    Severity.HIGH: "high",
    Severity.MEDIUM: "normal",
    Severity.LOW: "low",
}


class Notification(BaseModel):
    """A rendered push notification."""

    title: str
    body: str
    tag: str
    urgency: str = "normal"
    require_interaction: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)


def format_spike_notification(alert: Alert) -> Notification:
    """Render a single alert as a notification.

    Args:
        alert: The alert to announce

    Returns:
        Notification: Title chosen by severity, body with usage figures
    """
    app_name = alert.app_name or "Unknown App"
    body = (
        f"{app_name} used {format_bytes(alert.current_usage)} today - "
        f"{alert.percentage_increase}% more than usual "
        f"({format_bytes(alert.expected_usage)})"
    )
    return Notification(
        title=_TITLES[alert.severity],
        body=body,
        tag=f"spike-{alert.id}",
        urgency=_URGENCY[alert.severity],
        require_interaction=alert.severity in (Severity.CRITICAL, Severity.HIGH),
        data={"type": "spike", **alert.to_dict()}
    )


def format_summary_notification(alerts: Sequence[Alert]) -> Notification:
    """Render several alerts as one summary notification.

    Args:
        alerts: Non-empty sequence of alerts

    Returns:
        Notification: Title by the highest severity, body naming up to
            three applications

    Raises:
        ValueError: If ``alerts`` is empty
    """
    if not alerts:
        raise ValueError("Cannot summarize an empty alert list")

    highest = max(alert.severity for alert in alerts)
    count = len(alerts)
    if highest == Severity.CRITICAL:
        title = f"🚨 {count} Critical Data Spikes!"
    else:
        title = f"⚠️ {count} Data Spikes Detected"

    names = ", ".join(alert.app_name or "Unknown App" for alert in alerts[:SUMMARY_APP_NAMES])
    more = f" and {count - SUMMARY_APP_NAMES} more" if count > SUMMARY_APP_NAMES else ""

    return Notification(
        title=title,
        body=f"{names}{more} are using more data than usual",
        tag="spike-summary",
        urgency=_URGENCY[highest],
        require_interaction=highest == Severity.CRITICAL,
        data={"type": "spike-summary", "alertCount": count}
    )


def plan_notifications(alerts: Sequence[Alert]) -> List[Notification]:
    """Choose the notifications for a batch of alerts.

    A single alert gets its own notification. When any alert is high or
    critical, up to three of those are shown individually followed by a
    summary. Otherwise only a summary is shown.

    Args:
        alerts: Alerts to announce, most urgent first

    Returns:
        List[Notification]: Notifications in display order
    """
    if not alerts:
        return []
    if len(alerts) == 1:
        return [format_spike_notification(alerts[0])]

    urgent = [a for a in alerts if a.severity in (Severity.CRITICAL, Severity.HIGH)]
    notifications = [format_spike_notification(a) for a in urgent[:MAX_INDIVIDUAL]]
    notifications.append(format_summary_notification(alerts))
    return notifications
