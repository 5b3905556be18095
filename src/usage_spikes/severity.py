"""Severity assignment, recommendations and byte formatting shared by detectors."""

import math
from typing import List, Optional

from usage_spikes.models import DetectionConfig, Severity


# Fixed percentage cutoffs for the severity ladder.
CRITICAL_PERCENTAGE = 500
HIGH_PERCENTAGE = 200
MEDIUM_PERCENTAGE = 100

MAX_RECOMMENDATIONS = 4


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return int(math.floor(value + 0.5))


def format_bytes(num_bytes: float) -> str:
    """Human-readable byte size (B, KB, MB or GB, powers of 1024)."""
    if num_bytes >= 1024 ** 3:
        return f"{num_bytes / 1024 ** 3:.2f} GB"
    if num_bytes >= 1024 ** 2:
        return f"{num_bytes / 1024 ** 2:.1f} MB"
    if num_bytes >= 1024:
        return f"{num_bytes / 1024:.0f} KB"
    return f"{num_bytes:.0f} B"


def determine_severity(
    percentage_increase: float,
    current_bytes: float,
    config: DetectionConfig
) -> Severity:
    """Classify an observation by absolute size and relative increase.

    Args:
        percentage_increase: Increase over the baseline, in percent
        current_bytes: Observed bytes
        config: Detection thresholds

    Returns:
        Severity: The first matching rung of critical, high, medium, low
    """
    if (current_bytes >= config.critical_daily_threshold
            or percentage_increase >= CRITICAL_PERCENTAGE):
        return Severity.CRITICAL
    if (current_bytes >= config.high_hourly_threshold
            or percentage_increase >= HIGH_PERCENTAGE):
        return Severity.HIGH
    if percentage_increase >= MEDIUM_PERCENTAGE:
        return Severity.MEDIUM
    return Severity.LOW


def generate_recommendations(
    severity: Severity,
    app_name: Optional[str] = None,
    percentage_increase: Optional[float] = None
) -> List[str]:
    """Rule-based suggestions, most specific first, capped at four.

    Args:
        severity: Severity of the alert
        app_name: Application behind the usage, if known
        percentage_increase: Increase over the baseline, in percent

    Returns:
        List[str]: Up to four recommendations
    """
    recommendations: List[str] = []

    if app_name:
        recommendations.append(f"Check {app_name} for auto-updates or background downloads")
        recommendations.append(f"Review {app_name}'s data usage settings")

    if severity in (Severity.CRITICAL, Severity.HIGH):
        recommendations.append("Check for malware or unauthorized apps")
        recommendations.append("Review all background app refresh settings")
        recommendations.append("Consider enabling data saver mode")

    if percentage_increase is not None and percentage_increase >= HIGH_PERCENTAGE:
        recommendations.append("Verify no unexpected video streaming occurred")
        recommendations.append("Check for large file downloads")

    recommendations.append("Monitor usage over the next few hours")

    return recommendations[:MAX_RECOMMENDATIONS]
