"""Usage spike detection algorithms.

Three independent detectors, each a pure function of its inputs and its
config:

- TimeBucketSpikeDetector: z-score and percentage deviation against an
  hour-of-day baseline built from historical samples.
- ThresholdBreachDetector: absolute daily and hourly ceilings.
- AppAnomalyDetector: per-application outliers against the median and
  90th percentile of that application's history.

No machine learning - fixed closed-form statistical rules.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Sequence

from usage_spikes.models import Alert, AlertKind, DetectionConfig, Severity, UsageSample
from usage_spikes.severity import (
    determine_severity,
    format_bytes,
    generate_recommendations,
    round_half_up,
)
from usage_spikes.stats import mean, percentile, std_dev


logger = logging.getLogger(__name__)


# Baselines below this many bytes are treated as missing history.
MIN_BASELINE_BYTES = 1000

MIN_APP_HISTORY = 3
APP_P90_MULTIPLIER = 2


class TimeBucketSpikeDetector:
    """Hour-of-day baseline spike detector.

    Historical samples are grouped by the hour of their timestamp. Each
    current sample is compared against the mean of its own hour, falling
    back to the overall historical mean when that hour has no history.
    A sample is a spike when its z-score exceeds ``std_dev_multiplier`` or
    its percentage increase reaches ``min_percentage_increase``, and it is
    at least ``min_bytes_threshold`` in size.
    """

    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        """Initialize the detector.

        Args:
            config: Detection thresholds (defaults if omitted)
        """
        self.config = config or DetectionConfig()

    def detect(
        self,
        current: Sequence[UsageSample],
        historical: Sequence[UsageSample]
    ) -> List[Alert]:
        """Flag current samples that deviate from their hourly baseline.

        Args:
            current: Samples of the period under analysis
            historical: Samples of the baseline window

        Returns:
            List[Alert]: One spike alert per flagged sample, in input order
        """
        alerts: List[Alert] = []
        if not current:
            return alerts

        hourly: Dict[int, List[int]] = defaultdict(list)
        for sample in historical:
            hourly[sample.hour].append(sample.bytes_used)

        all_values = [sample.bytes_used for sample in historical]
        overall_mean = mean(all_values)
        overall_std = std_dev(all_values, overall_mean)

        for sample in current:
            bucket = hourly.get(sample.hour)
            if bucket:
                baseline_mean = mean(bucket)
                baseline_std = std_dev(bucket, baseline_mean) if len(bucket) > 1 else overall_std
            else:
                baseline_mean = overall_mean
                baseline_std = overall_std

            if baseline_mean < MIN_BASELINE_BYTES:
                logger.debug(
                    f"Skipping sample at hour {sample.hour}: "
                    f"baseline {baseline_mean:.0f} B below {MIN_BASELINE_BYTES} B"
                )
                continue

            z_score = (sample.bytes_used - baseline_mean) / baseline_std if baseline_std > 0 else 0.0
            percentage = (sample.bytes_used - baseline_mean) / baseline_mean * 100

            is_statistical = z_score > self.config.std_dev_multiplier
            is_percentage = percentage >= self.config.min_percentage_increase
            if not (is_statistical or is_percentage):
                continue
            if sample.bytes_used < self.config.min_bytes_threshold:
                logger.debug(
                    f"Deviation at hour {sample.hour} ignored: "
                    f"{sample.bytes_used} B under noise floor"
                )
                continue

            alert = self._build_alert(sample, baseline_mean, percentage)
            logger.warning(
                f"SPIKE DETECTED: {sample.app_name or 'device'} at hour {sample.hour}, "
                f"bytes={sample.bytes_used}, mean={baseline_mean:.0f}, "
                f"z={z_score:.2f}, pct={percentage:.0f} ({alert.severity.value})"
            )
            alerts.append(alert)

        return alerts

    def _build_alert(self, sample: UsageSample, baseline_mean: float, percentage: float) -> Alert:
        severity = determine_severity(percentage, sample.bytes_used, self.config)
        rounded = round_half_up(percentage)
        if sample.app_name:
            title = f"Unusual usage from {sample.app_name}"
        else:
            title = "Unusual data usage detected"
        return Alert(
            kind=AlertKind.SPIKE,
            severity=severity,
            title=title,
            description=(
                f"Data usage of {format_bytes(sample.bytes_used)} is {rounded}% higher "
                f"than your typical {format_bytes(baseline_mean)} at this time."
            ),
            app_name=sample.app_name,
            current_usage=sample.bytes_used,
            expected_usage=baseline_mean,
            percentage_increase=rounded,
            recommendations=generate_recommendations(severity, sample.app_name, percentage)
        )

    def __repr__(self) -> str:
        """Return string representation of the detector."""
        return (
            f"TimeBucketSpikeDetector("
            f"std_dev_multiplier={self.config.std_dev_multiplier}, "
            f"min_percentage_increase={self.config.min_percentage_increase})"
        )


class ThresholdBreachDetector:
    """Absolute ceiling detector for daily and current-hour totals.

    Needs no history. The two checks are independent, so a call yields
    0, 1 or 2 alerts. Severities are fixed per breach type.
    """

    DAILY_RECOMMENDATIONS = [
        "Consider pausing non-essential downloads",
        "Enable data saver mode",
        "Check for apps using excessive background data",
        "Review your data plan limits",
    ]
    HOURLY_RECOMMENDATIONS = [
        "Check what apps are currently active",
        "Look for ongoing downloads or updates",
        "Verify no video streaming is running",
    ]

    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        self.config = config or DetectionConfig()

    def detect(self, daily_total: int, current_hour_total: int) -> List[Alert]:
        """Check totals against the configured ceilings (inclusive).

        Args:
            daily_total: Bytes used so far today
            current_hour_total: Bytes used in the current hour

        Returns:
            List[Alert]: Critical daily alert and/or high hourly alert
        """
        alerts: List[Alert] = []
        daily_limit = self.config.critical_daily_threshold
        hourly_limit = self.config.high_hourly_threshold

        if daily_total >= daily_limit:
            alerts.append(Alert(
                kind=AlertKind.THRESHOLD,
                severity=Severity.CRITICAL,
                title="Daily data limit exceeded",
                description=(
                    f"You've used {format_bytes(daily_total)} today, exceeding the "
                    f"{format_bytes(daily_limit)} threshold."
                ),
                current_usage=daily_total,
                expected_usage=daily_limit,
                percentage_increase=_excess_percentage(daily_total, daily_limit),
                recommendations=list(self.DAILY_RECOMMENDATIONS)
            ))
            logger.warning(f"Daily threshold breached: {daily_total} >= {daily_limit}")

        if current_hour_total >= hourly_limit:
            alerts.append(Alert(
                kind=AlertKind.THRESHOLD,
                severity=Severity.HIGH,
                title="High hourly usage detected",
                description=(
                    f"{format_bytes(current_hour_total)} used in the last hour, "
                    f"which is unusually high."
                ),
                current_usage=current_hour_total,
                expected_usage=hourly_limit,
                percentage_increase=_excess_percentage(current_hour_total, hourly_limit),
                recommendations=list(self.HOURLY_RECOMMENDATIONS)
            ))
            logger.warning(f"Hourly threshold breached: {current_hour_total} >= {hourly_limit}")

        return alerts

    def __repr__(self) -> str:
        return (
            f"ThresholdBreachDetector(daily={self.config.critical_daily_threshold}, "
            f"hourly={self.config.high_hourly_threshold})"
        )


def _excess_percentage(total: float, limit: float) -> int:
    if limit <= 0:
        return 0
    return round_half_up((total / limit - 1) * 100)


class AppAnomalyDetector:
    """Per-application percentile outlier detector.

    An application is anomalous when its current usage is more than twice
    the 90th percentile of its own history. Doubling P90 keeps a single
    heavy day in the history from desensitizing the check. Percentage
    increase is reported relative to the median.
    """

    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        self.config = config or DetectionConfig()

    def detect(
        self,
        app_history: Mapping[str, Sequence[int]],
        current_app_usage: Mapping[str, int]
    ) -> List[Alert]:
        """Flag applications whose current usage is an outlier.

        Args:
            app_history: Application name to historical per-period byte counts
            current_app_usage: Application name to current-period byte count

        Returns:
            List[Alert]: One anomaly alert per flagged application
        """
        alerts: List[Alert] = []

        for app_name, current_bytes in current_app_usage.items():
            history = app_history.get(app_name) or []
            if len(history) < MIN_APP_HISTORY:
                logger.debug(
                    f"Skipping {app_name}: insufficient history "
                    f"({len(history)} < {MIN_APP_HISTORY})"
                )
                continue

            ordered = sorted(history)
            median = percentile(ordered, 50)
            p90 = percentile(ordered, 90)

            if current_bytes <= p90 * APP_P90_MULTIPLIER:
                continue
            if current_bytes < self.config.min_bytes_threshold:
                continue

            percentage = (current_bytes - median) / median * 100 if median > 0 else 0.0
            severity = determine_severity(percentage, current_bytes, self.config)

            alerts.append(Alert(
                kind=AlertKind.ANOMALY,
                severity=severity,
                title=f"{app_name} using more data than usual",
                description=(
                    f"{app_name} has used {format_bytes(current_bytes)}, "
                    f"compared to typical {format_bytes(median)}."
                ),
                app_name=app_name,
                current_usage=current_bytes,
                expected_usage=median,
                percentage_increase=round_half_up(percentage),
                recommendations=generate_recommendations(severity, app_name, percentage)
            ))
            logger.warning(
                f"APP ANOMALY: {app_name}={current_bytes}, median={median}, "
                f"p90={p90}, pct={percentage:.0f} ({severity.value})"
            )

        return alerts

    def __repr__(self) -> str:
        return f"AppAnomalyDetector(min_history={MIN_APP_HISTORY}, p90_multiplier={APP_P90_MULTIPLIER})"
