"""Spike analysis orchestration.

Runs the three detectors over one device's usage, then orders the combined
alerts by severity and keeps at most one alert per application and one per
device-wide detector kind. Also holds the helpers that shape stored usage
records into detector inputs.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from usage_spikes.detector import AppAnomalyDetector, ThresholdBreachDetector, TimeBucketSpikeDetector
from usage_spikes.models import Alert, DedupKey, DetectionConfig, UsageRecord, UsageSample


logger = logging.getLogger(__name__)


class SpikeAnalyzer:
    """Combines time-bucket, threshold and per-app detection.

    Holds only its config; every call to ``analyze`` is independent and
    safe to run concurrently.
    """

    def __init__(self, config: Optional[DetectionConfig] = None) -> None:
        """Initialize the analyzer.

        Args:
            config: Detection thresholds shared by all detectors
        """
        self.config = config or DetectionConfig()
        self.spike_detector = TimeBucketSpikeDetector(self.config)
        self.threshold_detector = ThresholdBreachDetector(self.config)
        self.app_detector = AppAnomalyDetector(self.config)

    def analyze(
        self,
        current_samples: Sequence[UsageSample],
        historical_samples: Sequence[UsageSample],
        daily_total: int,
        current_hour_total: int,
        app_history: Optional[Mapping[str, Sequence[int]]] = None,
        current_app_usage: Optional[Mapping[str, int]] = None,
        suppressed_keys: Optional[Iterable[DedupKey]] = None
    ) -> List[Alert]:
        """Produce the prioritized, deduplicated alert list.

        Args:
            current_samples: Samples of the period under analysis
            historical_samples: Samples of the baseline window
            daily_total: Bytes used so far today
            current_hour_total: Bytes used in the current hour
            app_history: Per-app historical byte counts (needs current_app_usage too)
            current_app_usage: Per-app current byte counts (needs app_history too)
            suppressed_keys: Dedup keys already surfaced by the delivery layer

        Returns:
            List[Alert]: Alerts ordered critical first, one per dedup key
        """
        alerts: List[Alert] = []
        alerts.extend(self.spike_detector.detect(current_samples, historical_samples))
        alerts.extend(self.threshold_detector.detect(daily_total, current_hour_total))
        if app_history is not None and current_app_usage is not None:
            alerts.extend(self.app_detector.detect(app_history, current_app_usage))

        ranked = sorted(alerts, key=lambda alert: alert.severity.rank)

        seen: Set[DedupKey] = set(suppressed_keys or ())
        result: List[Alert] = []
        for alert in ranked:
            key = alert.dedup_key
            if key in seen:
                continue
            seen.add(key)
            result.append(alert)

        logger.info(
            f"Analyzed {len(current_samples)} samples against "
            f"{len(historical_samples)} historical: {len(alerts)} raw alerts, "
            f"{len(result)} after deduplication"
        )
        return result

    def __repr__(self) -> str:
        return f"SpikeAnalyzer(config={self.config!r})"


def analyze_usage_for_spikes(
    current_samples: Sequence[UsageSample],
    historical_samples: Sequence[UsageSample],
    daily_total: int,
    current_hour_total: int,
    app_history: Optional[Mapping[str, Sequence[int]]] = None,
    current_app_usage: Optional[Mapping[str, int]] = None,
    config: Optional[DetectionConfig] = None,
    suppressed_keys: Optional[Iterable[DedupKey]] = None
) -> List[Alert]:
    """Run a one-off analysis with the given config (see SpikeAnalyzer.analyze)."""
    return SpikeAnalyzer(config).analyze(
        current_samples,
        historical_samples,
        daily_total,
        current_hour_total,
        app_history=app_history,
        current_app_usage=current_app_usage,
        suppressed_keys=suppressed_keys
    )


def records_to_samples(records: Iterable[UsageRecord]) -> List[UsageSample]:
    """Convert stored usage records to detection samples."""
    return [record.to_sample() for record in records]


def build_app_usage_maps(
    current_samples: Iterable[UsageSample],
    historical_samples: Iterable[UsageSample]
) -> Tuple[Dict[str, List[int]], Dict[str, int]]:
    """Group per-app usage into the app detector's inputs.

    Device-aggregate samples (no app name) are left out of both maps.

    Args:
        current_samples: Samples of the period under analysis
        historical_samples: Samples of the baseline window

    Returns:
        Tuple: (app name -> historical byte counts in sample order,
            app name -> summed current bytes)
    """
    app_history: Dict[str, List[int]] = defaultdict(list)
    for sample in historical_samples:
        if sample.app_name:
            app_history[sample.app_name].append(sample.bytes_used)

    current_app_usage: Dict[str, int] = defaultdict(int)
    for sample in current_samples:
        if sample.app_name:
            current_app_usage[sample.app_name] += sample.bytes_used

    return dict(app_history), dict(current_app_usage)


def hour_total(samples: Iterable[UsageSample], now: datetime) -> int:
    """Sum the bytes of samples taken since the top of ``now``'s hour."""
    hour_start = now.replace(minute=0, second=0, microsecond=0)
    return sum(sample.bytes_used for sample in samples if sample.timestamp >= hour_start)
