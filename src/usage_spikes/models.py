"""Data models for usage spike detection.

Defines Pydantic models for usage samples, detection configuration,
alerts, and the storage/ingestion records that feed them. Core models are
frozen: once built they are passed around as values and never mutated.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


MIB = 1024 * 1024
GIB = 1024 * MIB


class AlertKind(str, Enum):
    """Which detector produced an alert."""

    SPIKE = "spike"
    THRESHOLD = "threshold"
    ANOMALY = "anomaly"


class Severity(str, Enum):
    """Alert urgency with an explicit total order.

    Comparison follows urgency (critical > high > medium > low), never the
    lexical order of the values.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Sort rank, 0 for the most urgent."""
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank


_SEVERITY_RANK = {
    Severity.CRITICAL: 0,
    Severity.HIGH: 1,
    Severity.MEDIUM: 2,
    Severity.LOW: 3,
}


class Sensitivity(str, Enum):
    """Named detection sensitivity presets."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class AppKey:
    """Deduplication key for an application-scoped alert."""

    name: str


@dataclass(frozen=True)
class KindKey:
    """Deduplication key for a device-wide alert, one per detector kind."""

    kind: AlertKind


# Dataclass equality requires the same class, so an app named like a
# detector kind never matches that kind's key.
DedupKey = Union[AppKey, KindKey]


def dedup_key_token(key: DedupKey) -> str:
    """Render a dedup key as a string that keeps the variant apart."""
    if isinstance(key, AppKey):
        return f"app:{key.name}"
    return f"kind:{key.kind.value}"


class UsageSample(BaseModel):
    """One observed usage measurement.

    Hour-of-day is read from the timestamp's own wall clock with no
    timezone normalization.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(
        ...,
        description="Point in time the sample represents"
    )
    bytes_used: int = Field(
        ...,
        description="Bytes transferred during the sample's period",
        ge=0
    )
    app_name: Optional[str] = Field(
        default=None,
        description="Application label; absent for device-aggregate samples"
    )

    @property
    def hour(self) -> int:
        """Hour-of-day bucket (0-23)."""
        return self.timestamp.hour


class DetectionConfig(BaseModel):
    """Tunable detection thresholds.

    ``std_dev_multiplier`` and ``min_percentage_increase`` are independent
    triggers (either suffices), both gated by ``min_bytes_threshold``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    std_dev_multiplier: float = Field(
        default=2.0,
        description="Z-score cutoff for a statistical spike",
        ge=0
    )
    min_percentage_increase: float = Field(
        default=50,
        description="Percent above baseline that qualifies as a spike",
        ge=0
    )
    min_bytes_threshold: int = Field(
        default=50 * MIB,
        description="Noise floor below which deviations are ignored",
        ge=0
    )
    baseline_window_days: int = Field(
        default=7,
        description="Days of history the caller should supply (informational)",
        ge=0
    )
    critical_daily_threshold: int = Field(
        default=GIB,
        description="Absolute daily usage ceiling",
        ge=0
    )
    high_hourly_threshold: int = Field(
        default=200 * MIB,
        description="Absolute hourly usage ceiling",
        ge=0
    )

    def with_overrides(self, **overrides: Any) -> "DetectionConfig":
        """Merge a partial override field-by-field.

        Args:
            **overrides: Field names and new values

        Returns:
            DetectionConfig: A new, validated config

        Raises:
            ValueError: If a field name is unknown or a value is invalid
        """
        unknown = set(overrides) - set(type(self).model_fields)
        if unknown:
            raise ValueError(f"Unknown detection options: {sorted(unknown)}")
        merged = self.model_dump()
        merged.update(overrides)
        return DetectionConfig(**merged)

    @classmethod
    def from_options(
        cls,
        threshold_mb: Optional[int] = None,
        sensitivity: Optional[Union[Sensitivity, str]] = None,
        base: Optional["DetectionConfig"] = None
    ) -> "DetectionConfig":
        """Build a config from the named request options.

        Args:
            threshold_mb: Daily ceiling in MiB, replaces critical_daily_threshold
            sensitivity: "high", "medium" or "low"; absent keeps the base values
            base: Config to start from (defaults to the built-in defaults)

        Returns:
            DetectionConfig: The resulting config
        """
        overrides: Dict[str, Any] = {}
        if threshold_mb is not None:
            overrides["critical_daily_threshold"] = threshold_mb * MIB
        if sensitivity is not None:
            overrides.update(SENSITIVITY_PRESETS[Sensitivity(sensitivity)])
        return (base or cls()).with_overrides(**overrides)


SENSITIVITY_PRESETS: Dict[Sensitivity, Dict[str, float]] = {
    Sensitivity.HIGH: {"std_dev_multiplier": 1.5, "min_percentage_increase": 30},
    Sensitivity.MEDIUM: {},
    Sensitivity.LOW: {"std_dev_multiplier": 3.0, "min_percentage_increase": 100},
}


class DetectionOverrides(BaseModel):
    """Partial DetectionConfig supplied by a caller; unset fields keep the base value."""

    model_config = ConfigDict(extra="forbid")

    std_dev_multiplier: Optional[float] = Field(default=None, ge=0)
    min_percentage_increase: Optional[float] = Field(default=None, ge=0)
    min_bytes_threshold: Optional[int] = Field(default=None, ge=0)
    baseline_window_days: Optional[int] = Field(default=None, ge=0)
    critical_daily_threshold: Optional[int] = Field(default=None, ge=0)
    high_hourly_threshold: Optional[int] = Field(default=None, ge=0)

    def apply_to(self, base: DetectionConfig) -> DetectionConfig:
        """Return ``base`` with every field set here replaced."""
        return base.with_overrides(**self.model_dump(exclude_none=True))


def generate_alert_id() -> str:
    """Alert ID from the current time plus a random suffix."""
    return f"alert_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class Alert(BaseModel):
    """A detected usage anomaly, ready to hand to a consumer."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=generate_alert_id)
    kind: AlertKind
    severity: Severity
    title: str
    description: str
    detected_at: datetime = Field(default_factory=datetime.now)
    app_name: Optional[str] = None
    current_usage: int = Field(
        ...,
        description="Observed bytes that triggered the alert"
    )
    expected_usage: float = Field(
        ...,
        description="Baseline or ceiling bytes the observation is compared to"
    )
    percentage_increase: int = Field(
        ...,
        description="Signed, rounded percentage above the expected usage"
    )
    recommendations: List[str] = Field(default_factory=list, max_length=4)

    @property
    def dedup_key(self) -> DedupKey:
        """At most one alert per application, plus one per device-wide kind."""
        if self.app_name:
            return AppKey(self.app_name)
        return KindKey(self.kind)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation of the alert.

        Returns:
            Dict: Fields id, type, severity, title, description, detectedAt,
                appName (only when set), currentUsage, expectedUsage,
                percentageIncrease and recommendations
        """
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "detectedAt": self.detected_at.isoformat(),
            "currentUsage": self.current_usage,
            "expectedUsage": self.expected_usage,
            "percentageIncrease": self.percentage_increase,
            "recommendations": list(self.recommendations),
        }
        if self.app_name:
            data["appName"] = self.app_name
        return data


class UsageRecord(BaseModel):
    """A stored usage measurement for one device, as reported upstream."""

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(..., min_length=1, max_length=255)
    timestamp: datetime
    app_name: Optional[str] = None
    rx_bytes: int = Field(default=0, ge=0)
    tx_bytes: int = Field(default=0, ge=0)

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, v: datetime) -> datetime:
        """Attach UTC to naive timestamps so records can be range-compared.

        The wall-clock hour is kept as given.
        """
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def total_bytes(self) -> int:
        return self.rx_bytes + self.tx_bytes

    def to_sample(self) -> UsageSample:
        """Convert to a detection sample (received + transmitted bytes)."""
        return UsageSample(
            timestamp=self.timestamp,
            bytes_used=self.total_bytes,
            app_name=self.app_name
        )


class AppUsage(BaseModel):
    """Per-application counters inside an uploaded usage batch."""

    package: str = Field(..., min_length=1)
    app_name: Optional[str] = None
    rx_bytes: int = Field(..., ge=0)
    tx_bytes: int = Field(..., ge=0)


class UsageBatch(BaseModel):
    """A batch of per-app usage captured on the device at one moment."""

    captured_at: datetime
    network: str = Field(..., min_length=1)
    operator: Optional[str] = None
    apps: List[AppUsage] = Field(..., min_length=1)

    @field_validator("network")
    @classmethod
    def validate_network(cls, v: str) -> str:
        """Normalize the network type label."""
        return v.strip().lower()

    def to_records(self, device_id: str) -> List[UsageRecord]:
        """Expand the batch into one usage record per application.

        Args:
            device_id: Device the batch was uploaded from

        Returns:
            List[UsageRecord]: Records stamped with the capture time
        """
        return [
            UsageRecord(
                device_id=device_id,
                timestamp=self.captured_at,
                app_name=app.app_name or app.package,
                rx_bytes=app.rx_bytes,
                tx_bytes=app.tx_bytes
            )
            for app in self.apps
        ]
