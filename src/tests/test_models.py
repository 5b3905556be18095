"""Tests for data models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from usage_spikes.models import (
    GIB,
    MIB,
    Alert,
    AlertKind,
    AppKey,
    DetectionConfig,
    DetectionOverrides,
    KindKey,
    Sensitivity,
    Severity,
    UsageBatch,
    UsageRecord,
    UsageSample,
    dedup_key_token,
)


def make_alert(**overrides) -> Alert:
    fields = dict(
        kind=AlertKind.SPIKE,
        severity=Severity.HIGH,
        title="Unusual data usage detected",
        description="Something happened",
        current_usage=300 * MIB,
        expected_usage=100 * MIB,
        percentage_increase=200,
        recommendations=["Monitor usage over the next few hours"],
    )
    fields.update(overrides)
    return Alert(**fields)


class TestUsageSample:
    """Test cases for UsageSample."""

    def test_sample_from_iso_string(self) -> None:
        """Test sample creation with an ISO8601 timestamp."""
        sample = UsageSample(timestamp="2024-01-10T20:15:00", bytes_used=1024)
        assert sample.timestamp == datetime(2024, 1, 10, 20, 15)
        assert sample.hour == 20
        assert sample.app_name is None

    def test_hour_is_wall_clock_of_timestamp(self) -> None:
        """Test that hour-of-day is not normalized to another timezone."""
        sample = UsageSample(timestamp="2024-01-10T23:30:00+05:00", bytes_used=1)
        assert sample.hour == 23

    def test_negative_bytes_rejected(self) -> None:
        """Test that negative byte counts fail validation."""
        with pytest.raises(ValidationError):
            UsageSample(timestamp=datetime(2024, 1, 1), bytes_used=-1)

    def test_samples_are_immutable(self) -> None:
        """Test that samples cannot be modified after creation."""
        sample = UsageSample(timestamp=datetime(2024, 1, 1), bytes_used=10)
        with pytest.raises(ValidationError):
            sample.bytes_used = 20

    def test_value_equality(self) -> None:
        """Test that equal fields make equal samples."""
        a = UsageSample(timestamp=datetime(2024, 1, 1, 5), bytes_used=10, app_name="Maps")
        b = UsageSample(timestamp=datetime(2024, 1, 1, 5), bytes_used=10, app_name="Maps")
        assert a == b


class TestSeverity:
    """Test cases for Severity ordering."""

    def test_total_order(self) -> None:
        """Test critical > high > medium > low."""
        assert Severity.CRITICAL > Severity.HIGH > Severity.MEDIUM > Severity.LOW
        assert Severity.LOW < Severity.CRITICAL
        assert Severity.HIGH >= Severity.HIGH

    def test_order_is_not_lexical(self) -> None:
        """Test that sorting uses urgency, not string order."""
        ordered = sorted([Severity.HIGH, Severity.LOW, Severity.CRITICAL, Severity.MEDIUM])
        assert ordered == [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]
        assert max([Severity.HIGH, Severity.CRITICAL, Severity.LOW]) == Severity.CRITICAL

    def test_rank(self) -> None:
        """Test rank values used for sorting alerts."""
        assert Severity.CRITICAL.rank == 0
        assert Severity.HIGH.rank == 1
        assert Severity.MEDIUM.rank == 2
        assert Severity.LOW.rank == 3


class TestDedupKey:
    """Test cases for alert deduplication keys."""

    def test_app_alert_key(self) -> None:
        """Test that app-scoped alerts key on the app name."""
        alert = make_alert(app_name="YouTube")
        assert alert.dedup_key == AppKey("YouTube")

    def test_device_alert_key(self) -> None:
        """Test that device-wide alerts key on the detector kind."""
        alert = make_alert(kind=AlertKind.THRESHOLD)
        assert alert.dedup_key == KindKey(AlertKind.THRESHOLD)

    def test_app_named_like_kind_does_not_collide(self) -> None:
        """Test that an app called 'spike' differs from the spike kind."""
        assert AppKey("spike") != KindKey(AlertKind.SPIKE)
        assert len({AppKey("spike"), KindKey(AlertKind.SPIKE)}) == 2

    def test_key_token(self) -> None:
        """Test string rendering keeps the variant apart."""
        assert dedup_key_token(AppKey("spike")) == "app:spike"
        assert dedup_key_token(KindKey(AlertKind.SPIKE)) == "kind:spike"


class TestDetectionConfig:
    """Test cases for DetectionConfig."""

    def test_defaults(self) -> None:
        """Test the documented default thresholds."""
        config = DetectionConfig()
        assert config.std_dev_multiplier == 2.0
        assert config.min_percentage_increase == 50
        assert config.min_bytes_threshold == 50 * MIB
        assert config.baseline_window_days == 7
        assert config.critical_daily_threshold == GIB
        assert config.high_hourly_threshold == 200 * MIB

    def test_negative_threshold_rejected(self) -> None:
        """Test that thresholds must be non-negative."""
        with pytest.raises(ValidationError):
            DetectionConfig(min_bytes_threshold=-1)

    def test_with_overrides_merges_fields(self) -> None:
        """Test field-by-field partial override."""
        config = DetectionConfig().with_overrides(std_dev_multiplier=2.5)
        assert config.std_dev_multiplier == 2.5
        assert config.min_percentage_increase == 50

    def test_with_overrides_unknown_field(self) -> None:
        """Test that unknown option names are rejected."""
        with pytest.raises(ValueError) as exc_info:
            DetectionConfig().with_overrides(stddev=3.0)
        assert "Unknown detection options" in str(exc_info.value)

    def test_sensitivity_high(self) -> None:
        """Test the high sensitivity preset."""
        config = DetectionConfig.from_options(sensitivity="high")
        assert config.std_dev_multiplier == 1.5
        assert config.min_percentage_increase == 30

    def test_sensitivity_low(self) -> None:
        """Test the low sensitivity preset."""
        config = DetectionConfig.from_options(sensitivity=Sensitivity.LOW)
        assert config.std_dev_multiplier == 3.0
        assert config.min_percentage_increase == 100

    def test_sensitivity_medium_and_absent_keep_defaults(self) -> None:
        """Test that medium or no sensitivity leaves the defaults."""
        assert DetectionConfig.from_options(sensitivity="medium") == DetectionConfig()
        assert DetectionConfig.from_options() == DetectionConfig()

    def test_unknown_sensitivity(self) -> None:
        """Test that an unknown preset name raises."""
        with pytest.raises(ValueError):
            DetectionConfig.from_options(sensitivity="extreme")

    def test_threshold_in_megabytes(self) -> None:
        """Test that the threshold option is converted from MB to bytes."""
        config = DetectionConfig.from_options(threshold_mb=500)
        assert config.critical_daily_threshold == 500 * MIB

    def test_options_apply_on_top_of_base(self) -> None:
        """Test that options override a supplied base config."""
        base = DetectionConfig(min_bytes_threshold=MIB)
        config = DetectionConfig.from_options(sensitivity="high", base=base)
        assert config.min_bytes_threshold == MIB
        assert config.std_dev_multiplier == 1.5

    def test_typed_overrides_keep_unset_fields(self) -> None:
        """Test that only the fields set on an override replace base values."""
        base = DetectionConfig(min_bytes_threshold=MIB)
        config = DetectionOverrides(std_dev_multiplier=2.5).apply_to(base)
        assert config.std_dev_multiplier == 2.5
        assert config.min_bytes_threshold == MIB

    def test_typed_overrides_reject_unknown_fields(self) -> None:
        """Test that misspelled override names fail validation."""
        with pytest.raises(ValidationError):
            DetectionOverrides(stddev=3.0)


class TestAlert:
    """Test cases for Alert."""

    def test_generated_id(self) -> None:
        """Test that alerts get distinct generated IDs."""
        a = make_alert()
        b = make_alert()
        assert a.id.startswith("alert_")
        assert a.id != b.id

    def test_to_dict_wire_fields(self) -> None:
        """Test the wire field names of a device alert."""
        alert = make_alert(detected_at=datetime(2024, 1, 10, 20, 0))
        data = alert.to_dict()
        assert set(data) == {
            "id", "type", "severity", "title", "description", "detectedAt",
            "currentUsage", "expectedUsage", "percentageIncrease", "recommendations",
        }
        assert data["type"] == "spike"
        assert data["severity"] == "high"
        assert data["detectedAt"] == "2024-01-10T20:00:00"
        assert data["percentageIncrease"] == 200

    def test_to_dict_includes_app_name(self) -> None:
        """Test that appName appears only for app alerts."""
        data = make_alert(app_name="Netflix").to_dict()
        assert data["appName"] == "Netflix"

    def test_too_many_recommendations(self) -> None:
        """Test that more than four recommendations are rejected."""
        with pytest.raises(ValidationError):
            make_alert(recommendations=["a", "b", "c", "d", "e"])


class TestUsageRecords:
    """Test cases for storage and ingestion records."""

    def test_naive_timestamp_gets_utc(self) -> None:
        """Test that naive record timestamps are treated as UTC."""
        record = UsageRecord(device_id="dev-1", timestamp=datetime(2024, 1, 1, 9), rx_bytes=1)
        assert record.timestamp.tzinfo == timezone.utc
        assert record.timestamp.hour == 9

    def test_to_sample_sums_directions(self) -> None:
        """Test that samples carry received plus transmitted bytes."""
        record = UsageRecord(
            device_id="dev-1",
            timestamp=datetime(2024, 1, 1, 9),
            app_name="Spotify",
            rx_bytes=700,
            tx_bytes=300
        )
        sample = record.to_sample()
        assert sample.bytes_used == 1000
        assert sample.app_name == "Spotify"

    def test_batch_to_records(self) -> None:
        """Test expanding an upload batch into one record per app."""
        batch = UsageBatch(
            captured_at="2024-01-10T12:00:00Z",
            network=" Mobile ",
            apps=[
                {"package": "com.google.android.youtube", "app_name": "YouTube", "rx_bytes": 10, "tx_bytes": 1},
                {"package": "com.whatsapp", "rx_bytes": 5, "tx_bytes": 5},
            ]
        )
        records = batch.to_records("dev-9")
        assert batch.network == "mobile"
        assert [r.app_name for r in records] == ["YouTube", "com.whatsapp"]
        assert all(r.device_id == "dev-9" for r in records)
        assert records[0].total_bytes == 11

    def test_batch_requires_apps(self) -> None:
        """Test that an empty batch is rejected."""
        with pytest.raises(ValidationError):
            UsageBatch(captured_at="2024-01-10T12:00:00Z", network="wifi", apps=[])
