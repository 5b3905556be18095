"""Tests for severity assignment, recommendations and byte formatting."""

from usage_spikes.models import GIB, MIB, DetectionConfig, Severity
from usage_spikes.severity import (
    determine_severity,
    format_bytes,
    generate_recommendations,
    round_half_up,
)


class TestDetermineSeverity:
    """Test cases for the shared severity ladder."""

    config = DetectionConfig()

    def test_critical_by_bytes(self) -> None:
        """Test that reaching the daily ceiling is critical."""
        assert determine_severity(10, GIB, self.config) == Severity.CRITICAL

    def test_critical_by_percentage(self) -> None:
        """Test that a 500% increase is critical."""
        assert determine_severity(500, 60 * MIB, self.config) == Severity.CRITICAL

    def test_high_by_bytes(self) -> None:
        """Test that reaching the hourly ceiling is high."""
        assert determine_severity(60, 200 * MIB, self.config) == Severity.HIGH

    def test_high_by_percentage(self) -> None:
        """Test that a 200% increase is high."""
        assert determine_severity(200, 60 * MIB, self.config) == Severity.HIGH
        assert determine_severity(499, 60 * MIB, self.config) == Severity.HIGH

    def test_medium(self) -> None:
        """Test that a 100-199% increase is medium."""
        assert determine_severity(100, 60 * MIB, self.config) == Severity.MEDIUM
        assert determine_severity(199.9, 60 * MIB, self.config) == Severity.MEDIUM

    def test_low(self) -> None:
        """Test that anything smaller is low."""
        assert determine_severity(99.9, 60 * MIB, self.config) == Severity.LOW
        assert determine_severity(-20, 60 * MIB, self.config) == Severity.LOW

    def test_uses_config_ceilings(self) -> None:
        """Test that custom ceilings move the byte rungs."""
        config = DetectionConfig(critical_daily_threshold=100 * MIB, high_hourly_threshold=80 * MIB)
        assert determine_severity(0, 100 * MIB, config) == Severity.CRITICAL
        assert determine_severity(0, 80 * MIB, config) == Severity.HIGH


class TestRecommendations:
    """Test cases for recommendation generation."""

    def test_app_high_large_increase(self) -> None:
        """Test that app-specific advice comes first and the list is capped."""
        recs = generate_recommendations(Severity.HIGH, "TikTok", 250)
        assert recs == [
            "Check TikTok for auto-updates or background downloads",
            "Review TikTok's data usage settings",
            "Check for malware or unauthorized apps",
            "Review all background app refresh settings",
        ]

    def test_device_high_large_increase(self) -> None:
        """Test severity advice ahead of streaming advice without an app."""
        recs = generate_recommendations(Severity.HIGH, None, 200)
        assert recs == [
            "Check for malware or unauthorized apps",
            "Review all background app refresh settings",
            "Consider enabling data saver mode",
            "Verify no unexpected video streaming occurred",
        ]

    def test_low_severity_device(self) -> None:
        """Test that only the monitoring advice remains for small spikes."""
        assert generate_recommendations(Severity.LOW, None, 60) == [
            "Monitor usage over the next few hours"
        ]

    def test_medium_app(self) -> None:
        """Test app advice plus monitoring for a medium app spike."""
        recs = generate_recommendations(Severity.MEDIUM, "Maps", 150)
        assert recs == [
            "Check Maps for auto-updates or background downloads",
            "Review Maps's data usage settings",
            "Monitor usage over the next few hours",
        ]

    def test_streaming_advice_without_severity(self) -> None:
        """Test that a 200% increase alone adds streaming advice."""
        recs = generate_recommendations(Severity.MEDIUM, None, 300)
        assert recs == [
            "Verify no unexpected video streaming occurred",
            "Check for large file downloads",
            "Monitor usage over the next few hours",
        ]


class TestFormatting:
    """Test cases for byte formatting and rounding."""

    def test_format_bytes_units(self) -> None:
        """Test each unit range."""
        assert format_bytes(500) == "500 B"
        assert format_bytes(2048) == "2 KB"
        assert format_bytes(50 * MIB) == "50.0 MB"
        assert format_bytes(1.5 * GIB) == "1.50 GB"

    def test_round_half_up(self) -> None:
        """Test halves round toward positive infinity."""
        assert round_half_up(12.5) == 13
        assert round_half_up(11.7587) == 12
        assert round_half_up(-2.5) == -2
        assert round_half_up(-2.6) == -3
