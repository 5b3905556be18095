"""Command-line entry point.

Runs the API server, or analyzes a JSON usage file offline and prints the
resulting alerts.
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from usage_spikes.analysis import analyze_usage_for_spikes, build_app_usage_maps
from usage_spikes.config import get_settings, reload_settings
from usage_spikes.models import DetectionConfig, UsageSample


logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure root logging from settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format=settings.log_format
    )


def run_api(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the FastAPI server using uvicorn.

    Args:
        host: Host to bind to
        port: Port to bind to
    """
    import uvicorn

    settings = get_settings()
    logger.info(f"Starting {settings.app_name} API server on {host}:{port}...")

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = settings.log_format

    uvicorn.run(
        "usage_spikes.api:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
        log_config=log_config,
        access_log=True
    )


def analyze_file(
    path: Path,
    threshold_mb: Optional[int] = None,
    sensitivity: Optional[str] = None
) -> List[Dict[str, Any]]:
    """Analyze a JSON usage file.

    The file holds an object with ``current_usage`` and
    ``historical_usage`` sample arrays and optional ``daily_total`` and
    ``current_hour_total``. Missing totals are derived from the current
    samples (all of them, and those in the latest sample's hour).

    Args:
        path: JSON file to read
        threshold_mb: Optional daily ceiling override in MB
        sensitivity: Optional sensitivity preset

    Returns:
        List[Dict]: Alerts in wire format, most urgent first

    Raises:
        ValueError: If the file content is malformed
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Usage file must contain a JSON object")

    current = [UsageSample.model_validate(s) for s in data.get("current_usage", [])]
    historical = [UsageSample.model_validate(s) for s in data.get("historical_usage", [])]

    daily_total = data.get("daily_total")
    if daily_total is None:
        daily_total = sum(s.bytes_used for s in current)

    current_hour_total = data.get("current_hour_total")
    if current_hour_total is None:
        if len({s.timestamp.tzinfo is None for s in current}) > 1:
            raise ValueError("current_usage mixes timestamps with and without a UTC offset")
        latest = max((s.timestamp for s in current), default=None)
        current_hour_total = sum(
            s.bytes_used for s in current
            if latest is not None and s.timestamp.date() == latest.date() and s.hour == latest.hour
        )

    config = DetectionConfig.from_options(
        threshold_mb=threshold_mb,
        sensitivity=sensitivity,
        base=get_settings().detection_config()
    )
    app_history, current_app_usage = build_app_usage_maps(current, historical)

    alerts = analyze_usage_for_spikes(
        current,
        historical,
        daily_total,
        current_hour_total,
        app_history=app_history,
        current_app_usage=current_app_usage,
        config=config
    )
    return [alert.to_dict() for alert in alerts]


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(description="Usage spike detection")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override log level from environment"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="0.0.0.0", help="API server host (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=8000, help="API server port (default: 8000)")

    analyze = subparsers.add_parser("analyze", help="Analyze a JSON usage file")
    analyze.add_argument("file", type=Path, help="Path to the usage JSON file")
    analyze.add_argument("--threshold", type=int, help="Daily ceiling in MB")
    analyze.add_argument("--sensitivity", choices=["high", "medium", "low"])

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with command-line argument parsing."""
    args = build_parser().parse_args(argv)

    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
        reload_settings()
    configure_logging()

    try:
        if args.command == "serve":
            run_api(host=args.host, port=args.port)
        elif args.command == "analyze":
            alerts = analyze_file(args.file, args.threshold, args.sensitivity)
            print(json.dumps(alerts, indent=2))
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except (OSError, ValueError) as e:
        logger.error(f"Analysis failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
