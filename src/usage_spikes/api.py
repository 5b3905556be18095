"""FastAPI application for usage spike detection.

Provides REST endpoints for uploading device usage batches and for
analyzing a device's usage into prioritized spike alerts.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from usage_spikes.alerts import AlertPublisher
from usage_spikes.analysis import (
    SpikeAnalyzer,
    build_app_usage_maps,
    hour_total,
    records_to_samples,
)
from usage_spikes.config import get_settings
from usage_spikes.models import (
    DetectionConfig,
    DetectionOverrides,
    Sensitivity,
    UsageBatch,
    UsageSample,
)
from usage_spikes.persistence import InMemoryUsageStore, RedisUsageStore, UsageStore


logger = logging.getLogger(__name__)


# Global state
_store: Optional[UsageStore] = None
_publisher: Optional[AlertPublisher] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI startup/shutdown.

    Initializes the usage store and alert publisher on startup unless
    they were overridden beforehand, and closes them on shutdown.
    """
    global _store, _publisher

    settings = get_settings()
    logger.info(f"Starting {settings.app_name} API server in {settings.environment} environment")

    if _store is None:
        if settings.environment == "testing":
            _store = InMemoryUsageStore()
            logger.info("Using InMemoryUsageStore for testing")
        else:
            _store = RedisUsageStore(
                redis_url=settings.redis_url,
                key_prefix=settings.records_key_prefix
            )

    if _publisher is None and settings.environment != "testing":
        _publisher = AlertPublisher(
            redis_url=settings.redis_url,
            channel=settings.alerts_channel,
            suppression_seconds=settings.suppression_seconds,
            min_notify_percentage=settings.min_notify_percentage
        )

    yield

    logger.info(f"Shutting down {settings.app_name} API server")
    if _publisher is not None:
        _publisher.close()
    if isinstance(_store, RedisUsageStore):
        _store.close()


app = FastAPI(
    title="Usage Spike Detection",
    description="Detects abnormal per-device and per-app network usage",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency injection
def get_store() -> UsageStore:
    """Get the usage store instance.

    Raises:
        HTTPException: If the store is not initialized
    """
    if _store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Usage store not initialized"
        )
    return _store


def get_publisher() -> Optional[AlertPublisher]:
    """Get the alert publisher, if delivery is configured."""
    return _publisher


def get_clock() -> datetime:
    """Current time in UTC (overridden in tests)."""
    return datetime.now(timezone.utc)


# Pydantic models for API
class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="Service status")
    environment: str = Field(..., description="Environment name")


class BatchResponse(BaseModel):
    """Response model for usage batch upload."""

    success: bool = Field(..., description="Whether the batch was stored")
    message: str = Field(..., description="Response message")
    items_processed: int = Field(..., description="Number of app records stored")


class AnalysisStats(BaseModel):
    """Totals behind an analysis."""

    daily_total: int
    current_hour_total: int
    records_analyzed: int
    historical_records: int


class AlertsResponse(BaseModel):
    """Response model for alert analysis."""

    alerts: List[Dict[str, Any]] = Field(..., description="Alerts, most urgent first")
    analyzed: bool = Field(..., description="Whether an analysis ran")
    message: Optional[str] = Field(default=None, description="Explanation when nothing ran")
    stats: Optional[AnalysisStats] = Field(default=None, description="Totals behind the analysis")
    published: Optional[int] = Field(default=None, description="Alerts handed to delivery")


class AnalyzeRequest(BaseModel):
    """Request model for analyzing caller-supplied usage."""

    current_usage: List[UsageSample] = Field(
        ...,
        description="Samples under analysis; may be empty when only totals are checked"
    )
    historical_usage: List[UsageSample] = Field(default_factory=list)
    daily_total: int = Field(default=0, ge=0)
    current_hour_total: int = Field(default=0, ge=0)
    include_apps: bool = Field(
        default=False,
        description="Also run per-app anomaly detection on the samples"
    )
    config: Optional[DetectionOverrides] = Field(
        default=None,
        description="Partial detection config override"
    )


# API Endpoints
@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    settings = get_settings()
    return HealthResponse(status="ok", environment=settings.environment)


@app.post("/usage/batches", response_model=BatchResponse, status_code=status.HTTP_201_CREATED)
async def post_usage_batch(
    batch: UsageBatch,
    device_id: str = Query(..., min_length=1),
    store: UsageStore = Depends(get_store)
) -> BatchResponse:
    """Store a device's per-app usage batch.

    Args:
        batch: Usage captured on the device
        device_id: Device the batch belongs to
        store: Injected usage store

    Returns:
        BatchResponse: Number of records stored

    Raises:
        HTTPException: If storage fails
    """
    try:
        stored = store.add_records(batch.to_records(device_id))
    except RedisError as e:
        logger.error(f"Usage upload error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process usage data"
        )

    logger.info(
        f"Received usage batch from {device_id}: network={batch.network}, "
        f"apps={len(batch.apps)}"
    )
    return BatchResponse(success=True, message="Usage data received", items_processed=stored)


@app.get("/alerts", response_model=AlertsResponse, response_model_exclude_none=True)
async def get_alerts(
    device_id: str = Query(..., min_length=1),
    threshold: Optional[int] = Query(default=None, ge=0, description="Daily ceiling in MB"),
    sensitivity: Optional[Sensitivity] = Query(default=None),
    notify: bool = Query(default=False, description="Publish fresh alerts for delivery"),
    store: UsageStore = Depends(get_store),
    publisher: Optional[AlertPublisher] = Depends(get_publisher),
    now: datetime = Depends(get_clock)
) -> AlertsResponse:
    """Analyze today's usage of a device against its recent history.

    Args:
        device_id: Device to analyze
        threshold: Optional daily ceiling override in MB
        sensitivity: Optional sensitivity preset
        notify: Whether to hand fresh alerts to the publisher
        store: Injected usage store
        publisher: Injected alert publisher
        now: Injected current time

    Returns:
        AlertsResponse: Alerts and the totals they were computed from
    """
    settings = get_settings()
    config = DetectionConfig.from_options(
        threshold_mb=threshold,
        sensitivity=sensitivity,
        base=settings.detection_config()
    )

    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    window_start = today - timedelta(days=config.baseline_window_days)

    try:
        current_records = store.fetch_records([device_id], today, today + timedelta(days=1))
        historical_records = store.fetch_records([device_id], window_start, today)
    except RedisError as e:
        logger.error(f"Spike detection error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to analyze usage data"
        )

    if not current_records:
        return AlertsResponse(alerts=[], analyzed=True, message="No usage data for today")

    current = records_to_samples(current_records)
    historical = records_to_samples(historical_records)
    daily_total = sum(sample.bytes_used for sample in current)
    current_hour_total = hour_total(current, now)
    app_history, current_app_usage = build_app_usage_maps(current, historical)

    suppressed = publisher.suppressed_keys() if (notify and publisher) else None
    alerts = SpikeAnalyzer(config).analyze(
        current,
        historical,
        daily_total,
        current_hour_total,
        app_history=app_history,
        current_app_usage=current_app_usage,
        suppressed_keys=suppressed
    )

    published = None
    if notify and publisher is not None:
        published = len(publisher.publish(alerts))

    return AlertsResponse(
        alerts=[alert.to_dict() for alert in alerts],
        analyzed=True,
        stats=AnalysisStats(
            daily_total=daily_total,
            current_hour_total=current_hour_total,
            records_analyzed=len(current),
            historical_records=len(historical)
        ),
        published=published
    )


@app.post("/alerts/analyze", response_model=AlertsResponse, response_model_exclude_none=True)
async def analyze_usage(request: AnalyzeRequest) -> AlertsResponse:
    """Analyze caller-supplied usage samples.

    Args:
        request: Samples, totals and an optional config override

    Returns:
        AlertsResponse: Alerts, most urgent first
    """
    config = get_settings().detection_config()
    if request.config is not None:
        config = request.config.apply_to(config)

    app_history = current_app_usage = None
    if request.include_apps:
        app_history, current_app_usage = build_app_usage_maps(
            request.current_usage, request.historical_usage
        )

    alerts = SpikeAnalyzer(config).analyze(
        request.current_usage,
        request.historical_usage,
        request.daily_total,
        request.current_hour_total,
        app_history=app_history,
        current_app_usage=current_app_usage
    )
    return AlertsResponse(alerts=[alert.to_dict() for alert in alerts], analyzed=True)


# Override dependencies for testing
def override_store(store: Optional[UsageStore]) -> None:
    """Override the global usage store instance (for testing)."""
    global _store
    _store = store


def override_publisher(publisher: Optional[AlertPublisher]) -> None:
    """Override the global alert publisher instance (for testing)."""
    global _publisher
    _publisher = publisher
