"""Alert delivery.

Publishes analyzed alerts on a Redis Pub/Sub channel for dashboards and
push-notification workers. Remembers what was already delivered so the
same application (or device-wide detector) is not announced again within
the suppression window. This is the only stateful piece of the alert
path; the detection core never sees it except through the suppressed keys
it may be handed.
"""

import json
import logging
import time
from typing import Dict, List, Optional, Sequence, Set

import redis
from redis.exceptions import RedisError

from usage_spikes.models import Alert, AlertKind, AppKey, DedupKey, KindKey, dedup_key_token
from usage_spikes.notifications import plan_notifications


logger = logging.getLogger(__name__)


class AlertPublisher:
    """Redis-backed alert broadcaster with time-window suppression.

    Suppression keys combine the alert's dedup key with the hour bucket of
    its detection time and are recorded with ``SET NX EX``, so concurrent
    publishers agree on which one delivers.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        channel: str = "usage-alerts",
        suppression_seconds: int = 3600,
        min_notify_percentage: int = 50,
        key_prefix: str = "notified:",
        client: Optional[redis.Redis] = None
    ) -> None:
        """Initialize the publisher.

        Args:
            redis_url: Redis connection URL, used when no client is given
            channel: Pub/Sub channel name for publishing alerts
            suppression_seconds: How long a delivered key stays suppressed
            min_notify_percentage: Alerts below this increase are not published
            key_prefix: Prefix for suppression marker keys
            client: Pre-built Redis client (tests inject a mock here)
        """
        self.channel = channel
        self.suppression_seconds = suppression_seconds
        self.min_notify_percentage = min_notify_percentage
        self.key_prefix = key_prefix

        self.redis_client: Optional[redis.Redis] = client
        if self.redis_client is None and redis_url:
            try:
                self.redis_client = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_timeout=5
                )
                self.redis_client.ping()
                logger.info(f"Connected to Redis for alerts: {redis_url}")
            except RedisError as e:
                logger.error(f"Failed to connect to Redis for alerts: {e}")
                self.redis_client = None

        # Statistics
        self.total_published = 0
        self.total_suppressed = 0
        self.total_errors = 0

        logger.info(
            f"AlertPublisher initialized: channel={channel}, "
            f"suppression={suppression_seconds}s, min_pct={min_notify_percentage}"
        )

    def _marker_key(self, alert: Alert) -> str:
        hour_bucket = int(alert.detected_at.timestamp() // 3600)
        return f"{self.key_prefix}{dedup_key_token(alert.dedup_key)}:{hour_bucket}"

    def _claim(self, alert: Alert) -> bool:
        """Record delivery of an alert; False if it was already delivered."""
        if self.redis_client is None:
            return True
        try:
            claimed = self.redis_client.set(
                self._marker_key(alert),
                alert.id,
                nx=True,
                ex=self.suppression_seconds
            )
            return bool(claimed)
        except RedisError as e:
            logger.error(f"Failed to record alert delivery: {e}")
            self.total_errors += 1
            return True

    def publish(self, alerts: Sequence[Alert]) -> List[Alert]:
        """Publish alerts that are significant and not yet delivered.

        Args:
            alerts: Alerts from the analyzer, most urgent first

        Returns:
            List[Alert]: The alerts that were actually published
        """
        fresh: List[Alert] = []
        for alert in alerts:
            if alert.percentage_increase < self.min_notify_percentage:
                logger.debug(f"Alert {alert.id} below notify threshold, skipping")
                continue
            if not self._claim(alert):
                self.total_suppressed += 1
                logger.debug(f"Alert {alert.id} suppressed ({alert.dedup_key})")
                continue
            fresh.append(alert)

        if not fresh or self.redis_client is None:
            return fresh

        payload = {
            "alerts": [alert.to_dict() for alert in fresh],
            "notifications": [n.model_dump() for n in plan_notifications(fresh)],
            "published_at": time.time(),
        }
        try:
            subscribers = self.redis_client.publish(self.channel, json.dumps(payload))
        except RedisError as e:
            logger.error(f"Failed to publish alerts to Redis: {e}")
            self.total_errors += 1
            self._release(fresh)
            return []

        self.total_published += len(fresh)
        logger.info(f"Published {len(fresh)} alerts to {self.channel}, subscribers={subscribers}")
        return fresh

    def _release(self, alerts: Sequence[Alert]) -> None:
        """Drop delivery markers of alerts that never went out."""
        try:
            self.redis_client.delete(*[self._marker_key(alert) for alert in alerts])
        except RedisError as e:
            logger.error(f"Failed to release delivery markers: {e}")
            self.total_errors += 1

    def suppressed_keys(self) -> Set[DedupKey]:
        """Dedup keys currently inside their suppression window.

        Returns:
            Set[DedupKey]: Keys to hand back to the analyzer
        """
        keys: Set[DedupKey] = set()
        if self.redis_client is None:
            return keys
        try:
            for marker in self.redis_client.scan_iter(match=f"{self.key_prefix}*"):
                key = _parse_marker(marker[len(self.key_prefix):])
                if key is not None:
                    keys.add(key)
        except RedisError as e:
            logger.error(f"Failed to read suppressed keys: {e}")
            self.total_errors += 1
        return keys

    def close(self) -> None:
        """Close the Redis connection."""
        if self.redis_client is not None:
            try:
                self.redis_client.close()
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
        logger.info("AlertPublisher stopped")

    def get_stats(self) -> Dict[str, int]:
        """Get delivery statistics."""
        return {
            "total_published": self.total_published,
            "total_suppressed": self.total_suppressed,
            "total_errors": self.total_errors
        }

    def __repr__(self) -> str:
        return (
            f"AlertPublisher(channel={self.channel}, "
            f"published={self.total_published}, suppressed={self.total_suppressed})"
        )


def _parse_marker(token: str) -> Optional[DedupKey]:
    """Inverse of the marker layout ``<variant>:<payload>:<hour bucket>``."""
    body, _, _ = token.rpartition(":")
    variant, _, payload = body.partition(":")
    if variant == "app" and payload:
        return AppKey(payload)
    if variant == "kind":
        try:
            return KindKey(AlertKind(payload))
        except ValueError:
            return None
    return None
