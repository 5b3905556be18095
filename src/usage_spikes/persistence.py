"""Persistence layer for device usage records.

Provides the storage abstraction the alerts endpoint reads usage samples
from. Includes a Redis-based production implementation and an in-memory
testing backend.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Sequence

import redis
from redis.exceptions import RedisError, ConnectionError as RedisConnectionError

from usage_spikes.models import UsageRecord


logger = logging.getLogger(__name__)


class UsageStore(ABC):
    """Abstract base class for usage record storage.

    Produces finite, time-ordered collections of usage records per device.
    """

    @abstractmethod
    def add_records(self, records: Iterable[UsageRecord]) -> int:
        """Store usage records.

        Args:
            records: Records to store

        Returns:
            int: Number of records stored
        """
        pass

    @abstractmethod
    def fetch_records(
        self,
        device_ids: Sequence[str],
        start: datetime,
        end: datetime
    ) -> List[UsageRecord]:
        """Fetch records with ``start <= timestamp < end``.

        Args:
            device_ids: Devices to read
            start: Inclusive lower bound
            end: Exclusive upper bound

        Returns:
            List[UsageRecord]: Matching records ordered by timestamp
        """
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        pass


class RedisUsageStore(UsageStore):
    """Redis-based usage store for production use.

    Keeps one sorted set per device, scored by the record's epoch seconds
    and holding the record's JSON. Range reads use ZRANGEBYSCORE.
    """

    def __init__(self, redis_url: str, key_prefix: str = "usage:") -> None:
        """Initialize Redis usage store.

        Args:
            redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
            key_prefix: Prefix for per-device sorted set keys

        Raises:
            RedisConnectionError: If connection to Redis fails
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix

        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=5,
                socket_connect_timeout=5
            )
            self.client.ping()
            logger.info(f"Connected to Redis at {redis_url}")
        except (RedisConnectionError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    def _key(self, device_id: str) -> str:
        return f"{self.key_prefix}{device_id}"

    def add_records(self, records: Iterable[UsageRecord]) -> int:
        """Add records to their devices' sorted sets in one pipeline.

        Raises:
            RedisError: If the write fails
        """
        count = 0
        try:
            pipe = self.client.pipeline()
            for record in records:
                pipe.zadd(
                    self._key(record.device_id),
                    {record.model_dump_json(): record.timestamp.timestamp()}
                )
                count += 1
            pipe.execute()
        except RedisError as e:
            logger.error(f"Failed to store usage records: {e}")
            raise
        logger.debug(f"Stored {count} usage records")
        return count

    def fetch_records(
        self,
        device_ids: Sequence[str],
        start: datetime,
        end: datetime
    ) -> List[UsageRecord]:
        """Read records in ``[start, end)`` across devices, time-ordered.

        Raises:
            RedisError: If the read fails
        """
        records: List[UsageRecord] = []
        try:
            for device_id in device_ids:
                members = self.client.zrangebyscore(
                    self._key(device_id),
                    start.timestamp(),
                    f"({end.timestamp()}"
                )
                records.extend(UsageRecord.model_validate_json(m) for m in members)  # type: ignore
        except RedisError as e:
            logger.error(f"Failed to fetch usage records: {e}")
            raise
        records.sort(key=lambda r: r.timestamp)
        logger.debug(f"Fetched {len(records)} records for {len(device_ids)} devices")
        return records

    def clear(self) -> None:
        """Delete every usage key under the prefix (use with caution!)."""
        try:
            keys = list(self.client.scan_iter(match=f"{self.key_prefix}*"))
            if keys:
                self.client.delete(*keys)
            logger.warning(f"Cleared {len(keys)} usage keys")
        except RedisError as e:
            logger.error(f"Failed to clear data: {e}")

    def close(self) -> None:
        """Close the Redis connection."""
        try:
            self.client.close()
            logger.info("Redis connection closed")
        except RedisError as e:
            logger.error(f"Error closing Redis connection: {e}")


class InMemoryUsageStore(UsageStore):
    """In-memory usage store for testing.

    Uses a dictionary of per-device lists guarded by a lock. No
    durability, but fast and simple.
    """

    def __init__(self) -> None:
        self.records: Dict[str, List[UsageRecord]] = defaultdict(list)
        self.lock = threading.RLock()
        logger.info("Initialized InMemoryUsageStore")

    def add_records(self, records: Iterable[UsageRecord]) -> int:
        count = 0
        with self.lock:
            for record in records:
                self.records[record.device_id].append(record)
                count += 1
        return count

    def fetch_records(
        self,
        device_ids: Sequence[str],
        start: datetime,
        end: datetime
    ) -> List[UsageRecord]:
        with self.lock:
            matched = [
                record
                for device_id in device_ids
                for record in self.records.get(device_id, [])
                if start <= record.timestamp < end
            ]
        matched.sort(key=lambda r: r.timestamp)
        return matched

    def clear(self) -> None:
        """Clear all in-memory data."""
        with self.lock:
            self.records.clear()
            logger.info("Cleared all in-memory data")

    def count(self) -> int:
        """Total number of stored records (testing helper)."""
        with self.lock:
            return sum(len(v) for v in self.records.values())
