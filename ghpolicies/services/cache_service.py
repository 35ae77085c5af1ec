"""Redis service for scan status notifications."""

import json
import logging
from typing import Any, Dict, Optional

import redis

from ghpolicies.core.config import settings

logger = logging.getLogger("ghpolicies.cache")


class CacheService:
    """Redis-backed pub/sub for scan and remediation progress."""

    def __init__(self, url: Optional[str] = None):
        self._url = url or settings.REDIS_URL
        self._client: Optional[redis.Redis] = None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._url,
                decode_responses=True,
                max_connections=20,
            )
        return self._client

    def publish(self, channel: str, message: str) -> None:
        """Publish a message to a Redis channel."""
        try:
            self.client.publish(channel, message)
        except redis.ConnectionError:
            logger.debug("Redis unavailable, dropped message on %s", channel)

    def publish_scan_event(self, scan_id: Optional[int], payload: Dict[str, Any]) -> None:
        """Announce a scan or remediation outcome on ``scan:{id}``."""
        if scan_id is None:
            return
        self.publish(f"scan:{scan_id}", json.dumps(payload, default=str))

    def health_check(self) -> bool:
        """Check if Redis is reachable."""
        try:
            return self.client.ping()
        except redis.ConnectionError:
            return False


cache_service = CacheService()
