import json
import uuid

import redis

from app.core.config import settings
from app.core.logging import realtime_logger


class RedisClient:
    def __init__(self):
        self.client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            password=settings.REDIS_PASSWORD or None,
            decode_responses=True,
        )
        # Unique instance id so a worker can ignore its own published events
        self.instance_id = uuid.uuid4().hex

    def health_check(self) -> bool:
        """Check Redis connectivity"""
        try:
            return bool(self.client.ping())
        except Exception:
            return False

    def publish_feed_event(self, table: str, payload: dict) -> None:
        """Publish a change-feed payload on `feed:<table>`.

        Adds `origin` to the payload for origin filtering on subscribers.
        Best-effort: failures are logged, never raised.
        """
        try:
            payload = dict(payload)
            payload["origin"] = self.instance_id
            self.client.publish(f"feed:{table}", json.dumps(payload, default=str))
        except Exception as exc:
            realtime_logger.warning("Redis publish failed", table=table, error=str(exc))


redis_client = RedisClient()
