"""
Bridge the in-process change feed across workers with Redis pub/sub.

Local publishes go out on `feed:<table>`; a background listener thread
re-injects events published by other workers. Each payload carries the
publishing worker's `origin` id so a worker never delivers its own event
twice.
"""
import asyncio
import json
import threading
from typing import Optional

from app.core.logging import realtime_logger
from app.db.enums import FeedEvent
from app.realtime.feed import ChangeEvent, ChangeFeed


def parse_feed_message(msg: dict, instance_id: Optional[str]) -> Optional[ChangeEvent]:
    """Turn a pub/sub message into a ChangeEvent, or None to skip it."""
    if msg.get("type") not in ("pmessage", "message"):
        return None
    try:
        data_raw = msg.get("data")
        if isinstance(data_raw, bytes):
            data_raw = data_raw.decode("utf-8")
        payload = json.loads(data_raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict) or payload.get("origin") == instance_id:
        return None

    channel_name = msg.get("channel") or ""
    if isinstance(channel_name, bytes):
        channel_name = channel_name.decode("utf-8")
    # feed:channel_messages -> channel_messages
    table = payload.get("table") or channel_name.split(":", 1)[-1]
    try:
        event = FeedEvent(payload.get("eventType", FeedEvent.insert.value))
    except ValueError:
        return None
    row = payload.get("new")
    if not table or not isinstance(row, dict):
        return None
    return ChangeEvent(table=table, event=event, row=row)


class RedisFeedBridge:
    def __init__(self, redis_client, feed: ChangeFeed):
        self.redis_client = redis_client
        self.feed = feed
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._pubsub = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _forward(self, change: ChangeEvent) -> None:
        self.redis_client.publish_feed_event(change.table, change.to_dict())

    def start(self) -> bool:
        """Subscribe to `feed:*` and start listening.

        Returns False, without raising, when Redis is unreachable; the feed
        then stays process-local.
        """
        if not self.redis_client.health_check():
            realtime_logger.warning("Redis unavailable, change feed stays local")
            return False
        try:
            self._pubsub = self.redis_client.client.pubsub()
            self._pubsub.psubscribe("feed:*")
        except Exception as exc:
            realtime_logger.warning("Redis subscribe failed, change feed stays local", error=str(exc))
            return False

        loop = asyncio.get_running_loop()
        self.feed.add_forwarder(self._forward)
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._listen, args=(loop,), daemon=True)
        self._thread.start()
        realtime_logger.info("Redis feed bridge started", instance_id=self.redis_client.instance_id)
        return True

    def _listen(self, loop: asyncio.AbstractEventLoop) -> None:
        instance_id = self.redis_client.instance_id
        try:
            while not self._stop_event.is_set():
                try:
                    msg = self._pubsub.get_message(timeout=1)
                except Exception as exc:
                    realtime_logger.warning("Redis listener read failed", error=str(exc))
                    break
                if not msg:
                    continue
                change = parse_feed_message(msg, instance_id)
                if change is None:
                    continue
                if loop.is_closed():
                    break
                loop.call_soon_threadsafe(self.feed.deliver, change)
        finally:
            try:
                self._pubsub.close()
            except Exception:
                pass

    def stop(self) -> None:
        self.feed.remove_forwarder(self._forward)
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None
        realtime_logger.info("Redis feed bridge stopped")
