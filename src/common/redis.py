"""Redis connection and data-access helpers for work items and live events."""

from __future__ import annotations

import json
from typing import Any

import redis

from src.common.config import Settings
from src.common.constants import EVENTS_CHANNEL, REDIS_SOCKET_TIMEOUT_SECS
from src.orchestrator.errors import NotFound
from src.orchestrator.events import EventPublisher
from src.orchestrator.models import Priority, WorkItem, WorkItemStatus, utcnow
from src.orchestrator.work_items import validate_new_item


_client: redis.Redis | None = None


def get_redis(settings: Settings | None = None) -> redis.Redis:
    """Return a shared Redis client (lazy singleton)."""
    global _client
    if _client is None:
        settings = settings or Settings()
        _client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            socket_timeout=REDIS_SOCKET_TIMEOUT_SECS,
            socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECS,
            decode_responses=True,
        )
    return _client


# ── Work items ───────────────────────────────────────────────────────────────


class RedisWorkItemStore:
    """Work items as hashes under ``work_item:<id>``.

    Ids come from ``INCR work_items:next_id``; ``work_items`` is a sorted
    set scored by creation time.
    """

    def __init__(self, client: redis.Redis | None = None) -> None:
        self._r = client if client is not None else get_redis()

    @staticmethod
    def _key(work_item_id: int) -> str:
        return f"work_item:{work_item_id}"

    def create(
        self,
        title: str,
        description: str | None = None,
        priority: str = Priority.MEDIUM,
    ) -> WorkItem:
        validate_new_item(title, priority)
        item = WorkItem(
            id=int(self._r.incr("work_items:next_id")),
            title=title.strip(),
            description=description,
            priority=priority,
        )
        pipe = self._r.pipeline()
        pipe.hset(self._key(item.id), mapping={
            k: "" if v is None else str(v)
            for k, v in item.to_dict().items()
        })
        pipe.zadd("work_items", {str(item.id): item.created_at.timestamp()})
        pipe.execute()
        return item

    def load(self, work_item_id: int) -> WorkItem:
        raw = self._r.hgetall(self._key(work_item_id))
        if not raw:
            raise NotFound("work item", work_item_id)
        return WorkItem.from_dict(raw)

    def set_status(self, work_item_id: int, status: str) -> WorkItem:
        if status not in WorkItemStatus.ALL:
            raise ValueError(f"Unknown work item status: '{status}'")
        key = self._key(work_item_id)
        if not self._r.exists(key):
            raise NotFound("work item", work_item_id)
        self._r.hset(key, mapping={
            "status": status,
            "updated_at": utcnow().isoformat(),
        })
        return self.load(work_item_id)

    def list(self) -> list[WorkItem]:
        """Newest first."""
        ids = self._r.zrevrange("work_items", 0, -1)
        return [self.load(int(i)) for i in ids]


# ── Live events ──────────────────────────────────────────────────────────────


class RedisEventPublisher(EventPublisher):
    """Publishes ``{"event": ..., "data": ...}`` JSON on a pub/sub channel."""

    def __init__(
        self,
        client: redis.Redis | None = None,
        channel: str = EVENTS_CHANNEL,
    ) -> None:
        super().__init__()
        self._r = client if client is not None else get_redis()
        self.channel = channel

    def _deliver(self, event: str, payload: dict[str, Any]) -> None:
        message = json.dumps({"event": event, "data": payload}, default=str)
        self._r.publish(self.channel, message)
