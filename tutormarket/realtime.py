"""
Change feed over Redis pub/sub.

Committed inserts, updates and deletes are published as JSON on one channel per
table, changes:<table>. Subscribers listen to one table, or to every table
through the changes:* pattern. Subscriptions are scoped: use them as async
context managers so they are always released.

Delivery is best effort. Events published while nobody listens are gone, and
clients are expected to re-fetch, the same way the admin views offer a manual
refresh.
"""
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

import redis
from redis.asyncio import Redis as AsyncRedis
from redis.asyncio.client import PubSub
from sqlalchemy import event
from sqlalchemy.orm import Session

from tutormarket.config import get_settings
from tutormarket.errors import RemoteCallFailed
from tutormarket.logger import logger

ALL_TABLES = "*"
CHANNEL_PREFIX = "changes:"

def channel_for(table: str) -> str:
    return f"{CHANNEL_PREFIX}{table}"

@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event_type: str  # INSERT, UPDATE or DELETE
    row_id: Optional[str]
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "event_type": self.event_type,
            "row_id": self.row_id,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChangeEvent":
        return cls(data["table"], data["event_type"], data.get("row_id"), datetime.fromisoformat(data["occurred_at"]))


class ChangeFeed:
    """
    Publishes committed changes and hands out subscriptions.

    Publishing uses a sync client, since commits happen in sync request
    handlers. Every subscription gets its own async client from the
    subscriber factory, bound to the event loop that listens.
    """

    def __init__(self):
        self._publisher: Optional[redis.Redis] = None
        self._subscriber_factory: Optional[Callable[[], AsyncRedis]] = None

    def initialize(self, publisher: redis.Redis, subscriber_factory: Callable[[], AsyncRedis]):
        self._publisher = publisher
        self._subscriber_factory = subscriber_factory

    def initialize_from_settings(self):
        settings = get_settings()
        connection = {"host": settings.redis_host, "port": settings.redis_port, "password": settings.redis_password}
        self.initialize(redis.StrictRedis(**connection), lambda: AsyncRedis(**connection))
        logger.info(f"Change feed publishing to redis at {settings.redis_host}:{settings.redis_port}")

    def reset(self):
        self._publisher = None
        self._subscriber_factory = None

    @property
    def enabled(self) -> bool:
        return self._publisher is not None

    def publish(self, change: ChangeEvent) -> int:
        """Publish one change. Returns the number of receivers, 0 when redis is unavailable."""
        if self._publisher is None:
            return 0
        try:
            return self._publisher.publish(channel_for(change.table), json.dumps(change.to_dict()))
        except redis.RedisError as e:
            logger.warning(f"Could not publish {change.event_type} on {change.table}: {str(e)}")
            return 0

    @asynccontextmanager
    async def subscribe(self, table: str) -> AsyncIterator[PubSub]:
        """
        Subscribe to one table, or ALL_TABLES. The subscription is active on
        entry, so nothing committed after that point is missed.

        Raises:
        - RemoteCallFailed: the feed is not configured or redis is unreachable
        """
        if self._subscriber_factory is None:
            raise RemoteCallFailed("Change feed is not available")
        client = self._subscriber_factory()
        pubsub = client.pubsub(ignore_subscribe_messages=True)
        channel = channel_for(table)
        try:
            if table == ALL_TABLES:
                await pubsub.psubscribe(channel)
            else:
                await pubsub.subscribe(channel)
        except redis.RedisError as e:
            logger.error(f"Could not subscribe to {channel}: {str(e)}")
            await pubsub.aclose()
            await client.aclose()
            raise RemoteCallFailed("Change feed is not available")
        try:
            yield pubsub
        finally:
            try:
                if table == ALL_TABLES:
                    await pubsub.punsubscribe(channel)
                else:
                    await pubsub.unsubscribe(channel)
            except redis.RedisError as e:
                logger.warning(f"Could not unsubscribe from {channel}: {str(e)}")
            await pubsub.aclose()
            await client.aclose()


async def changes(pubsub: PubSub) -> AsyncIterator[ChangeEvent]:
    """Change events arriving on a subscription. Malformed messages are skipped."""
    async for message in pubsub.listen():
        if message["type"] not in ("message", "pmessage"):
            continue
        try:
            yield ChangeEvent.from_dict(json.loads(message["data"]))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping malformed change message on {message.get('channel')}: {str(e)}")


# Global feed instance
change_feed = ChangeFeed()

_PENDING_KEY = "pending_changes"

def record_change(session: Session, table: str, event_type: str, row_id: Optional[str]):
    """Queue a change for publication when the session commits. Used for Core statements the ORM does not track."""
    session.info.setdefault(_PENDING_KEY, []).append(ChangeEvent(table, event_type, row_id))

@event.listens_for(Session, "after_flush")
def _collect_orm_changes(session, flush_context):
    for event_type, objects in (("INSERT", session.new), ("UPDATE", session.dirty), ("DELETE", session.deleted)):
        for obj in objects:
            table = getattr(obj, "__tablename__", None)
            if table is None:
                continue
            if event_type == "UPDATE" and not session.is_modified(obj, include_collections=False):
                continue
            record_change(session, table, event_type, getattr(obj, "id", None))

@event.listens_for(Session, "after_commit")
def _publish_committed_changes(session):
    pending = session.info.pop(_PENDING_KEY, [])
    for change in pending:
        change_feed.publish(change)

@event.listens_for(Session, "after_rollback")
def _discard_rolled_back_changes(session):
    session.info.pop(_PENDING_KEY, None)
