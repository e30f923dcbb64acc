"""
Post update broadcaster, one shared server-sent-event channel.

Every connected subscriber receives every event; there is no per-user
filtering and no replay for late subscribers. Each subscriber owns a
bounded queue. Publishing never waits: when a subscriber's queue is full
the event is dropped for that subscriber only.

Event types (payload is camelCase JSON):
  postCreated  — full post or reply, likedBySelf null
  postUpdated  — same shape, after replace / text patch / media change
  postDeleted  — { id }
  postLiked    — { userId, postId }
  postUnliked  — { userId, postId }
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from fastapi import Request

from murmur.config import settings
from murmur.schemas import PostBase, PostDeletedEvent, PostLikeEvent
from murmur.telemetry import POST_EVENTS_TOTAL, SSE_SUBSCRIBERS

logger = logging.getLogger(__name__)

POST_CREATED = "postCreated"
POST_UPDATED = "postUpdated"
POST_DELETED = "postDeleted"
POST_LIKED = "postLiked"
POST_UNLIKED = "postUnliked"


@dataclass
class ServerSentEvent:
    event: str
    data: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def encode(self) -> str:
        """Wire format: id/event/data lines terminated by a blank line."""
        lines = [f"id: {self.id}", f"event: {self.event}"]
        lines += [f"data: {line}" for line in self.data.splitlines() or [""]]
        return "\n".join(lines) + "\n\n"


class PostUpdates:
    def __init__(self, queue_size: int | None = None) -> None:
        self._queue_size = queue_size or settings.sse_queue_size
        self._subscribers: set[asyncio.Queue] = set()
        self._lock = asyncio.Lock()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue]:
        """Register a subscriber for the lifetime of the context."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        async with self._lock:
            self._subscribers.add(queue)
        SSE_SUBSCRIBERS.inc()
        logger.debug("SSE subscriber connected (%d total)", self.subscriber_count)
        try:
            yield queue
        finally:
            async with self._lock:
                self._subscribers.discard(queue)
            SSE_SUBSCRIBERS.dec()
            logger.debug("SSE subscriber disconnected (%d total)", self.subscriber_count)

    async def publish(self, event: ServerSentEvent) -> None:
        """Fan out to all subscribers. Never raises into the caller."""
        try:
            async with self._lock:
                subscribers = list(self._subscribers)
            for queue in subscribers:
                try:
                    queue.put_nowait(event)
                except asyncio.QueueFull:
                    logger.warning("Dropping %s event for a slow SSE subscriber", event.event)
            POST_EVENTS_TOTAL.labels(type=event.event).inc()
        except Exception:
            logger.exception("Failed to broadcast %s event", event.event)

    async def new_post(self, post: PostBase) -> None:
        await self.publish(ServerSentEvent(event=POST_CREATED, data=post.to_json()))

    async def post_updated(self, post: PostBase) -> None:
        await self.publish(ServerSentEvent(event=POST_UPDATED, data=post.to_json()))

    async def post_deleted(self, post_id: str) -> None:
        payload = PostDeletedEvent(id=post_id)
        await self.publish(ServerSentEvent(event=POST_DELETED, data=payload.to_json()))

    async def post_liked(self, user_id: str, post_id: str) -> None:
        payload = PostLikeEvent(user_id=user_id, post_id=post_id)
        await self.publish(ServerSentEvent(event=POST_LIKED, data=payload.to_json()))

    async def post_unliked(self, user_id: str, post_id: str) -> None:
        payload = PostLikeEvent(user_id=user_id, post_id=post_id)
        await self.publish(ServerSentEvent(event=POST_UNLIKED, data=payload.to_json()))


def get_post_updates(request: Request) -> PostUpdates:
    """FastAPI dependency returning the application's broadcaster."""
    return request.app.state.post_updates


async def event_stream(request: Request, updates: PostUpdates) -> AsyncIterator[str]:
    """Encoded events for one client until it disconnects."""
    async with updates.subscribe() as queue:
        yield ": connected\n\n"
        while not await request.is_disconnected():
            try:
                event = await asyncio.wait_for(
                    queue.get(), timeout=settings.sse_keepalive_seconds
                )
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield event.encode()
