"""
Realtime document store on top of Redis.

Every document path (``powerSources``, ``loadSettings``,
``rooms/{roomId}/devices/{deviceId}``) is stored as one JSON string under
``{key_prefix}{path}``. Each write publishes the path on the channel
``{channel_prefix}{path}`` so subscribers can re-read the document.

Operations:
- get(path): Read a document (None when absent).
- set(path, doc): Overwrite a document.
- modify(path, mutate): Optimistic WATCH/MULTI read-modify-write.
- update(path, fields): Partial merge; unspecified fields keep their value.
- push(path, entry): Append an entry to an append-only log list.
- publish(channel, message): Fire a message on an arbitrary channel.
- watch(path): Async iterator of snapshots, current value first.

CHANGELOG:
- 2026-10-07: Add modify() so list edits cannot lose concurrent writes (STORY-010)
- 2026-10-03: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

import redis.asyncio as redis

logger = logging.getLogger(__name__)

Document = dict[str, Any]


def create_redis(url: str) -> redis.Redis:
    """Create an async Redis client that returns ``str`` values.

    Args:
        url: Redis connection URL.

    Returns:
        redis.Redis: Async Redis client.
    """
    return redis.from_url(url, decode_responses=True)


def _decode(raw: str | bytes | None, key: str) -> Document | None:
    """Decode a stored JSON document, ignoring anything that is not an object."""
    if raw is None:
        return None
    try:
        doc = json.loads(raw)
    except ValueError:
        logger.warning("Key %s does not hold valid JSON, treating as absent", key)
        return None
    if not isinstance(doc, dict):
        logger.warning("Key %s does not hold a JSON object, treating as absent", key)
        return None
    return doc


class DocumentStore:
    """JSON document store with change notifications, backed by Redis.

    Writes are last-write-wins. ``modify`` retries its read-modify-write
    when another writer touches the document between the read and the
    write, so merges never drop fields written concurrently.

    Args:
        client: An async Redis client (see :func:`create_redis`).
        key_prefix: Prefix prepended to document paths to build keys.
        channel_prefix: Prefix prepended to document paths to build the
            change-notification channel names.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        key_prefix: str = "doc:",
        channel_prefix: str = "changes:",
    ) -> None:
        self._client = client
        self._key_prefix = key_prefix
        self._channel_prefix = channel_prefix

    def key(self, path: str) -> str:
        """Return the Redis key holding the document at *path*."""
        return f"{self._key_prefix}{path}"

    def channel(self, path: str) -> str:
        """Return the pub/sub channel announcing changes to *path*."""
        return f"{self._channel_prefix}{path}"

    async def close(self) -> None:
        """Close the underlying Redis connection pool."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    async def get(self, path: str) -> Document | None:
        """Return the document at *path*, or None if it does not exist."""
        key = self.key(path)
        return _decode(await self._client.get(key), key)

    async def set(self, path: str, doc: Document) -> None:
        """Overwrite the document at *path* and announce the change."""
        await self._client.set(self.key(path), json.dumps(doc))
        await self._client.publish(self.channel(path), path)

    async def modify(
        self,
        path: str,
        mutate: Callable[[Document], Document | None],
    ) -> Document:
        """Atomically read, transform and write back the document at *path*.

        *mutate* receives the current document (an empty dict when absent)
        and returns the new document, or None after mutating in place. It
        may be called more than once if a concurrent writer wins the race,
        so it must not have side effects. Exceptions raised by *mutate*
        abort the write and propagate to the caller.

        Returns:
            The document as written.
        """
        key = self.key(path)

        async def _apply(pipe: Any) -> Document:
            doc = _decode(await pipe.get(key), key) or {}
            updated = mutate(doc)
            if updated is None:
                updated = doc
            pipe.multi()
            pipe.set(key, json.dumps(updated))
            return updated

        result = await self._client.transaction(_apply, key, value_from_callable=True)
        await self._client.publish(self.channel(path), path)
        return result

    async def update(self, path: str, fields: Document) -> Document:
        """Merge *fields* onto the document at *path*.

        Fields not named in *fields* retain their prior value.

        Returns:
            The merged document.
        """
        return await self.modify(path, lambda doc: {**doc, **fields})

    async def push(self, path: str, entry: Document) -> None:
        """Append *entry* to the log list at *path*."""
        await self._client.rpush(self.key(path), json.dumps(entry))
        await self._client.publish(self.channel(path), path)

    async def publish(self, channel: str, message: str) -> None:
        """Publish *message* on *channel*."""
        await self._client.publish(channel, message)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def watch(self, path: str) -> AsyncIterator[Document | None]:
        """Yield the document at *path* now and after every change.

        The channel is subscribed before the first read so no change can
        slip between the initial snapshot and the subscription. Closing or
        cancelling the consumer of this iterator unsubscribes.

        Yields:
            The latest document, or None while it does not exist.
        """
        channel = self.channel(path)
        pubsub = self._client.pubsub()
        await pubsub.subscribe(channel)
        logger.info("Subscribed to %s", channel)
        try:
            yield await self.get(path)
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                yield await self.get(path)
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except Exception:
                logger.warning("Failed to release subscription %s", channel, exc_info=True)
            logger.info("Unsubscribed from %s", channel)
