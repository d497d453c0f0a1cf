"""
Redis cache for lesson chat transcripts.

Each (course, lesson, user) transcript is a Redis list of JSON messages,
trimmed to the most recent turns and expired after a day. Every operation
degrades to a cache miss when Redis is down; the database stays the source
of truth.
"""

import os
import json
import time
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_NAMESPACE = "chat"
TRANSCRIPT_TTL_SECONDS = 24 * 60 * 60
MAX_CACHED_MESSAGES = 20
# After a failed connect, wait this long before trying Redis again
RECONNECT_COOLDOWN_SECONDS = 60.0

_connection: Optional[aioredis.Redis] = None
_offline_until = 0.0
_connect_lock = asyncio.Lock()


async def _redis() -> Optional[aioredis.Redis]:
    global _connection, _offline_until
    if _connection is not None:
        return _connection
    if time.monotonic() < _offline_until:
        return None

    async with _connect_lock:
        if _connection is None and time.monotonic() >= _offline_until:
            url = os.getenv("REDIS_URL", "redis://localhost:6379")
            candidate = aioredis.from_url(url, decode_responses=True)
            try:
                await candidate.ping()
            except Exception as e:
                logger.warning(f"Redis at {url} unreachable, chat history served from the database: {e}")
                _offline_until = time.monotonic() + RECONNECT_COOLDOWN_SECONDS
                return None
            logger.info(f"Chat cache connected to {url}")
            _connection = candidate
    return _connection


async def _with_redis(operation: str, action: Callable[[aioredis.Redis], Awaitable[T]], fallback: T) -> T:
    """Run action against Redis, returning fallback when Redis is missing or errors."""
    try:
        client = await _redis()
        if client is None:
            return fallback
        return await action(client)
    except Exception as e:
        logger.warning(f"Chat cache {operation} failed: {e}")
        return fallback


def transcript_key(course_id: str, module_index: int, lesson_index: int, user_id: str) -> str:
    """chat:{course_id}:{module}-{lesson}:{user_id}"""
    return f"{KEY_NAMESPACE}:{course_id}:{module_index}-{lesson_index}:{user_id}"


async def get_chat_history(
    course_id: str,
    module_index: int,
    lesson_index: int,
    user_id: str,
    limit: int = MAX_CACHED_MESSAGES,
) -> Optional[List[Dict[str, Any]]]:
    """Most recent cached messages, oldest first. None means a cache miss."""
    key = transcript_key(course_id, module_index, lesson_index, user_id)

    async def read(client: aioredis.Redis) -> Optional[List[Dict[str, Any]]]:
        entries = await client.lrange(key, -limit, -1)
        return [json.loads(entry) for entry in entries] or None

    return await _with_redis("read", read, None)


async def push_messages(
    course_id: str,
    module_index: int,
    lesson_index: int,
    user_id: str,
    messages: List[Dict[str, Any]],
) -> bool:
    """Append messages, keep the last MAX_CACHED_MESSAGES and refresh the TTL."""
    key = transcript_key(course_id, module_index, lesson_index, user_id)

    async def append(client: aioredis.Redis) -> bool:
        async with client.pipeline(transaction=True) as pipe:
            pipe.rpush(key, *[json.dumps(m, default=str) for m in messages])
            pipe.ltrim(key, -MAX_CACHED_MESSAGES, -1)
            pipe.expire(key, TRANSCRIPT_TTL_SECONDS)
            await pipe.execute()
        return True

    if not messages:
        return True
    return await _with_redis("append", append, False)


async def clear_chat(course_id: str, module_index: int, lesson_index: int, user_id: str) -> bool:
    key = transcript_key(course_id, module_index, lesson_index, user_id)

    async def delete(client: aioredis.Redis) -> bool:
        await client.delete(key)
        return True

    return await _with_redis("clear", delete, False)


async def clear_course_chats(course_id: str, user_id: str) -> bool:
    """Drop the cached transcripts of every lesson in a course."""
    pattern = f"{KEY_NAMESPACE}:{course_id}:*:{user_id}"

    async def delete_all(client: aioredis.Redis) -> bool:
        keys = [key async for key in client.scan_iter(match=pattern)]
        if keys:
            await client.delete(*keys)
        return True

    return await _with_redis("course clear", delete_all, False)
