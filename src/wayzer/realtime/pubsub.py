"""Redis connection + cross-instance notification fan-out.

The connection registry only knows sockets opened against this process.
With several API instances behind a load balancer, a recipient may be
connected elsewhere. RedisFanout closes that gap: every frame is
PUBLISHed on one channel, every instance SUBSCRIBEs and hands the frames
to its own registry.

Redis pub/sub is fire-and-forget, which matches the relay's at-most-once
contract: a frame nobody is listening for is simply lost.

Channel: wayzer:user-events
Payload: {"user_id": "...", "payload": {...frame...}}
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional

import redis.asyncio as aioredis
import structlog

from wayzer.config import settings

logger = structlog.get_logger()

CHANNEL = "wayzer:user-events"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis() -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    _redis = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    # Verify connection
    await _redis.ping()
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


FrameHandler = Callable[[str, dict[str, Any]], Awaitable[Any]]


class RedisFanout:
    """Publish user-addressed frames and feed remote ones to a handler."""

    def __init__(self, redis: aioredis.Redis, channel: str = CHANNEL):
        self.redis = redis
        self.channel = channel

    async def publish(self, user_id: str, payload: dict[str, Any]) -> None:
        await self.redis.publish(
            self.channel,
            json.dumps({"user_id": str(user_id), "payload": payload}, default=str),
        )

    async def run(self, handler: FrameHandler) -> None:
        """Subscribe and dispatch frames until cancelled.

        A malformed envelope or a failing handler is logged and skipped;
        one bad frame must not stop delivery for everyone else.
        """
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info("fanout.subscribed", channel=self.channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                    await handler(envelope["user_id"], envelope["payload"])
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning("fanout.bad_envelope", error=str(e))
                except Exception as e:
                    logger.error("fanout.handler_failed", error=str(e))
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
