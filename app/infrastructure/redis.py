from typing import Optional, Dict, Type
import logging

import redis.asyncio as redis
from redis.asyncio import Redis
from pydantic import BaseModel, ValidationError as PydanticValidationError

logger = logging.getLogger(__name__)


class RedisManager:
    """Redis connection manager and utilities"""

    def __init__(self):
        self._redis_client: Optional[Redis] = None
        self._is_connected = False

    async def connect(self, redis_url: str) -> None:
        """Establish Redis connection"""
        try:
            self._redis_client = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=False,
                max_connections=20,
                retry_on_timeout=True,
                socket_timeout=5,
                socket_connect_timeout=5,
                health_check_interval=30
            )

            # Test connection
            await self._redis_client.ping()
            self._is_connected = True
            logger.info("Redis connection established")

        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self._is_connected = False
            raise

    async def disconnect(self) -> None:
        """Close Redis connection"""
        if self._redis_client:
            await self._redis_client.aclose()
            self._is_connected = False
            logger.info("Redis connection closed")

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    @property
    def client(self) -> Redis:
        """Get Redis client"""
        if not self._is_connected or not self._redis_client:
            raise RuntimeError("Redis is not connected")
        return self._redis_client

    async def is_healthy(self) -> bool:
        """Check Redis health"""
        try:
            if self._redis_client:
                await self._redis_client.ping()
                return True
        except Exception as e:
            logger.error(f"Redis health check failed: {e}")
        return False


# Global Redis manager instance
redis_manager = RedisManager()


class FlowStateStore:
    """Transient hand-off between the steps of the booking flow.

    Records live under booking_flow:<session>:<step> with a TTL. They are
    advisory: anything authoritative is re-read from the booking. A record
    that no longer parses is dropped and reported as missing.
    """

    KEY_PREFIX = "booking_flow"
    DEFAULT_TTL = 1800  # 30 minutes

    def __init__(self, redis_client: Redis, steps: Dict[str, Type[BaseModel]], ttl: Optional[int] = None):
        self.redis = redis_client
        self.steps = steps
        self.ttl = ttl or self.DEFAULT_TTL

    def _key(self, session_id: str, step: str) -> str:
        return f"{self.KEY_PREFIX}:{session_id}:{step}"

    def model_for(self, step: str) -> Type[BaseModel]:
        try:
            return self.steps[step]
        except KeyError:
            raise KeyError(f"Unknown flow step: {step}") from None

    async def put(self, session_id: str, step: str, record: BaseModel) -> None:
        model = self.model_for(step)
        if not isinstance(record, model):
            record = model.model_validate(record)
        await self.redis.setex(self._key(session_id, step), self.ttl, record.model_dump_json().encode("utf-8"))

    async def get(self, session_id: str, step: str) -> Optional[BaseModel]:
        model = self.model_for(step)
        key = self._key(session_id, step)
        value = await self.redis.get(key)
        if value is None:
            return None
        try:
            return model.model_validate_json(value)
        except PydanticValidationError as e:
            logger.warning(f"Discarding unreadable flow state {key}: {e}")
            await self.redis.delete(key)
            return None

    async def take(self, session_id: str, step: str) -> Optional[BaseModel]:
        """Read a record and delete it; each record is consumed once"""
        record = await self.get(session_id, step)
        await self.redis.delete(self._key(session_id, step))
        return record

    async def discard(self, session_id: str, step: str) -> bool:
        self.model_for(step)
        return await self.redis.delete(self._key(session_id, step)) > 0

    async def reset(self, session_id: str) -> int:
        """Drop every step of a session, used when the flow restarts"""
        keys = [self._key(session_id, step) for step in self.steps]
        removed = await self.redis.delete(*keys)
        logger.info(f"Flow state reset for session {session_id}: {removed} record(s) removed")
        return removed


flow_state_store: Optional[FlowStateStore] = None


async def init_redis_services(redis_url: str, steps: Dict[str, Type[BaseModel]], ttl: Optional[int] = None) -> None:
    """Initialize all Redis services"""
    global flow_state_store

    await redis_manager.connect(redis_url)
    flow_state_store = FlowStateStore(redis_manager.client, steps, ttl)

    logger.info("Redis services initialized")


async def close_redis_services() -> None:
    """Close all Redis services"""
    global flow_state_store

    await redis_manager.disconnect()
    flow_state_store = None
    logger.info("Redis services closed")
