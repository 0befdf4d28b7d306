"""
Redis Case Store
================

Case store backed by Redis, for deployments with more than one API process.

Layout (mirrors the document paths of the managed store):
- artifacts:{app_id}:cases:{case_id}          JSON string, one case document
- artifacts:{app_id}:cases:{case_id}:changes  pub/sub channel, full document per write
- artifacts:{app_id}:stats:{stats_doc_id}     hash {likes, dislikes, lastUpdated}
- artifacts:{app_id}:stats:{stats_doc_id}:changes

Conditional updates use WATCH/MULTI; counters use HINCRBY.
"""

import json
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from ..errors import InvalidCaseCode, StoreUnavailable
from .base import CaseStore, apply_updates, conditions_hold

logger = logging.getLogger(__name__)

_UNREACHABLE = (RedisConnectionError, RedisTimeoutError, OSError)


class RedisCaseStore(CaseStore):
    """Case store adapter over redis.asyncio"""

    def __init__(self, redis_url: str, app_id: str, stats_doc_id: str, max_cas_retries: int = 20):
        self.redis_url = redis_url
        self.app_id = app_id
        self.stats_doc_id = stats_doc_id
        self.max_cas_retries = max_cas_retries
        self._client: Optional[redis.Redis] = None

    def _case_key(self, case_id: str) -> str:
        return f"artifacts:{self.app_id}:cases:{case_id}"

    def _stats_key(self) -> str:
        return f"artifacts:{self.app_id}:stats:{self.stats_doc_id}"

    @staticmethod
    def _channel(key: str) -> str:
        return f"{key}:changes"

    async def connect(self) -> None:
        client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await client.ping()
        except _UNREACHABLE as e:
            await client.aclose()
            logger.error(f"Redis connection failed: {e}")
            raise StoreUnavailable() from e
        self._client = client
        logger.info(f"Redis case store connected ({self.app_id})")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise StoreUnavailable()
        return self._client

    async def get(self, case_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = await self.client.get(self._case_key(case_id))
        except _UNREACHABLE as e:
            raise StoreUnavailable() from e
        return json.loads(raw) if raw is not None else None

    async def create(self, case_id: str, document: Dict[str, Any]) -> bool:
        key = self._case_key(case_id)
        payload = json.dumps(document, ensure_ascii=False)
        try:
            created = await self.client.set(key, payload, nx=True)
            if created:
                await self.client.publish(self._channel(key), payload)
        except _UNREACHABLE as e:
            raise StoreUnavailable() from e
        return bool(created)

    async def update_if(
        self,
        case_id: str,
        conditions: Dict[str, Any],
        fields: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        key = self._case_key(case_id)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for _ in range(self.max_cas_retries):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        if raw is None:
                            await pipe.unwatch()
                            raise InvalidCaseCode()
                        current = json.loads(raw)
                        if not conditions_hold(current, conditions):
                            await pipe.unwatch()
                            return None

                        updated = apply_updates(current, fields)
                        payload = json.dumps(updated, ensure_ascii=False)
                        pipe.multi()
                        pipe.set(key, payload)
                        pipe.publish(self._channel(key), payload)
                        await pipe.execute()
                        return updated
                    except WatchError:
                        logger.debug(f"Concurrent write on {key}, retrying")
                        continue
        except _UNREACHABLE as e:
            raise StoreUnavailable() from e

        logger.error(f"Gave up updating {key} after {self.max_cas_retries} conflicts")
        raise StoreUnavailable("The case store is too busy, please try again")

    async def subscribe(self, case_id: str) -> AsyncIterator[Dict[str, Any]]:
        key = self._case_key(case_id)
        pubsub = self.client.pubsub()
        try:
            # Subscribe before the initial read so no write falls in between
            await pubsub.subscribe(self._channel(key))
            raw = await self.client.get(key)
            if raw is None:
                raise InvalidCaseCode()
            yield json.loads(raw)

            async for message in pubsub.listen():
                if message.get("type") == "message":
                    yield json.loads(message["data"])
        except _UNREACHABLE as e:
            raise StoreUnavailable() from e
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()

    @staticmethod
    def _decode_stats(raw: Dict[str, str]) -> Dict[str, Any]:
        stats: Dict[str, Any] = {"likes": 0, "dislikes": 0}
        for name, value in raw.items():
            stats[name] = int(value)
        return stats

    async def get_stats(self) -> Dict[str, Any]:
        try:
            raw = await self.client.hgetall(self._stats_key())
        except _UNREACHABLE as e:
            raise StoreUnavailable() from e
        return self._decode_stats(raw)

    async def increment_stats(self, field: str, amount: int = 1) -> Dict[str, Any]:
        key = self._stats_key()
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hincrby(key, field, amount)
                pipe.hset(key, "lastUpdated", int(time.time() * 1000))
                pipe.hgetall(key)
                results = await pipe.execute()
            stats = self._decode_stats(results[-1])
            await self.client.publish(self._channel(key), json.dumps(stats))
        except _UNREACHABLE as e:
            raise StoreUnavailable() from e
        return stats

    async def subscribe_stats(self) -> AsyncIterator[Dict[str, Any]]:
        key = self._stats_key()
        pubsub = self.client.pubsub()
        try:
            await pubsub.subscribe(self._channel(key))
            yield self._decode_stats(await self.client.hgetall(key))

            async for message in pubsub.listen():
                if message.get("type") == "message":
                    yield json.loads(message["data"])
        except _UNREACHABLE as e:
            raise StoreUnavailable() from e
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()
