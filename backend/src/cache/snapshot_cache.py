from __future__ import annotations

import uuid

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from backend.src.contracts.errors import CacheUnavailable
from backend.src.contracts.models import SnapshotEntry

logger = structlog.get_logger(__name__)

_UNREACHABLE = (RedisConnectionError, RedisTimeoutError, OSError)


def snapshot_key(product_id: uuid.UUID) -> str:
    return f"product:{product_id}"


def push_token_key(user_id: uuid.UUID) -> str:
    return f"token:{user_id}"


class RedisSnapshotCache:
    """ISnapshotCache over Redis.

    Snapshots are stored as JSON under ``product:{id}``; push tokens are
    written by the device registration flow under ``token:{user_id}`` and
    only read here. The client must be created with ``decode_responses=True``.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def get_snapshots(
        self, product_ids: list[uuid.UUID]
    ) -> list[SnapshotEntry | None]:
        if not product_ids:
            return []
        try:
            raw_values = await self._client.mget([snapshot_key(pid) for pid in product_ids])
        except _UNREACHABLE as exc:
            raise CacheUnavailable(f"Snapshot multi-get failed: {exc}") from exc

        entries: list[SnapshotEntry | None] = []
        for product_id, raw in zip(product_ids, raw_values):
            if raw is None:
                entries.append(None)
                continue
            try:
                entries.append(SnapshotEntry.model_validate_json(raw))
            except ValidationError:
                # Treated as a first observation; the entry is rewritten this cycle.
                logger.warning("snapshot_corrupt", product_id=str(product_id))
                entries.append(None)
        return entries

    async def set_snapshot(self, product_id: uuid.UUID, entry: SnapshotEntry) -> None:
        try:
            await self._client.set(snapshot_key(product_id), entry.model_dump_json())
        except _UNREACHABLE as exc:
            raise CacheUnavailable(f"Snapshot write failed for {product_id}: {exc}") from exc

    async def delete_snapshot(self, product_id: uuid.UUID) -> None:
        try:
            await self._client.delete(snapshot_key(product_id))
        except _UNREACHABLE as exc:
            raise CacheUnavailable(f"Snapshot delete failed for {product_id}: {exc}") from exc

    async def get_push_token(self, user_id: uuid.UUID) -> str | None:
        try:
            token = await self._client.get(push_token_key(user_id))
        except _UNREACHABLE as exc:
            raise CacheUnavailable(f"Push token read failed for {user_id}: {exc}") from exc
        return token or None
