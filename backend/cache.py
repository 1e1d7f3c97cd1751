# cache.py — Advisory Redis key-value cache
"""
Thin wrapper around ``redis.asyncio``. The cache is never the source of truth:
apart from ``ping`` every operation logs Redis failures and degrades to a miss,
so database work is never blocked by an unavailable cache.
"""
import json
import logging
from typing import Any, Optional

from fastapi import Request
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger("kanban.cache")

BOARD_TTL_SECONDS = 60


def board_key(project_id: str) -> str:
    return f"board:{project_id}"


def board_version_key(project_id: str) -> str:
    return f"board:{project_id}:version"


def revoked_session_key(jti: str) -> str:
    return f"session:revoked:{jti}"


class Cache:
    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "Cache":
        return cls(Redis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[Any]:
        try:
            data = await self.client.get(key)
        except RedisError as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None
        return json.loads(data) if data else None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        data = json.dumps(value, default=str)
        try:
            if ttl:
                await self.client.setex(key, ttl, data)
            else:
                await self.client.set(key, data)
        except RedisError as e:
            logger.warning(f"Cache set failed for {key}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.warning(f"Cache delete failed for {key}: {e}")

    async def incr(self, key: str) -> Optional[int]:
        try:
            return await self.client.incr(key)
        except RedisError as e:
            logger.warning(f"Cache incr failed for {key}: {e}")
            return None

    async def invalidate_pattern(self, pattern: str) -> None:
        try:
            keys = [key async for key in self.client.scan_iter(match=pattern)]
            if keys:
                await self.client.delete(*keys)
        except RedisError as e:
            logger.warning(f"Cache invalidation failed for {pattern}: {e}")

    # ============================================================
    # BOARD SNAPSHOTS
    # ============================================================

    async def board_version(self, project_id: str) -> int:
        return await self.get(board_version_key(project_id)) or 0

    async def get_board(self, project_id: str, version: int) -> Optional[list]:
        """The cached board, but only if it was built at ``version``"""
        snapshot = await self.get(board_key(project_id))
        if not isinstance(snapshot, dict) or snapshot.get("version") != version:
            return None
        return snapshot.get("columns")

    async def set_board(self, project_id: str, version: int, columns: list) -> None:
        snapshot = {"version": version, "columns": columns}
        await self.set(board_key(project_id), snapshot, ttl=BOARD_TTL_SECONDS)

    async def invalidate_board(self, project_id: str) -> None:
        """Call after every committed board mutation.

        Bumping the version makes any snapshot built from an earlier read
        unusable, including one a concurrent reader stores after this runs.
        """
        await self.incr(board_version_key(project_id))
        await self.delete(board_key(project_id))

    async def ping(self) -> bool:
        """Raises on failure; used by the health check"""
        return await self.client.ping()

    async def close(self) -> None:
        await self.client.aclose()


def get_cache(request: Request) -> Cache:
    return request.app.state.cache
