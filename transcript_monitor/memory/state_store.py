"""
Persisted Dedup State

Opaque blob stores holding the dedup snapshot between restarts. The blob is a
dict of two string arrays under stable keys; `clear` deletes both keys.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

import redis.asyncio as redis

from transcript_monitor.config import Settings
from transcript_monitor.memory.dedup_store import SEEN_EVENTS_KEY, SEEN_SEGMENTS_KEY
from transcript_monitor.utils.logging import get_logger

logger = get_logger(__name__, category="storage")

STATE_KEYS = (SEEN_EVENTS_KEY, SEEN_SEGMENTS_KEY)


class StateStore(Protocol):
    async def load(self) -> Optional[Dict[str, Any]]:
        ...

    async def save(self, blob: Dict[str, Any]) -> None:
        ...

    async def clear(self) -> None:
        ...

    async def close(self) -> None:
        ...


class MemoryStateStore:
    """Process-local store; state is lost on restart."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(initial or {})

    async def load(self) -> Optional[Dict[str, Any]]:
        if not self.data:
            return None
        return {key: list(value) for key, value in self.data.items()}

    async def save(self, blob: Dict[str, Any]) -> None:
        self.data = {key: list(blob.get(key, [])) for key in STATE_KEYS}

    async def clear(self) -> None:
        for key in STATE_KEYS:
            self.data.pop(key, None)

    async def close(self) -> None:
        return None


class JsonFileStateStore:
    """Flat JSON file written atomically via a temp file.

    File I/O runs in a worker thread; the lock keeps read-modify-write
    updates from interleaving.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Corrupt state file %s, resetting: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("State file %s does not hold an object, resetting", self.path)
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
        tmp.replace(self.path)

    def _save_sync(self, blob: Dict[str, Any]) -> None:
        data = self._read()
        for key in STATE_KEYS:
            data[key] = list(blob.get(key, []))
        self._write(data)

    def _clear_sync(self) -> None:
        data = self._read()
        if not any(key in data for key in STATE_KEYS):
            return
        for key in STATE_KEYS:
            data.pop(key, None)
        if data:
            self._write(data)
        else:
            self.path.unlink(missing_ok=True)

    async def load(self) -> Optional[Dict[str, Any]]:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
        return data or None

    async def save(self, blob: Dict[str, Any]) -> None:
        async with self._lock:
            await asyncio.to_thread(self._save_sync, blob)

    async def clear(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._clear_sync)

    async def close(self) -> None:
        return None


class RedisStateStore:
    """One Redis key per seen-set, each holding a JSON array of strings."""

    def __init__(self, redis_url: str, key_prefix: str = "transcript-monitor:"):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.redis_client: Optional[redis.Redis] = None

    def _key(self, name: str) -> str:
        return f"{self.key_prefix}{name}"

    async def connect(self) -> None:
        """Establish connection to Redis."""
        try:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=True)
            await self.redis_client.ping()
            logger.info("Connected to Redis")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {e}")
            self.redis_client = None
            raise

    async def close(self) -> None:
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Redis connection closed")

    async def _client(self) -> redis.Redis:
        if self.redis_client is None:
            await self.connect()
        return self.redis_client

    async def load(self) -> Optional[Dict[str, Any]]:
        client = await self._client()
        blob: Dict[str, Any] = {}
        for key in STATE_KEYS:
            raw = await client.get(self._key(key))
            if not raw:
                continue
            try:
                blob[key] = json.loads(raw)
            except json.JSONDecodeError as exc:
                logger.warning(f"Corrupt Redis value for {key}, ignoring: {exc}")
        return blob or None

    async def save(self, blob: Dict[str, Any]) -> None:
        client = await self._client()
        for key in STATE_KEYS:
            await client.set(self._key(key), json.dumps(list(blob.get(key, []))))

    async def clear(self) -> None:
        client = await self._client()
        await client.delete(*(self._key(key) for key in STATE_KEYS))


def build_state_store(config: Settings) -> StateStore:
    """Pick the persistence backend named by `state_backend`."""
    if config.state_backend == "redis":
        return RedisStateStore(config.redis_url)
    if config.state_backend == "file":
        return JsonFileStateStore(config.state_file)
    return MemoryStateStore()
