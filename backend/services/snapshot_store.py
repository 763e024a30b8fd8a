"""Snapshot stores with optimistic versioning.

Aggregates serialize to plain JSON-safe dicts carrying ``id`` and
``revision``. A store only accepts a save when the caller's
``expected_revision`` matches what is currently stored:

- ``expected_revision=None`` creates; it fails if the id already exists.
- Otherwise the stored revision must equal ``expected_revision``.

A mismatch raises ``ConcurrencyConflictError`` and nothing is written.
"""

import asyncio
import copy
import json
import logging
from typing import Any, Callable, Protocol

import redis.asyncio as redis

from config import get_settings
from errors import ConcurrencyConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Snapshot = dict[str, Any]

# Compare-and-swap in one round trip.
# KEYS[1] snapshot key, KEYS[2] index set
# ARGV[1] snapshot json, ARGV[2] expected revision ("" to create), ARGV[3] id
# Returns 1 on write, 0 on revision mismatch, -1 when an update targets a missing key
CAS_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if ARGV[2] == '' then
  if current then return 0 end
else
  if not current then return -1 end
  local stored = cjson.decode(current)['revision']
  if tostring(stored) ~= ARGV[2] then return 0 end
end
redis.call('SET', KEYS[1], ARGV[1])
redis.call('SADD', KEYS[2], ARGV[3])
return 1
"""


class SnapshotStore(Protocol):
    async def get(self, entity_id: str) -> Snapshot | None: ...

    async def save(self, snapshot: Snapshot, expected_revision: int | None) -> None: ...

    async def list_all(self) -> list[Snapshot]: ...


def _identity(snapshot: Snapshot) -> tuple[str, int]:
    try:
        return str(snapshot["id"]), int(snapshot["revision"])
    except (KeyError, TypeError, ValueError):
        raise ValidationError("Snapshot must carry an id and an integer revision") from None


class InMemorySnapshotStore:
    """Process-local store, one instance per aggregate type."""

    def __init__(self):
        self._items: dict[str, Snapshot] = {}
        self._lock = asyncio.Lock()

    async def get(self, entity_id: str) -> Snapshot | None:
        item = self._items.get(entity_id)
        return copy.deepcopy(item) if item is not None else None

    async def save(self, snapshot: Snapshot, expected_revision: int | None) -> None:
        entity_id, _ = _identity(snapshot)
        async with self._lock:
            current = self._items.get(entity_id)
            if expected_revision is None:
                if current is not None:
                    raise ConcurrencyConflictError(
                        "Entity already exists", entity_id=entity_id
                    )
            elif current is None:
                raise NotFoundError("Entity not found", entity_id=entity_id)
            elif current["revision"] != expected_revision:
                raise ConcurrencyConflictError(
                    "Entity was modified by another request",
                    entity_id=entity_id,
                    expected_revision=expected_revision,
                    stored_revision=current["revision"],
                )
            self._items[entity_id] = copy.deepcopy(snapshot)

    async def list_all(self) -> list[Snapshot]:
        return [copy.deepcopy(item) for item in self._items.values()]


class RedisSnapshotStore:
    """Async Redis store. Snapshots are JSON strings under ``<prefix><kind>:<id>``."""

    _pool: redis.Redis | None = None

    def __init__(self, kind: str, client: redis.Redis | None = None):
        self.kind = kind
        self._client = client
        self._cas = None
        prefix = get_settings().redis_key_prefix
        self.key_prefix = f"{prefix}{kind}:"
        self.index_key = f"{prefix}{kind}_ids"

    @classmethod
    async def get_pool(cls) -> redis.Redis:
        """Get or create the shared Redis connection pool."""
        if cls._pool is None:
            cls._pool = redis.from_url(
                get_settings().redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return cls._pool

    @classmethod
    async def close(cls) -> None:
        """Close the shared Redis connection pool."""
        if cls._pool is not None:
            await cls._pool.aclose()
            cls._pool = None

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = await self.get_pool()
        return self._client

    async def get(self, entity_id: str) -> Snapshot | None:
        client = await self.get_client()
        data = await client.get(f"{self.key_prefix}{entity_id}")
        if data is None:
            return None
        return json.loads(data)

    async def save(self, snapshot: Snapshot, expected_revision: int | None) -> None:
        entity_id, _ = _identity(snapshot)
        client = await self.get_client()
        if self._cas is None:
            self._cas = client.register_script(CAS_SCRIPT)

        result = await self._cas(
            keys=[f"{self.key_prefix}{entity_id}", self.index_key],
            args=[
                json.dumps(snapshot),
                "" if expected_revision is None else str(expected_revision),
                entity_id,
            ],
        )
        if result == -1:
            raise NotFoundError("Entity not found", entity_id=entity_id, kind=self.kind)
        if result != 1:
            raise ConcurrencyConflictError(
                "Entity was modified by another request",
                entity_id=entity_id,
                kind=self.kind,
                expected_revision=expected_revision,
            )

    async def list_all(self) -> list[Snapshot]:
        client = await self.get_client()
        entity_ids = await client.smembers(self.index_key)

        snapshots = []
        for entity_id in sorted(entity_ids):
            snapshot = await self.get(entity_id)
            if snapshot:
                snapshots.append(snapshot)
        return snapshots

    async def health_check(self) -> bool:
        """Check if Redis is available."""
        try:
            client = await self.get_client()
            await client.ping()
            return True
        except redis.RedisError:
            return False


async def update_with_retry(
    store: SnapshotStore,
    entity_id: str,
    mutate: Callable[[Snapshot], Snapshot],
    attempts: int | None = None,
) -> Snapshot:
    """Reload, re-apply ``mutate`` and save until the revision check passes.

    Only for changes that are safe to re-apply on fresh state, such as
    counters. ``mutate`` must return a snapshot with a higher revision.
    """
    attempts = attempts or get_settings().save_retry_attempts
    for attempt in range(1, attempts + 1):
        current = await store.get(entity_id)
        if current is None:
            raise NotFoundError("Entity not found", entity_id=entity_id)

        updated = mutate(copy.deepcopy(current))
        try:
            await store.save(updated, expected_revision=current["revision"])
            return updated
        except ConcurrencyConflictError:
            if attempt == attempts:
                logger.warning(f"Giving up on {entity_id} after {attempts} conflicting saves")
                raise
            logger.warning(f"Revision conflict on {entity_id}, retrying ({attempt}/{attempts})")
    raise ValidationError("Retry attempts must be at least 1", attempts=attempts)
