"""Redis-backed client storage: last location, debug flag and error log."""

import asyncio
import json

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from weather_app.core.config import settings
from weather_app.core.logging import get_logger
from weather_app.models.errors import ErrorLogRecord

logger = get_logger(__name__)

LAST_LOCATION_KEY = "last_location"
DEBUG_KEY = "debug"
ERROR_LOG_KEY = "errors"


class StorageUnavailableError(Exception):
    """Raised when the store is used before a connection exists."""


class KeyValueStore:
    """Namespaced string key-value store on Redis."""

    def __init__(self, redis: Redis | None = None, namespace: str | None = None):
        """Initialize store.

        Args:
            redis: Connected client; when omitted, connect() creates one
            namespace: Key prefix, defaults to settings.storage_namespace
        """
        self.redis = redis
        self.namespace = namespace or settings.storage_namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _client(self) -> Redis:
        if self.redis is None:
            raise StorageUnavailableError("Store is not connected")
        return self.redis

    async def connect(self) -> bool:
        """Connect to Redis.

        A failed connection is logged and leaves the store disconnected;
        callers keep working without persistence.
        """
        try:
            self.redis = Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                db=settings.redis_db,
                password=settings.redis_password,
                decode_responses=True,
            )
            await self.redis.ping()
            logger.info("redis_connected", host=settings.redis_host, port=settings.redis_port)
            return True
        except RedisError as e:
            logger.warning("redis_connection_failed", error=str(e))
            await self.disconnect()
            return False

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.redis is not None:
            try:
                await self.redis.aclose()
            except RedisError as e:
                logger.warning("redis_disconnect_failed", error=str(e))
            self.redis = None
            logger.info("redis_disconnected")

    async def get(self, key: str) -> str | None:
        """Get a value; None if the key is absent."""
        return await self._client().get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        """Store a string value."""
        await self._client().set(self._key(key), value)

    async def delete(self, key: str) -> None:
        """Remove a key."""
        await self._client().delete(self._key(key))

    async def is_connected(self) -> bool:
        """Check if Redis is connected.

        Returns:
            True if connected, False otherwise
        """
        if self.redis is None:
            return False

        try:
            await self.redis.ping()
            return True
        except RedisError:
            return False


class BackgroundWrites:
    """Tracks fire-and-forget write tasks so they can be awaited on shutdown."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro) -> asyncio.Task:
        try:
            task = asyncio.create_task(coro)
        except RuntimeError:
            coro.close()
            raise
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def flush(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)


class PersistedLocation:
    """Best-effort persistence of the last searched location.

    With a client_id the key is scoped to that caller, so callers sharing
    one store never see each other's location.
    """

    def __init__(
        self,
        store: KeyValueStore,
        client_id: str | None = None,
        writes: BackgroundWrites | None = None,
    ):
        self.store = store
        self.client_id = client_id
        self.key = f"{LAST_LOCATION_KEY}:{client_id}" if client_id else LAST_LOCATION_KEY
        self._writes = writes if writes is not None else BackgroundWrites()

    async def load(self) -> str | None:
        """Read the last location.

        Returns:
            Display name, or None when absent or the store fails
        """
        try:
            return await self.store.get(self.key) or None
        except (RedisError, StorageUnavailableError) as e:
            logger.warning("last_location_load_failed", key=self.key, error=str(e))
            return None

    async def save(self, display_name: str) -> bool:
        """Write the last location; failures are logged, never raised."""
        try:
            await self.store.set(self.key, display_name)
            logger.debug("last_location_saved", key=self.key, location=display_name)
            return True
        except (RedisError, StorageUnavailableError) as e:
            logger.warning(
                "last_location_save_failed", key=self.key, location=display_name, error=str(e)
            )
            return False

    def save_in_background(self, display_name: str) -> asyncio.Task:
        """Schedule save() without waiting for it."""
        return self._writes.spawn(self.save(display_name))

    async def flush(self) -> None:
        """Wait for pending background writes."""
        await self._writes.flush()


class DebugFlag:
    """Persistent toggle for verbose error logging."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def enabled(self) -> bool:
        try:
            return await self.store.get(DEBUG_KEY) == "true"
        except (RedisError, StorageUnavailableError) as e:
            logger.warning("debug_flag_load_failed", error=str(e))
            return False

    async def set(self, enabled: bool) -> bool:
        try:
            if enabled:
                await self.store.set(DEBUG_KEY, "true")
            else:
                await self.store.delete(DEBUG_KEY)
        except (RedisError, StorageUnavailableError) as e:
            logger.warning("debug_flag_save_failed", error=str(e))
            return False
        logger.info("debug_mode_changed", enabled=enabled)
        return True


class ErrorLogStore:
    """Bounded, most-recent-first JSON log of classified errors."""

    def __init__(
        self,
        store: KeyValueStore,
        max_entries: int | None = None,
        max_entries_debug: int | None = None,
    ):
        self.store = store
        self.max_entries = max_entries if max_entries is not None else settings.error_log_max
        self.max_entries_debug = (
            max_entries_debug if max_entries_debug is not None else settings.error_log_max_debug
        )
        self._lock = asyncio.Lock()

    async def entries(self) -> list[ErrorLogRecord]:
        """Stored records, most recent first; empty on any failure."""
        try:
            raw = await self.store.get(ERROR_LOG_KEY)
            if not raw:
                return []
            return [ErrorLogRecord.model_validate(item) for item in json.loads(raw)]
        except (RedisError, StorageUnavailableError, ValueError, TypeError, ValidationError) as e:
            logger.warning("error_log_load_failed", error=str(e))
            return []

    async def append(self, record: ErrorLogRecord) -> bool:
        """Prepend a record and trim the log to its bound."""
        limit = self.max_entries_debug if record.debug_mode else self.max_entries
        try:
            async with self._lock:
                records = [entry.model_dump(mode="json") for entry in await self.entries()]
                records.insert(0, record.model_dump(mode="json"))
                await self.store.set(ERROR_LOG_KEY, json.dumps(records[:limit]))
            return True
        except (RedisError, StorageUnavailableError, TypeError) as e:
            logger.warning("error_log_save_failed", error=str(e))
            return False

    async def clear(self) -> bool:
        try:
            await self.store.delete(ERROR_LOG_KEY)
        except (RedisError, StorageUnavailableError) as e:
            logger.warning("error_log_clear_failed", error=str(e))
            return False
        logger.info("error_log_cleared")
        return True
