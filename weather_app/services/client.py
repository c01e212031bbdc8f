"""Client facade tying together validation, coordination and persistence."""

from collections import OrderedDict

from pydantic import BaseModel, Field

from weather_app.core.config import settings
from weather_app.core.logging import get_logger
from weather_app.models.errors import ErrorResult
from weather_app.models.weather import CacheStats, WeatherSnapshot
from weather_app.services.coordinator import RequestCoordinator, WeatherLookupError
from weather_app.services.errors import ErrorListener, ErrorReporter
from weather_app.services.location import LocationValidationError, normalize, validate
from weather_app.services.storage import BackgroundWrites, KeyValueStore, PersistedLocation

logger = get_logger(__name__)


class SearchOutcome(BaseModel):
    """Render-ready result of one search: a snapshot, an error or a validation message."""

    query: str = Field(..., description="Query as issued")
    display_name: str = Field(default="", description="Normalized location name")
    snapshot: WeatherSnapshot | None = None
    error: ErrorResult | None = None
    validation_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.snapshot is not None


class WeatherClient:
    """Entry point used by presentation code.

    Searches go through the coordinator; successful ones are remembered
    both in memory (for retry) and in the persistent store.
    """

    def __init__(
        self,
        coordinator: RequestCoordinator,
        persisted_location: PersistedLocation | None = None,
    ):
        self.coordinator = coordinator
        self.persisted_location = persisted_location
        self.last_query: str | None = None
        self._last_location: str | None = None

    @property
    def reporter(self) -> ErrorReporter:
        return self.coordinator.reporter

    def on_error(self, listener: ErrorListener):
        """Subscribe to classified errors; returns an unsubscribe function."""
        return self.reporter.subscribe(listener)

    async def search(self, raw_query: str) -> SearchOutcome:
        """Look up weather for a query.

        Never raises for bad input or failed lookups; the outcome carries
        either the snapshot, the classified error or the validation message.
        """
        self.last_query = raw_query
        display_name = normalize(raw_query)

        try:
            snapshot = await self.coordinator.resolve(raw_query)
        except LocationValidationError as e:
            logger.info("search_rejected", query=raw_query, reason=e.message)
            return SearchOutcome(query=raw_query, validation_message=e.message)
        except WeatherLookupError as e:
            return SearchOutcome(query=raw_query, display_name=display_name, error=e.result)

        self._last_location = display_name
        if self.persisted_location is not None:
            self.persisted_location.save_in_background(display_name)

        return SearchOutcome(query=raw_query, display_name=display_name, snapshot=snapshot)

    async def retry(self) -> SearchOutcome:
        """Repeat the last search."""
        if self.last_query is None:
            message = validate(None).message
            return SearchOutcome(query="", validation_message=message)

        logger.info("search_retry", query=self.last_query)
        return await self.search(self.last_query)

    async def last_location(self) -> str | None:
        """Last successfully searched location.

        Searches made by this client win; otherwise the persisted value
        from an earlier session is loaded.
        """
        if self._last_location is None and self.persisted_location is not None:
            self._last_location = await self.persisted_location.load()
        return self._last_location

    def clear_cache(self) -> None:
        self.coordinator.clear_cache()

    def cache_stats(self) -> CacheStats:
        return self.coordinator.cache_stats()

    async def aclose(self) -> None:
        """Flush background writes and release the HTTP client."""
        if self.persisted_location is not None:
            await self.persisted_location.flush()
        await self.reporter.flush()
        await self.coordinator.provider.close()


class ClientSessions:
    """Per-caller WeatherClient facades sharing one coordinator.

    Retry and last-location state belong to a single caller; the snapshot
    cache, in-flight fetches and the error log are shared. The least
    recently used sessions are dropped beyond max_sessions; their persisted
    last location survives in the store.
    """

    def __init__(
        self,
        coordinator: RequestCoordinator,
        store: KeyValueStore | None = None,
        max_sessions: int | None = None,
    ):
        self.coordinator = coordinator
        self.store = store
        self.max_sessions = max_sessions if max_sessions is not None else settings.max_sessions
        self._clients: OrderedDict[str, WeatherClient] = OrderedDict()
        self._writes = BackgroundWrites()

    @property
    def reporter(self) -> ErrorReporter:
        return self.coordinator.reporter

    def get(self, client_id: str) -> WeatherClient:
        """Facade for a caller, created on first use."""
        client = self._clients.get(client_id)
        if client is not None:
            self._clients.move_to_end(client_id)
            return client

        persisted = None
        if self.store is not None:
            persisted = PersistedLocation(self.store, client_id=client_id, writes=self._writes)
        client = WeatherClient(self.coordinator, persisted_location=persisted)
        self._clients[client_id] = client

        while len(self._clients) > self.max_sessions:
            evicted, _ = self._clients.popitem(last=False)
            logger.debug("client_session_evicted", client_id=evicted)
        return client

    def clear_cache(self) -> None:
        self.coordinator.clear_cache()

    def cache_stats(self) -> CacheStats:
        return self.coordinator.cache_stats()

    async def flush(self) -> None:
        """Wait for pending location and error-log writes."""
        await self._writes.flush()
        await self.reporter.flush()

    async def aclose(self) -> None:
        await self.flush()
        await self.coordinator.provider.close()

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_id: str) -> bool:
        return client_id in self._clients
