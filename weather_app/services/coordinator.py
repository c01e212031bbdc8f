"""Request coordination: caching, in-flight deduplication and error classification."""

import asyncio

from prometheus_client import Counter

from weather_app.core.logging import get_logger
from weather_app.models.errors import ErrorResult
from weather_app.models.weather import CacheStats, WeatherSnapshot
from weather_app.services.cache import SnapshotCache
from weather_app.services.errors import ErrorReporter
from weather_app.services.location import location_key, validate_and_key
from weather_app.services.weather import ProviderConfigurationError, WeatherProvider

logger = get_logger(__name__)

# Metrics
CACHE_HITS = Counter("weather_client_cache_hits_total", "Total number of cache hits")
CACHE_MISSES = Counter("weather_client_cache_misses_total", "Total number of cache misses")
INFLIGHT_JOINS = Counter(
    "weather_client_inflight_joins_total",
    "Number of requests that joined an in-flight fetch",
)
FETCH_FAILURES = Counter(
    "weather_client_fetch_failures_total",
    "Number of failed fetches by error kind",
    ["kind"],
)


class WeatherLookupError(Exception):
    """A fetch failed; carries the classified result shared by every joiner."""

    def __init__(self, result: ErrorResult):
        super().__init__(result.message)
        self.result = result


def _retrieve_exception(task: asyncio.Task) -> None:
    # Joiners may all have been cancelled; mark the outcome as seen
    if not task.cancelled():
        task.exception()


class RequestCoordinator:
    """Resolves queries to snapshots with at most one fetch per key in flight.

    All state lives on the event loop thread. Nothing awaits between the
    cache/in-flight check and registering a new fetch, so concurrent
    resolve() calls for one key always share a single fetch.
    """

    def __init__(
        self,
        provider: WeatherProvider,
        reporter: ErrorReporter | None = None,
        cache: SnapshotCache | None = None,
    ):
        self.provider = provider
        self.reporter = reporter if reporter is not None else ErrorReporter()
        self.cache = cache if cache is not None else SnapshotCache()
        self._inflight: dict[str, asyncio.Task] = {}

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def peek(self, raw_query: str) -> WeatherSnapshot | None:
        """Fresh cached snapshot for a query, without fetching."""
        return self.cache.get(location_key(raw_query))

    async def resolve(self, raw_query: str) -> WeatherSnapshot:
        """Resolve a raw query to a weather snapshot.

        Args:
            raw_query: Location as typed by the user

        Returns:
            Snapshot from cache, from a joined in-flight fetch, or freshly fetched

        Raises:
            LocationValidationError: If the query is invalid (no fetch is made)
            WeatherLookupError: If the fetch fails
        """
        key, display_name = validate_and_key(raw_query)

        cached = self.cache.get(key)
        if cached is not None:
            CACHE_HITS.inc()
            logger.info("weather_cache_hit", key=key)
            return cached

        task = self._inflight.get(key)
        if task is not None:
            INFLIGHT_JOINS.inc()
            logger.info("inflight_join", key=key)
        else:
            CACHE_MISSES.inc()
            logger.info("weather_cache_miss", key=key)
            task = asyncio.create_task(self._fetch(key, display_name))
            task.add_done_callback(_retrieve_exception)
            self._inflight[key] = task

        # A cancelled caller must not cancel the fetch other joiners share
        return await asyncio.shield(task)

    async def _fetch(self, key: str, display_name: str) -> WeatherSnapshot:
        try:
            outcomes = await asyncio.gather(
                self.provider.fetch_current(display_name),
                self.provider.fetch_forecast(display_name),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    raise outcome
            (location, current), (_, forecast) = outcomes
            snapshot = WeatherSnapshot(location=location, current=current, forecast=tuple(forecast))
        except ProviderConfigurationError:
            raise
        except Exception as e:
            result = self.reporter.report(e, context=f"fetch:{key}")
            FETCH_FAILURES.labels(kind=result.kind.value).inc()
            raise WeatherLookupError(result) from e
        else:
            self.cache.set(key, snapshot)
            logger.info("weather_fetched", key=key, location=snapshot.location.name)
            return snapshot
        finally:
            self._inflight.pop(key, None)

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats().model_copy(update={"inflight": self.inflight_count})
