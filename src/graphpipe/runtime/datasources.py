"""
Data sources - per-request helpers exposed to resolvers via the context.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from inspect import isawaitable
from typing import TYPE_CHECKING, Any, Callable, Mapping, MutableMapping, Optional

import httpx

from ..core.errors import ConfigurationError, DataSourceError

if TYPE_CHECKING:
    from ..caching.cache import KeyValueCache
    from ..core.context import RequestContext

logger = logging.getLogger(__name__)

DATA_SOURCES_KEY = "data_sources"


@dataclass(frozen=True)
class DataSourceConfig:
    """What a data source receives when a request starts."""
    context: Any
    cache: Optional["KeyValueCache"]


class DataSource:
    """
    Base class for data sources.

    Usage:
        class MoviesAPI(DataSource):
            def initialize(self, config):
                self.context = config.context
                self.cache = config.cache
    """

    def initialize(self, config: DataSourceConfig) -> Any:
        return None


DataSourcesFactory = Callable[[], Mapping[str, Any]]


def _has_data_sources(context: Any) -> bool:
    if isinstance(context, Mapping):
        return DATA_SOURCES_KEY in context
    return hasattr(context, DATA_SOURCES_KEY)


async def initialize_data_sources(
    factory: Optional[DataSourcesFactory],
    request_context: "RequestContext",
) -> Optional[Mapping[str, Any]]:
    """
    Build this request's data sources and attach them to the context.

    Raises:
        ConfigurationError: The context already carries ``data_sources``
    """
    if factory is None:
        return None

    context = request_context.context
    if _has_data_sources(context):
        raise ConfigurationError(
            "Please use the data_sources config option instead of putting"
            " data_sources on the context yourself."
        )

    data_sources = factory()
    config = DataSourceConfig(context=context, cache=request_context.cache)
    for data_source in data_sources.values():
        initialize = getattr(data_source, "initialize", None)
        if initialize is None:
            continue
        result = initialize(config)
        if isawaitable(result):
            await result

    if isinstance(context, MutableMapping):
        context[DATA_SOURCES_KEY] = data_sources
    else:
        setattr(context, DATA_SOURCES_KEY, data_sources)
    return data_sources


class HTTPDataSource(DataSource):
    """
    Data source for REST backends.

    Successful GET responses are cached in the request's cache when
    ``cache_ttl`` is set.

    Usage:
        class MoviesAPI(HTTPDataSource):
            async def movie(self, movie_id):
                return await self.get(f"/movies/{movie_id}")

        config = RequestPipelineConfig(
            schema=schema,
            data_sources=lambda: {"movies": MoviesAPI("http://movies:8000", cache_ttl=60)},
        )
    """

    cache_prefix = "httpcache:"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        cache_ttl: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize HTTP data source.

        Args:
            base_url: Base URL of the backend (e.g., "http://movies:8000")
            timeout: HTTP request timeout in seconds
            cache_ttl: Seconds to cache GET responses (None disables caching)
            client: Shared client (created lazily when omitted)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.context: Any = None
        self.cache: Optional["KeyValueCache"] = None
        self._client = client
        self._owns_client = client is None

    def initialize(self, config: DataSourceConfig) -> None:
        self.context = config.context
        self.cache = config.cache

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client if this data source created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def resolve_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        GET a JSON resource.

        Raises:
            DataSourceError: Non-2xx status or transport failure
        """
        url = self.resolve_url(path)
        request = httpx.Request("GET", url, params=params)
        cache_key = f"{self.cache_prefix}{request.url}"

        if self.cache is not None and self.cache_ttl:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug(f"HTTP cache HIT: {request.url}")
                return json.loads(cached)

        body = await self._send("GET", url, params=params)

        if self.cache is not None and self.cache_ttl:
            try:
                await self.cache.set(cache_key, json.dumps(body), ttl=self.cache_ttl)
            except Exception as e:
                logger.warning(f"HTTP cache write failed for {request.url}: {e}")
        return body

    async def post(self, path: str, body: Any = None) -> Any:
        """
        POST a JSON body and return the JSON response.

        Raises:
            DataSourceError: Non-2xx status or transport failure
        """
        return await self._send("POST", self.resolve_url(path), json=body)

    async def _send(self, method: str, url: str, **kwargs: Any) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise DataSourceError(url=url, status_code=0, message=str(e))

        if not response.is_success:
            raise DataSourceError(
                url=url,
                status_code=response.status_code,
                message=response.text,
            )
        if not response.content:
            return None
        return response.json()
