"""Store context: the name-keyed registry of collection caches.

Construction happens in two phases. First every cache is constructed and
registered; then ``init()`` rehydrates them. References between caches are
looked up through the registry at call time, so caches can reference each
other in any direction without construction-order cycles.
"""

import logging
from typing import Any, Callable, Iterable

import httpx

from .cache import CollectionCache, NamedCollectionCache
from .config import Config
from .documents import DEFINITIONS_COLLECTION, PAGE_SIZE, Document
from .errors import UnknownCollectionError
from .gateway import HttpGateway, RemoteGateway
from .history import DEFAULT_MAX_DEPTH
from .persistence import MemoryStorage, NullStorage, SQLiteStorage, StorageBackend

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str, bool], RemoteGateway | None]


class StoreContext:
    """Owns every collection cache of a session.

    The ``Collection`` named cache holds the collection definitions, whose
    field-signature tables drive reference resolution in the other caches.
    """

    def __init__(
        self,
        storage: StorageBackend | None = None,
        gateway_factory: GatewayFactory | None = None,
        history_depth: int = DEFAULT_MAX_DEPTH,
        page_size: int = PAGE_SIZE,
    ):
        """Initialize the context.

        Args:
            storage: Persistence backend shared by all caches.
            gateway_factory: Called with ``(collection, named)`` to build each
                cache's gateway. None keeps every cache local.
            history_depth: Undo/redo bound for every cache.
            page_size: Page size for every cache.
        """
        self.storage = storage or NullStorage()
        self._gateway_factory = gateway_factory
        self._history_depth = history_depth
        self._page_size = page_size
        self._caches: dict[str, CollectionCache] = {}
        self._http_client: httpx.AsyncClient | None = None
        self._initialized = False

        self.collections: NamedCollectionCache = self.register(
            DEFINITIONS_COLLECTION, named=True
        )

    @classmethod
    def from_config(cls, config: Config) -> "StoreContext":
        """Build a context with the storage and gateways described by ``config``."""
        if config.storage.backend == "sqlite":
            storage: StorageBackend = SQLiteStorage(config.storage.db_path)
        elif config.storage.backend == "memory":
            storage = MemoryStorage()
        else:
            storage = NullStorage()

        remote = config.remote
        client: httpx.AsyncClient | None = None
        gateway_factory: GatewayFactory | None = None
        if remote.enabled and remote.base_url:
            headers = {}
            if remote.api_key:
                headers["Authorization"] = f"Bearer {remote.api_key}"
            client = httpx.AsyncClient(
                base_url=remote.base_url.rstrip("/"),
                timeout=remote.timeout,
                headers=headers,
            )

            def gateway_factory(collection: str, named: bool) -> RemoteGateway:
                return HttpGateway(
                    remote.base_url,
                    collection,
                    client=client,
                    page_size=remote.page_size,
                    max_retries=remote.max_retries,
                    timeout=remote.timeout,
                    named=named,
                )

            logger.info(f"Remote gateway enabled: {remote.base_url}")

        context = cls(
            storage=storage,
            gateway_factory=gateway_factory,
            history_depth=config.history.max_depth,
            page_size=remote.page_size,
        )
        context._http_client = client

        for name in config.schema.collections:
            context.register(name)
        return context

    # ==================== Registry ====================

    def register(self, name: str, named: bool = False) -> CollectionCache:
        """Construct and register the cache for ``name`` (idempotent)."""
        if name in self._caches:
            return self._caches[name]

        cache_cls = NamedCollectionCache if named else CollectionCache
        gateway = self._gateway_factory(name, named) if self._gateway_factory else None
        cache = cache_cls(
            name,
            context=self,
            storage=self.storage,
            gateway=gateway,
            history_depth=self._history_depth,
            page_size=self._page_size,
        )
        self._caches[name] = cache

        # Caches registered after init() start out rehydrated too
        if self._initialized:
            cache.hydrate()

        logger.debug(f"Registered cache '{name}'")
        return cache

    def cache(self, name: str) -> CollectionCache:
        """The cache registered under ``name``.

        Raises:
            UnknownCollectionError: If no cache is registered under ``name``.
        """
        try:
            return self._caches[name]
        except KeyError:
            raise UnknownCollectionError(name) from None

    def __getitem__(self, name: str) -> CollectionCache:
        return self.cache(name)

    def __contains__(self, name: object) -> bool:
        return name in self._caches

    def names(self) -> list[str]:
        return list(self._caches)

    def definition(self, name: str) -> Document | None:
        """Definition document of collection ``name``, if known."""
        return self.collections.entry(name)

    # ==================== Lifecycle ====================

    def define(self, definitions: Iterable[dict[str, Any]]) -> None:
        """Load collection definitions and register a cache for each."""
        definitions = list(definitions)
        self.collections.seed(definitions)
        for definition in definitions:
            if isinstance(definition, dict) and definition.get("name"):
                self.register(str(definition["name"]))

    def init(self) -> "StoreContext":
        """Rehydrate every cache from persistence.

        Definitions are loaded first so that reference fields of the other
        caches resolve, and every defined collection gets a cache.
        """
        self.collections.hydrate()
        for handle in self.collections:
            self.register(handle.identity)

        for name, cache in self._caches.items():
            if name != DEFINITIONS_COLLECTION:
                cache.hydrate()

        self._initialized = True
        logger.info(f"StoreContext initialized with {len(self._caches)} caches")
        return self

    async def wait_pending(self) -> None:
        """Wait for scheduled remote operations of every cache."""
        for cache in list(self._caches.values()):
            await cache.wait_pending()

    async def teardown(self) -> None:
        """Cancel remote work, close gateways and storage, forget all caches."""
        for cache in self._caches.values():
            await cache.close()
            if cache.gateway is not None:
                await cache.gateway.close()

        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

        self.storage.close()
        self._caches.clear()
        self._initialized = False
        logger.info("StoreContext torn down")

    def get_stats(self) -> dict[str, Any]:
        return {name: cache.get_stats() for name, cache in self._caches.items()}
