"""Client-side mirror of a remote document service.

Provides:
- Observable per-collection caches with optimistic mutations
- Bounded undo/redo over every committed change
- Lazy references between collections
- Paginated reads with cached forward links
- Durable local persistence of every cache
"""

from .cache import CollectionCache, NamedCollectionCache
from .config import Config, load_config
from .errors import (
    DocMirrorError,
    DocumentNotFound,
    MalformedPayloadError,
    MissingIdentityError,
    SchemaValidationError,
    TransientIOError,
    UnknownCollectionError,
)
from .gateway import HttpGateway, RemoteGateway, RemotePage
from .handle import DocumentHandle
from .history import History
from .pagination import Page, asc, desc
from .persistence import MemoryStorage, NullStorage, SQLiteStorage, StorageBackend
from .references import Reference, ReferenceResolver
from .registry import StoreContext
from .schema import load_definitions

__all__ = [
    "CollectionCache",
    "NamedCollectionCache",
    "Config",
    "load_config",
    "DocMirrorError",
    "DocumentNotFound",
    "MalformedPayloadError",
    "MissingIdentityError",
    "SchemaValidationError",
    "TransientIOError",
    "UnknownCollectionError",
    "HttpGateway",
    "RemoteGateway",
    "RemotePage",
    "DocumentHandle",
    "History",
    "Page",
    "asc",
    "desc",
    "MemoryStorage",
    "NullStorage",
    "SQLiteStorage",
    "StorageBackend",
    "Reference",
    "ReferenceResolver",
    "StoreContext",
    "load_definitions",
]
