"""Document model helpers shared by the cache, handles and converters."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

TEMP_ID_PREFIX = "TEMP_"

# Fetch batch size for pages, local and remote
PAGE_SIZE = 16

# Name of the cache holding collection definitions
DEFINITIONS_COLLECTION = "Collection"

Document = dict[str, Any]
Snapshot = tuple[Document, ...]
Predicate = Callable[[Document], bool]


@dataclass(frozen=True)
class DocumentKind:
    """How documents of a collection are identified.

    Attributes:
        identity_key: Field holding the document identity ("id" or "name").
        protected_fields: Fields a replace never removes.
    """

    identity_key: str
    protected_fields: tuple[str, ...]


DOCUMENT = DocumentKind(identity_key="id", protected_fields=("id", "coll", "ts"))
NAMED_DOCUMENT = DocumentKind(
    identity_key="name", protected_fields=("name", "coll", "ts")
)


def new_temp_id() -> str:
    """Create a client-side identity for a document not yet confirmed remotely."""
    return f"{TEMP_ID_PREFIX}{uuid.uuid4()}"


def is_temp_id(identity: Any) -> bool:
    return isinstance(identity, str) and identity.startswith(TEMP_ID_PREFIX)


def now_ts() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def merge_fields(current: Document, partial: Document) -> Document:
    """Build a new document with ``partial`` merged over ``current``."""
    merged = dict(current)
    merged.update(partial)
    return merged


def replace_fields(current: Document, full: Document, kind: DocumentKind) -> Document:
    """Build a new document holding ``full`` plus the protected fields of ``current``.

    Any field of ``current`` absent from ``full`` is dropped, except the
    identity, ``coll`` and ``ts``.
    """
    replaced = {k: current[k] for k in kind.protected_fields if k in current}
    replaced.update(full)
    return replaced
