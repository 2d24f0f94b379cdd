"""Per-document façade over a collection cache."""

from typing import TYPE_CHECKING, Any

from .references import Reference, unresolve

if TYPE_CHECKING:
    from .cache import CollectionCache

_MISSING = object()


class DocumentHandle:
    """Live view of one document in a collection cache.

    A handle stores only the cache and the identity. Every read goes to the
    cache's current entry at the moment of access, so a handle never shows a
    stale copy, and a handle obtained before the document was loaded starts
    resolving as soon as it is. Temporary identities and renames are followed
    through the cache's alias table.
    """

    __slots__ = ("_cache", "_identity")

    def __init__(self, cache: "CollectionCache", identity: str):
        self._cache = cache
        self._identity = identity

    @property
    def identity(self) -> str:
        """Current identity, following temporary-id remaps and renames."""
        return self._cache.canonical_identity(self._identity)

    @property
    def collection(self) -> str:
        return self._cache.name

    @property
    def current(self) -> dict[str, Any] | None:
        """Copy of the current entry, or None if it is not (or no longer) cached."""
        entry = self._cache.entry(self._identity)
        return dict(entry) if entry is not None else None

    @property
    def exists(self) -> bool:
        return self._cache.entry(self._identity) is not None

    def get(self, field: str, default: Any = None) -> Any:
        entry = self._cache.entry(self._identity)
        if entry is None:
            return default
        return entry.get(field, default)

    def __getitem__(self, field: str) -> Any:
        value = self.get(field, _MISSING)
        if value is _MISSING:
            raise KeyError(field)
        return value

    def __contains__(self, field: str) -> bool:
        entry = self._cache.entry(self._identity)
        return entry is not None and field in entry

    def follow(self, field: str) -> Any:
        """Traverse a reference field.

        Returns:
            The referenced handle (or None) for a ``Ref<X>`` field, a list of
            them for an ``Array<Ref<X>>`` field, and the plain value otherwise.
        """
        value = self.get(field)
        if isinstance(value, Reference):
            return value()
        if isinstance(value, list):
            return [v() if isinstance(v, Reference) else v for v in value]
        return value

    def to_dict(self) -> dict[str, Any] | None:
        """Plain copy of the entry with references reduced to raw identities."""
        entry = self._cache.entry(self._identity)
        return unresolve(entry) if entry is not None else None

    def update(self, partial: dict[str, Any]) -> "DocumentHandle":
        """Merge ``partial`` into the document, locally now and remotely later."""
        self._identity = self._cache.update_document(self._identity, partial)
        return self

    def replace(self, full: dict[str, Any]) -> "DocumentHandle":
        """Overwrite all domain fields, locally now and remotely later."""
        self._identity = self._cache.replace_document(self._identity, full)
        return self

    def delete(self) -> None:
        """Remove the document, locally now and remotely later."""
        self._cache.delete_document(self._identity)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DocumentHandle):
            return NotImplemented
        return self._cache is other._cache and self.identity == other.identity

    def __hash__(self) -> int:
        # Identity can be remapped, so only the cache is stable
        return hash(id(self._cache))

    def __repr__(self) -> str:
        state = "" if self.exists else ", pending"
        return f"DocumentHandle({self._cache.name}:{self.identity}{state})"
