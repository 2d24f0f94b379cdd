"""Observable per-collection mirror of remote documents.

Local mutations are applied immediately ("optimistic") and the matching
remote call is scheduled on the running event loop. Remote results re-enter
through the same upsert-by-identity path, so repeated reconciliation of
unchanged data is a no-op and a temporary client-side identity is remapped in
place when the service confirms the real one.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Iterable, Iterator

from .documents import (
    DOCUMENT,
    NAMED_DOCUMENT,
    PAGE_SIZE,
    Document,
    DocumentKind,
    Predicate,
    Snapshot,
    is_temp_id,
    merge_fields,
    new_temp_id,
    now_ts,
    replace_fields,
)
from .errors import (
    DocMirrorError,
    DocumentNotFound,
    MalformedPayloadError,
    MissingIdentityError,
)
from .gateway import RemoteGateway, RemotePage
from .handle import DocumentHandle
from .history import DEFAULT_MAX_DEPTH, History
from .pagination import Page
from .persistence import NullStorage, StorageBackend
from .references import (
    ReferenceResolver,
    computed_defaults,
    field_signatures,
    unresolve,
)

if TYPE_CHECKING:
    from .registry import StoreContext

logger = logging.getLogger(__name__)

Observer = Callable[["CollectionCache"], None]

MISSING_TTL = 30.0


class CollectionCache:
    """Ordered, identity-unique, observable cache of one collection.

    Supports:
    - Reconciliation: upsert/remove by identity, idempotent for equal data
    - Optimistic create/update/replace/delete with scheduled remote calls
    - Bounded undo/redo over every committed mutation
    - Synchronous persistence after every committed mutation
    """

    kind: DocumentKind = DOCUMENT
    # Seconds a by-identity miss is remembered before fetching again
    missing_ttl: float = MISSING_TTL

    def __init__(
        self,
        name: str,
        context: "StoreContext | None" = None,
        storage: StorageBackend | None = None,
        gateway: RemoteGateway | None = None,
        history_depth: int = DEFAULT_MAX_DEPTH,
        page_size: int = PAGE_SIZE,
    ):
        """Initialize the cache.

        Args:
            name: Collection name, also the persistence key.
            context: Registry used to resolve references and definitions.
                Without one, reference fields are stored as given.
            storage: Persistence backend. Defaults to no persistence.
            gateway: Remote gateway. Without one, mutations stay local.
            history_depth: Maximum undo (and redo) steps.
            page_size: Documents per page returned by all().
        """
        self.name = name
        self.page_size = page_size
        self._context = context
        self._storage = storage or NullStorage()
        self._gateway = gateway
        self._resolver = ReferenceResolver(context) if context is not None else None
        self._history = History(history_depth)
        self._entries: list[Document] = []
        self._observers: list[Observer] = []

        # Temporary ids and old names -> current identity
        self._aliases: dict[str, str] = {}
        # Temporary id -> identity the service confirmed, survives undo/redo
        self._confirmed: dict[str, str] = {}
        # Local edit counter per identity, used to detect stale confirmations
        self._revisions: dict[str, int] = {}

        self._tasks: set[asyncio.Task] = set()
        self._pending_creates: dict[str, asyncio.Task] = {}
        self._fetching: set[str] = set()
        # Identity -> monotonic time of the last remote "not found"
        self._missing: dict[str, float] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, documents={len(self._entries)})"

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[DocumentHandle]:
        return iter([self._handle(e) for e in self._entries])

    def __contains__(self, identity: object) -> bool:
        return isinstance(identity, str) and self._index_of(identity) > -1

    @property
    def identity_key(self) -> str:
        return self.kind.identity_key

    @property
    def gateway(self) -> RemoteGateway | None:
        return self._gateway

    @property
    def definition(self) -> Document | None:
        """This collection's definition document, if one is registered."""
        if self._context is None:
            return None
        return self._context.definition(self.name)

    # ==================== Observers ====================

    def subscribe(self, callback: Observer) -> Callable[[], None]:
        """Call ``callback(cache)`` after every committed change.

        Returns:
            A function that removes the subscription.
        """
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._observers):
            try:
                callback(self)
            except Exception:
                logger.exception(f"Observer of '{self.name}' failed")

    # ==================== Internal state ====================

    def canonical_identity(self, identity: str) -> str:
        """Follow the alias table to the identity currently in use."""
        seen = set()
        while identity in self._aliases and identity not in seen:
            seen.add(identity)
            identity = self._aliases[identity]
        return identity

    def _index_of(self, identity: str) -> int:
        identity = self.canonical_identity(identity)
        key = self.identity_key
        for index, entry in enumerate(self._entries):
            if entry.get(key) == identity:
                return index
        return -1

    def entry(self, identity: str) -> Document | None:
        """The current cached entry for ``identity``, or None."""
        index = self._index_of(identity)
        return self._entries[index] if index > -1 else None

    def _handle(self, entry: Document) -> DocumentHandle:
        return DocumentHandle(self, entry[self.identity_key])

    def _snapshot(self) -> Snapshot:
        # Entries are never mutated in place, a shallow copy is immutable
        return tuple(self._entries)

    def _persist(self) -> None:
        self._storage.set(self.name, [unresolve(e) for e in self._entries])

    def _commit(self) -> None:
        self._persist()
        self._notify()

    def _bump(self, identity: str) -> int:
        identity = self.canonical_identity(identity)
        revision = self._revisions.get(identity, 0) + 1
        self._revisions[identity] = revision
        return revision

    def _revision(self, identity: str) -> int:
        return self._revisions.get(self.canonical_identity(identity), 0)

    def _alias(self, old: str, new: str) -> None:
        if old == new:
            return
        # The new identity is canonical again, e.g. after renaming back
        self._aliases.pop(new, None)
        self._aliases[old] = new
        if old in self._revisions:
            self._revisions[new] = max(
                self._revisions.pop(old), self._revisions.get(new, 0)
            )

    def _signatures(self) -> dict[str, str]:
        return field_signatures(self.definition)

    def _resolve(self, fields: Mapping[str, Any]) -> Document:
        if self._resolver is None:
            return dict(fields)
        return self._resolver.resolve(fields, self._signatures())

    def _mutable_fields(self, fields: Mapping[str, Any]) -> Document:
        """Drop fields callers may not set directly."""
        protected = set(self.kind.protected_fields)
        # Named documents can be renamed
        protected.discard("name")
        return {k: v for k, v in fields.items() if k not in protected}

    # ==================== Reconciliation ====================

    def upsert(
        self, doc: Any, match_key: str | None = None
    ) -> DocumentHandle | None:
        """Insert or replace a document by identity.

        Args:
            doc: The document, including its identity field.
            match_key: Identity to match instead of the document's own, used
                to replace a temporary identity with the confirmed one.

        Returns:
            Handle to the stored document, or None if ``doc`` was malformed.

        Raises:
            MissingIdentityError: If ``doc`` has no identity.
        """
        if not isinstance(doc, Mapping):
            logger.warning(
                f"Ignoring malformed document for '{self.name}': "
                f"{type(doc).__name__}"
            )
            return None

        identity = doc.get(self.identity_key)
        if identity is None or identity == "":
            raise MissingIdentityError(
                f"Document for '{self.name}' has no '{self.identity_key}'"
            )

        try:
            entry = self._resolve(doc)
        except MalformedPayloadError as e:
            logger.warning(f"Ignoring malformed document '{identity}' in '{self.name}': {e}")
            return None
        entry[self.identity_key] = str(identity)
        entry.setdefault("coll", self.name)

        if self._apply(entry, match_key):
            self._commit()
        return self._handle(entry)

    def _apply(self, entry: Document, match_key: str | None = None) -> bool:
        """Upsert ``entry`` into the entries, snapshotting history first.

        Returns:
            True if the cache changed.
        """
        identity = entry[self.identity_key]
        index = -1
        if match_key is not None:
            index = self._index_of(match_key)
        if index == -1:
            index = self._index_of(identity)

        if index > -1 and self._entries[index] == entry:
            logger.debug(f"'{self.name}': {identity} unchanged, skipping")
            return False

        self._history.record(self._snapshot())
        if index > -1:
            previous = self._entries[index][self.identity_key]
            self._entries[index] = entry
            # Matched by the temporary id while the confirmed id is also cached
            self._entries = [
                e
                for i, e in enumerate(self._entries)
                if i == index or e.get(self.identity_key) != identity
            ]
            self._alias(previous, identity)
        else:
            self._entries.append(entry)
            self._missing.pop(identity, None)

        if match_key is not None:
            self._alias(match_key, identity)
        return True

    def remove(self, identity: str) -> bool:
        """Remove a document by identity, snapshotting history first.

        Returns:
            True if a document was removed.
        """
        index = self._index_of(identity)
        if index == -1:
            return False

        self._history.record(self._snapshot())
        del self._entries[index]
        self._commit()
        return True

    def reconcile(
        self, doc: Any, match_key: str | None = None
    ) -> DocumentHandle | None:
        """Upsert a document received from the remote service.

        Unlike upsert(), a document without identity is a malformed payload
        and is skipped with a warning.
        """
        try:
            return self.upsert(doc, match_key=match_key)
        except MissingIdentityError as e:
            logger.warning(f"Skipping remote document: {e}")
            return None

    def reconcile_many(self, docs: Iterable[Any]) -> list[DocumentHandle]:
        handles = []
        for doc in docs:
            handle = self.reconcile(doc)
            if handle is not None:
                handles.append(handle)
        return handles

    def _load(self, docs: Iterable[Any]) -> int:
        """Apply documents without history, persistence or remote calls."""
        loaded = 0
        for doc in docs:
            identity = doc.get(self.identity_key) if isinstance(doc, Mapping) else None
            if identity is None:
                logger.warning(f"Skipping malformed stored entry in '{self.name}'")
                continue
            try:
                entry = self._resolve(doc)
            except MalformedPayloadError as e:
                logger.warning(f"Skipping stored entry '{identity}' in '{self.name}': {e}")
                continue
            entry[self.identity_key] = str(identity)
            entry.setdefault("coll", self.name)

            index = self._index_of(str(identity))
            if index > -1:
                self._entries[index] = entry
            else:
                self._entries.append(entry)
            loaded += 1
        return loaded

    def hydrate(self) -> int:
        """Rehydrate the cache from persistence.

        Returns:
            Number of documents loaded.
        """
        stored = self._storage.get(self.name)
        if not stored:
            return 0

        loaded = self._load(stored)
        if loaded:
            logger.info(f"Rehydrated {loaded} documents into '{self.name}'")
            self._notify()
        return loaded

    def seed(self, docs: Iterable[Any]) -> int:
        """Load documents as a baseline: no history, but persisted."""
        loaded = self._load(docs)
        if loaded:
            self._commit()
        return loaded

    # ==================== Reads ====================

    def query(self, predicate: Predicate) -> list[Document]:
        """Entries matching ``predicate``, in insertion order."""
        return [dict(e) for e in self._entries if predicate(e)]

    def by_identity(self, identity: str) -> DocumentHandle:
        """Handle to the document with ``identity``.

        The handle is returned even if the document is not cached yet; it
        resolves once the document arrives. A miss starts a remote fetch.
        """
        if self._index_of(identity) == -1:
            self._fetch_missing(identity)
        return DocumentHandle(self, identity)

    def first(self) -> DocumentHandle | None:
        return self._handle(self._entries[0]) if self._entries else None

    def last(self) -> DocumentHandle | None:
        return self._handle(self._entries[-1]) if self._entries else None

    def first_where(self, predicate: Predicate) -> DocumentHandle | None:
        for entry in self._entries:
            if predicate(entry):
                return self._handle(entry)
        return None

    def all(self) -> Page:
        """First page of cached documents.

        Starts a remote fetch; when it returns, its documents are reconciled
        and the page's continuation is set from the remote response.
        """
        page = Page(
            [self._handle(e) for e in self._entries[: self.page_size]],
            fetcher=self._fetch_page,
        )
        self._spawn(self._refresh_page(page), "fetch_all")
        return page

    def where(self, predicate: Predicate) -> Page:
        """Cached documents matching ``predicate``; starts a remote query."""
        page = Page([self._handle(e) for e in self._entries if predicate(e)])
        self._spawn(self.load_where(predicate), "fetch_where")
        return page

    # ==================== Remote loading ====================

    async def _refresh_page(self, page: Page) -> None:
        remote = await self._fetch_remote(self._gateway.fetch_all, "fetch_all")
        if remote is None:
            return
        self.reconcile_many(remote.data)
        if remote.after != page.continuation:
            page.continuation = remote.after

    async def _fetch_remote(
        self, call: Callable[..., Coroutine[Any, Any, RemotePage]], label: str, *args: Any
    ) -> RemotePage | None:
        try:
            return await call(*args)
        except DocMirrorError as e:
            logger.warning(f"'{self.name}' {label} failed: {e}")
            return None

    async def _fetch_page(self, cursor: str) -> Page:
        """Fetch the page after ``cursor`` and reconcile it. Raises on failure."""
        remote = await self._gateway.paginate(cursor)
        return Page(
            self.reconcile_many(remote.data),
            continuation=remote.after,
            fetcher=self._fetch_page,
        )

    async def load_all(self) -> Page:
        """Fetch the first remote page and reconcile it into the cache.

        Returns:
            The reconciled page, or the first cached page if the fetch failed.
        """
        if self._gateway is None:
            return Page([self._handle(e) for e in self._entries[: self.page_size]])

        remote = await self._fetch_remote(self._gateway.fetch_all, "fetch_all")
        if remote is None:
            return Page([self._handle(e) for e in self._entries[: self.page_size]])
        return Page(
            self.reconcile_many(remote.data),
            continuation=remote.after,
            fetcher=self._fetch_page,
        )

    async def paginate(self, cursor: str) -> Page | None:
        """Fetch the page after ``cursor``, or None if it cannot be fetched."""
        if self._gateway is None:
            return None
        try:
            return await self._fetch_page(cursor)
        except DocMirrorError as e:
            logger.warning(f"'{self.name}' paginate failed: {e}")
            return None

    async def load_where(self, predicate: Predicate) -> Page:
        """Query the remote service and reconcile the matches."""
        if self._gateway is None:
            return Page([self._handle(e) for e in self._entries if predicate(e)])

        remote = await self._fetch_remote(
            self._gateway.fetch_where, "fetch_where", self._remote_matcher(predicate)
        )
        if remote is None:
            return Page([self._handle(e) for e in self._entries if predicate(e)])
        return Page(self.reconcile_many(remote.data))

    def _remote_matcher(self, predicate: Predicate) -> Callable[[Any], bool]:
        """Wrap ``predicate`` so it sees remote documents as cached entries.

        Reference fields are resolved first, and a document the predicate
        fails on does not match.
        """

        def matches(doc: Any) -> bool:
            if not isinstance(doc, Mapping):
                return False
            try:
                entry = self._resolve(doc)
            except MalformedPayloadError:
                return False
            entry.setdefault("coll", self.name)
            try:
                return bool(predicate(entry))
            except Exception:
                logger.warning(
                    f"'{self.name}': predicate failed on remote document "
                    f"{doc.get(self.identity_key)!r}",
                    exc_info=True,
                )
                return False

        return matches

    async def _fetch_one(self, identity: str) -> dict[str, Any]:
        return await self._gateway.fetch_by_id(identity)

    async def refresh(self, identity: str) -> DocumentHandle | None:
        """Re-fetch one document.

        A remote miss removes the stale cached entry.

        Returns:
            Handle to the refreshed document, or None if it does not exist or
            could not be fetched.
        """
        if self._gateway is None:
            return None

        identity = self.canonical_identity(identity)
        if is_temp_id(identity):
            return None

        revision = self._revision(identity)
        try:
            doc = await self._fetch_one(identity)
        except DocumentNotFound:
            logger.info(f"'{self.name}': {identity} no longer exists remotely")
            self._missing[identity] = time.monotonic()
            self.remove(identity)
            return None
        except DocMirrorError as e:
            logger.warning(f"'{self.name}' refresh of {identity} failed: {e}")
            return None

        if self._revision(identity) != revision:
            logger.debug(f"'{self.name}': dropping stale fetch of {identity}")
            return DocumentHandle(self, identity)
        return self.reconcile(doc)

    def _fetch_missing(self, identity: str) -> None:
        if self._gateway is None or identity in self._fetching or is_temp_id(identity):
            return
        if self._recently_missing(identity):
            logger.debug(f"'{self.name}': {identity} was not found recently, not fetching")
            return

        async def fetch() -> None:
            try:
                await self.refresh(identity)
            finally:
                self._fetching.discard(identity)

        if self._spawn(fetch(), "fetch_by_id") is not None:
            self._fetching.add(identity)

    def _recently_missing(self, identity: str) -> bool:
        missed_at = self._missing.get(identity)
        if missed_at is None:
            return False
        if time.monotonic() - missed_at < self.missing_ttl:
            return True
        del self._missing[identity]
        return False

    # ==================== Optimistic mutations ====================

    def _new_identity(self, fields: Mapping[str, Any]) -> str:
        identity = fields.get(self.identity_key)
        return str(identity) if identity else new_temp_id()

    def create(self, doc: Mapping[str, Any]) -> DocumentHandle:
        """Create a document locally and on the remote service.

        Without an ``id`` the document gets a temporary identity, replaced in
        place when the service confirms the real one.

        Returns:
            Handle to the optimistic document.
        """
        if not isinstance(doc, Mapping):
            raise TypeError(f"create() expects a mapping, got {type(doc).__name__}")

        identity = self._new_identity(doc)
        fields = self._mutable_fields(doc)
        fields.pop(self.identity_key, None)

        entry = {self.identity_key: identity, "coll": self.name, "ts": now_ts()}
        entry.update(self._resolve(fields))
        entry.update(computed_defaults(self.definition))

        if self._apply(entry):
            self._commit()
        revision = self._bump(identity)

        payload = unresolve(fields)
        if not is_temp_id(identity):
            payload[self.identity_key] = identity
        task = self._spawn(self._remote_create(identity, payload, revision), "create")
        if task is not None and is_temp_id(identity):
            self._pending_creates[identity] = task
        return DocumentHandle(self, identity)

    async def _remote_create(
        self, identity: str, payload: dict[str, Any], revision: int
    ) -> str | None:
        """Send a create and reconcile the confirmation.

        Returns:
            The confirmed identity, or None if the create failed.
        """
        try:
            confirmed = await self._gateway.create(payload)
        except DocMirrorError as e:
            logger.warning(f"'{self.name}' create of {identity} failed: {e}")
            return None
        finally:
            self._pending_creates.pop(identity, None)

        confirmed_id = confirmed.get(self.identity_key) if isinstance(confirmed, Mapping) else None
        if not confirmed_id:
            logger.warning(f"'{self.name}' create of {identity} returned no identity")
            return None
        confirmed_id = str(confirmed_id)
        self._confirmed[identity] = confirmed_id

        if self._revision(identity) == revision:
            self.reconcile(confirmed, match_key=identity)
            return confirmed_id

        # Edited locally since the create was sent, keep the local fields
        logger.debug(f"'{self.name}': stale create confirmation for {identity}")
        current = self.entry(identity)
        if current is None:
            self._alias(self.canonical_identity(identity), confirmed_id)
        else:
            remapped = dict(current)
            remapped[self.identity_key] = confirmed_id
            if self._apply(remapped, match_key=identity):
                self._commit()
        return confirmed_id

    async def _confirmed_identity(self, identity: str) -> str | None:
        """Identity to use remotely, waiting for a pending create if needed.

        A confirmed identity is returned as given, so a rename is addressed
        by the name the service still knows.
        """
        if not is_temp_id(identity):
            return identity

        identity = self.canonical_identity(identity)
        if not is_temp_id(identity):
            return identity
        if identity in self._confirmed:
            return self._confirmed[identity]

        task = self._pending_creates.get(identity)
        if task is None:
            return None
        return await task

    def update_document(self, identity: str, partial: Mapping[str, Any]) -> str:
        """Merge ``partial`` into a cached document and send the update.

        Returns:
            The document's identity after the update (changes on a rename).
        """
        index = self._index_of(identity)
        if index == -1:
            logger.warning(f"'{self.name}': cannot update {identity}, not cached")
            return identity

        fields = self._mutable_fields(partial)
        current = self._entries[index]
        updated = merge_fields(current, self._resolve(fields))
        return self._mutate(current, updated, "update", fields)

    def replace_document(self, identity: str, full: Mapping[str, Any]) -> str:
        """Overwrite a cached document's domain fields and send the replace.

        Returns:
            The document's identity after the replace.
        """
        index = self._index_of(identity)
        if index == -1:
            logger.warning(f"'{self.name}': cannot replace {identity}, not cached")
            return identity

        fields = self._mutable_fields(full)
        current = self._entries[index]
        replaced = replace_fields(current, self._resolve(fields), self.kind)
        for name, default in computed_defaults(self.definition).items():
            replaced.setdefault(name, current.get(name, default))
        return self._mutate(current, replaced, "replace", fields)

    def _mutate(
        self, current: Document, new: Document, operation: str, fields: Document
    ) -> str:
        old_identity = current[self.identity_key]
        new_identity = str(new[self.identity_key])
        new[self.identity_key] = new_identity

        if new == current:
            logger.debug(f"'{self.name}': {operation} of {old_identity} changes nothing")
            return old_identity

        if new_identity != old_identity:
            index = self._index_of(new_identity)
            if index > -1 and self._entries[index] is not current:
                logger.warning(
                    f"'{self.name}': cannot rename {old_identity} to {new_identity}, "
                    "that identity is already in use"
                )
                return old_identity

        self._apply(new, match_key=old_identity)
        self._commit()
        revision = self._bump(new_identity)

        self._spawn(
            self._remote_write(operation, old_identity, unresolve(fields), revision),
            operation,
        )
        return new_identity

    async def _remote_write(
        self, operation: str, identity: str, payload: dict[str, Any], revision: int
    ) -> None:
        target = await self._confirmed_identity(identity)
        if target is None:
            logger.warning(
                f"'{self.name}': skipping remote {operation} of {identity}, "
                "document was never created remotely"
            )
            return

        call = self._gateway.update if operation == "update" else self._gateway.replace
        try:
            confirmed = await call(target, payload)
        except DocumentNotFound:
            logger.info(f"'{self.name}': {target} no longer exists remotely")
            self.remove(target)
            return
        except DocMirrorError as e:
            logger.warning(f"'{self.name}' {operation} of {target} failed: {e}")
            return

        if self._revision(identity) != revision:
            logger.debug(f"'{self.name}': dropping stale {operation} confirmation for {target}")
            return
        self.reconcile(confirmed, match_key=self.canonical_identity(identity))

    def delete_document(self, identity: str) -> bool:
        """Remove a document locally and request remote deletion.

        Returns:
            True if the document was cached.
        """
        identity = self.canonical_identity(identity)
        if not self.remove(identity):
            logger.warning(f"'{self.name}': cannot delete {identity}, not cached")
            return False

        self._bump(identity)
        self._spawn(self._remote_delete(identity), "delete")
        return True

    async def _remote_delete(self, identity: str) -> None:
        target = await self._confirmed_identity(identity)
        if target is None:
            return
        try:
            await self._gateway.delete(target)
        except DocumentNotFound:
            logger.debug(f"'{self.name}': {target} was already deleted remotely")
        except DocMirrorError as e:
            logger.warning(f"'{self.name}' delete of {target} failed: {e}")

    # ==================== History ====================

    @property
    def can_undo(self) -> bool:
        return self._history.can_undo

    @property
    def can_redo(self) -> bool:
        return self._history.can_redo

    @property
    def history_depth(self) -> tuple[int, int]:
        return self._history.depth

    def undo(self) -> bool:
        """Restore the state before the last mutation.

        Returns:
            False if there was nothing to undo.
        """
        return self._restore(self._history.undo(self._snapshot()))

    def redo(self) -> bool:
        """Re-apply the last undone mutation.

        Returns:
            False if there was nothing to redo.
        """
        return self._restore(self._history.redo(self._snapshot()))

    def _restore(self, snapshot: Snapshot | None) -> bool:
        if snapshot is None:
            return False

        key = self.identity_key
        entries = self._remap_confirmed(snapshot)
        before = {e[key]: e for e in self._entries}
        after = {e[key]: e for e in entries}
        self._entries = entries
        # Restored identities are canonical again, e.g. a name before a rename
        for identity in after:
            self._aliases.pop(identity, None)

        # Confirmations for edits on either side of the jump are now stale
        for identity in before.keys() | after.keys():
            if before.get(identity) != after.get(identity):
                self._bump(identity)

        self._commit()
        return True

    def _remap_confirmed(self, snapshot: Snapshot) -> list[Document]:
        """Entries of ``snapshot`` with confirmed temporary ids replaced.

        A snapshot taken before a create confirmation still holds the
        temporary id, which the service never knew.
        """
        key = self.identity_key
        entries: list[Document] = []
        seen: set[str] = set()
        for entry in snapshot:
            identity = entry[key]
            if identity in self._confirmed:
                entry = dict(entry)
                entry[key] = identity = self._confirmed[identity]
            if identity in seen:
                continue
            seen.add(identity)
            entries.append(entry)
        return entries

    # ==================== Lifecycle ====================

    def _spawn(self, coro: Coroutine[Any, Any, Any], label: str) -> asyncio.Task | None:
        """Schedule a remote operation on the running loop."""
        if self._gateway is None:
            coro.close()
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning(f"'{self.name}': no running event loop, skipping remote {label}")
            return None

        task = loop.create_task(coro, name=f"{self.name}:{label}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_pending(self) -> None:
        """Wait until every scheduled remote operation has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel scheduled remote operations."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending_creates.clear()
        self._fetching.clear()
        self._missing.clear()

    def destroy(self) -> None:
        """Empty the cache and its stored copy, e.g. when the user signs out."""
        self._entries = []
        self._history.clear()
        self._aliases.clear()
        self._confirmed.clear()
        self._revisions.clear()
        self._missing.clear()
        self._storage.remove(self.name)
        self._notify()

    def get_stats(self) -> dict[str, Any]:
        past, future = self._history.depth
        return {
            "collection": self.name,
            "documents": len(self._entries),
            "undo_depth": past,
            "redo_depth": future,
            "pending_remote": len(self._tasks),
        }


class NamedCollectionCache(CollectionCache):
    """Cache of documents identified by a unique name, e.g. collection definitions."""

    kind = NAMED_DOCUMENT

    def _new_identity(self, fields: Mapping[str, Any]) -> str:
        name = fields.get("name")
        if not name:
            raise MissingIdentityError(f"Document for '{self.name}' has no 'name'")
        return str(name)

    async def _fetch_one(self, identity: str) -> dict[str, Any]:
        return await self._gateway.fetch_by_name(identity)

    def by_name(self, name: str) -> DocumentHandle:
        return self.by_identity(name)
