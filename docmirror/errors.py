"""Error types for docmirror.

Environment-caused failures (network, storage, parsing) are caught inside the
cache and logged. Only programmer errors escape the public API.
"""


class DocMirrorError(Exception):
    """Base class for all docmirror errors."""


class DocumentNotFound(DocMirrorError):
    """The remote service has no document with the requested identity."""

    def __init__(self, collection: str, identity: str):
        super().__init__(f"{collection}: document '{identity}' not found")
        self.collection = collection
        self.identity = identity


class TransientIOError(DocMirrorError):
    """A network or query failure that may succeed on a later attempt."""


class MalformedPayloadError(DocMirrorError):
    """A persisted or remote payload could not be interpreted."""


class MissingIdentityError(DocMirrorError, ValueError):
    """A document was passed to the cache without its identity field."""


class UnknownCollectionError(DocMirrorError, KeyError):
    """No cache is registered under the requested collection name."""


class SchemaValidationError(DocMirrorError):
    """A collection-definition file failed validation."""
