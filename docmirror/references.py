"""Reference resolution between sibling collection caches.

A field declared as ``Ref<X>`` (or ``Array<Ref<X>>``) in a collection
definition never holds a copy of the referenced document. The resolver
replaces the raw foreign identity with a :class:`Reference`, a zero-argument
callable that looks the document up in collection ``X``'s cache at call time.
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any

from .documents import Document, now_ts
from .errors import MalformedPayloadError, UnknownCollectionError

if TYPE_CHECKING:
    from .handle import DocumentHandle
    from .registry import StoreContext

logger = logging.getLogger(__name__)

_REF_PATTERN = re.compile(r"^Ref<\s*([A-Za-z_][A-Za-z0-9_]*)\s*>$")
_ARRAY_PATTERN = re.compile(r"^Array<(.+)>$")

# Values given to computed fields until the remote service computes them
_COMPUTED_DEFAULTS: dict[str, Any] = {
    "Number": 0,
    "Int": 0,
    "Long": 0,
    "Double": 0.0,
    "String": "",
    "Boolean": False,
    "Object": {},
}


@dataclass(frozen=True)
class RefSignature:
    """Parsed form of a reference field signature."""

    collection: str
    is_array: bool = False
    optional: bool = False


def parse_signature(signature: str | None) -> RefSignature | None:
    """Parse a declared field type.

    Returns:
        A RefSignature for ``Ref<X>``, ``Ref<X>?``, ``Array<Ref<X>>`` and
        ``Array<Ref<X>>?``; None for every other type.
    """
    if not signature:
        return None

    text = signature.strip()
    optional = text.endswith("?")
    if optional:
        text = text[:-1].rstrip()

    is_array = False
    array_match = _ARRAY_PATTERN.match(text)
    if array_match:
        is_array = True
        text = array_match.group(1).strip()

    ref_match = _REF_PATTERN.match(text)
    if not ref_match:
        return None

    return RefSignature(
        collection=ref_match.group(1), is_array=is_array, optional=optional
    )


def field_signatures(definition: Mapping[str, Any] | None) -> dict[str, str]:
    """Extract the ``field -> signature`` table from a collection definition.

    Accepts both ``{"fields": {"f": {"signature": "String"}}}`` and the
    shorthand ``{"fields": {"f": "String"}}``.
    """
    if not definition:
        return {}

    table = {}
    for name, spec in (definition.get("fields") or {}).items():
        if isinstance(spec, Mapping):
            signature = spec.get("signature")
        else:
            signature = spec
        if isinstance(signature, str):
            table[name] = signature
    return table


def computed_defaults(definition: Mapping[str, Any] | None) -> dict[str, Any]:
    """Default value for each computed field of a collection definition."""
    if not definition:
        return {}

    defaults = {}
    for name, spec in (definition.get("computed_fields") or {}).items():
        signature = spec.get("signature", "") if isinstance(spec, Mapping) else ""
        defaults[name] = _computed_default(signature)
    return defaults


def _computed_default(signature: str) -> Any:
    base = signature.strip().rstrip("?")
    if base == "Date":
        return date.today().isoformat()
    if base == "Time":
        return now_ts()
    if base in _COMPUTED_DEFAULTS:
        value = _COMPUTED_DEFAULTS[base]
        # Fresh container per document
        return dict(value) if isinstance(value, dict) else value
    return None


def raw_identity(value: Any) -> str | None:
    """Extract a foreign identity from a raw reference value.

    Raises:
        MalformedPayloadError: If the value cannot denote a document identity.
    """
    if value is None:
        return None
    if isinstance(value, Reference):
        return value.target_id
    if isinstance(value, bool):
        raise MalformedPayloadError(f"Invalid reference value: {value!r}")
    if isinstance(value, (str, int)):
        return str(value)
    if isinstance(value, Mapping) and value.get("id") is not None:
        return str(value["id"])
    raise MalformedPayloadError(f"Invalid reference value: {value!r}")


class Reference:
    """Lazy accessor for a document in a sibling collection.

    Calling the reference returns the target's live handle from the
    registered cache, or None for a null reference.
    """

    __slots__ = ("_registry", "collection", "target_id")

    def __init__(
        self,
        registry: "StoreContext",
        collection: str,
        target_id: str | None,
    ):
        self._registry = registry
        self.collection = collection
        self.target_id = target_id

    def __call__(self) -> "DocumentHandle | None":
        if self.target_id is None:
            return None
        try:
            cache = self._registry.cache(self.collection)
        except UnknownCollectionError:
            logger.warning(
                f"Reference to unregistered collection '{self.collection}'"
            )
            return None
        return cache.by_identity(self.target_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Reference):
            return NotImplemented
        return (
            self.collection == other.collection
            and self.target_id == other.target_id
        )

    def __hash__(self) -> int:
        return hash((self.collection, self.target_id))

    def __repr__(self) -> str:
        return f"Reference({self.collection}:{self.target_id})"


def unresolve(value: Any) -> Any:
    """Turn references back into raw identities, recursively.

    Used for everything that leaves the process: persistence and remote
    payloads.
    """
    if isinstance(value, Reference):
        return value.target_id
    if isinstance(value, Mapping):
        return {k: unresolve(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [unresolve(v) for v in value]
    return value


class ReferenceResolver:
    """Rewrites raw reference fields into bound :class:`Reference` accessors."""

    def __init__(self, registry: "StoreContext"):
        self._registry = registry

    def reference(self, collection: str, raw: Any) -> Reference:
        return Reference(self._registry, collection, raw_identity(raw))

    def resolve(
        self,
        raw_fields: Mapping[str, Any],
        signatures: Mapping[str, str],
    ) -> Document:
        """Resolve every reference field of ``raw_fields``.

        Args:
            raw_fields: Document fields as received or entered.
            signatures: Field-signature table of the owning collection.

        Returns:
            A new dict; non-reference fields pass through unchanged.

        Raises:
            MalformedPayloadError: If a reference field holds a value that is
                not an identity.
        """
        resolved: Document = {}
        for name, value in raw_fields.items():
            ref = parse_signature(signatures.get(name))
            if ref is None:
                resolved[name] = value
            elif ref.is_array:
                if value is None:
                    resolved[name] = []
                elif isinstance(value, (list, tuple)):
                    resolved[name] = [
                        self.reference(ref.collection, item) for item in value
                    ]
                else:
                    raise MalformedPayloadError(
                        f"Field '{name}' expects an array of references, "
                        f"got {type(value).__name__}"
                    )
            else:
                resolved[name] = self.reference(ref.collection, value)
        return resolved
