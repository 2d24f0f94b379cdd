"""Remote gateways: async CRUD and paginated queries against the backing service.

Handles network access with retry logic. Every failure surfaces as one of the
docmirror error types so the cache can degrade to "no change occurred".
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from .documents import PAGE_SIZE
from .errors import DocumentNotFound, MalformedPayloadError, TransientIOError

logger = logging.getLogger(__name__)

RawPredicate = Callable[[dict[str, Any]], bool]


@dataclass
class RemotePage:
    """One batch of raw documents as returned by the service."""

    data: list[dict[str, Any]] = field(default_factory=list)
    after: str | None = None


class RemoteGateway(ABC):
    """Abstract per-collection access to the remote document service.

    Lookups of a missing document raise DocumentNotFound; network and query
    failures raise TransientIOError; unreadable responses raise
    MalformedPayloadError.
    """

    collection: str

    @abstractmethod
    async def fetch_all(self) -> RemotePage:
        pass

    @abstractmethod
    async def fetch_by_id(self, doc_id: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def fetch_by_name(self, name: str) -> dict[str, Any]:
        pass

    @abstractmethod
    async def fetch_where(self, predicate: RawPredicate) -> RemotePage:
        pass

    @abstractmethod
    async def create(self, doc: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    async def update(self, doc_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    async def replace(self, doc_id: str, full: dict[str, Any]) -> dict[str, Any]:
        pass

    @abstractmethod
    async def delete(self, doc_id: str) -> None:
        pass

    @abstractmethod
    async def paginate(self, cursor: str) -> RemotePage:
        pass

    async def close(self) -> None:
        pass


def _parse_page(data: Any) -> RemotePage:
    if not isinstance(data, dict) or not isinstance(data.get("data"), list):
        raise MalformedPayloadError(f"Expected a page object, got {type(data).__name__}")
    after = data.get("after")
    return RemotePage(data=data["data"], after=str(after) if after else None)


def _parse_document(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedPayloadError(
            f"Expected a document object, got {type(data).__name__}"
        )
    return data


class HttpGateway(RemoteGateway):
    """REST gateway for one collection.

    Endpoints, relative to ``base_url``:
    - ``GET /collections/{c}/documents?size=N[&cursor=T]`` -> page
    - ``GET|PATCH|PUT|DELETE /collections/{c}/documents/{id}``
    - ``POST /collections/{c}/documents``
    - ``GET|PATCH|PUT|DELETE /collections/{c}/named/{name}`` for named
      collections

    Pages are ``{"data": [...], "after": token | null}``.

    Uses exponential backoff for retries on connection errors, timeouts and
    server errors.
    """

    def __init__(
        self,
        base_url: str,
        collection: str,
        client: httpx.AsyncClient | None = None,
        page_size: int = PAGE_SIZE,
        max_retries: int = 3,
        timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        named: bool = False,
    ):
        """Initialize the gateway.

        Args:
            base_url: Base URL of the document service.
            collection: Collection this gateway serves.
            named: Address single documents by name instead of id.
            client: Shared HTTP client. If None, one is created on first use
                and closed by close().
            page_size: Documents per fetched page.
            max_retries: Maximum attempts per request.
            timeout: Request timeout in seconds.
            headers: Extra request headers, e.g. authorization.
        """
        self.base_url = base_url.rstrip("/")
        self.collection = collection
        self.page_size = page_size
        self.max_retries = max_retries
        self.timeout = timeout
        self.headers = headers or {}
        self.named = named
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.headers,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this gateway created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def _documents_path(self) -> str:
        return f"/collections/{self.collection}/documents"

    def _item_path(self, identity: str) -> str:
        if self.named:
            return f"/collections/{self.collection}/named/{identity}"
        return f"{self._documents_path}/{identity}"

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Any = None,
        params: dict[str, Any] | None = None,
        identity: str | None = None,
    ) -> Any:
        """Make HTTP request with exponential backoff retry.

        Args:
            method: HTTP method.
            path: URL path relative to the base URL.
            json_data: Optional JSON body.
            params: Optional query parameters.
            identity: Document identity, reported in DocumentNotFound.

        Returns:
            Decoded JSON response body, or None for an empty body.

        Raises:
            DocumentNotFound: On HTTP 404.
            TransientIOError: On network failure, client errors or exhausted
                retries.
            MalformedPayloadError: If the body is not valid JSON.
        """
        client = await self._get_client()
        backoff = 1.0

        for attempt in range(self.max_retries):
            try:
                response = await client.request(
                    method, path, json=json_data, params=params
                )

                if response.status_code == 404:
                    raise DocumentNotFound(self.collection, identity or path)

                if response.status_code < 400:
                    if not response.content:
                        return None
                    try:
                        return response.json()
                    except ValueError as e:
                        raise MalformedPayloadError(
                            f"{method} {path}: invalid JSON response: {e}"
                        ) from e

                if response.status_code >= 500:
                    # Server error, retry
                    logger.warning(
                        f"Server error {response.status_code} on {method} {path}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                else:
                    # Client error, don't retry
                    raise TransientIOError(
                        f"{method} {path}: HTTP {response.status_code}: {response.text}"
                    )

            except httpx.ConnectError:
                logger.warning(
                    f"Connection failed on {method} {path}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.TimeoutException:
                logger.warning(
                    f"Request timeout on {method} {path}, "
                    f"attempt {attempt + 1}/{self.max_retries}"
                )
            except httpx.HTTPError as e:
                raise TransientIOError(f"{method} {path}: {e}") from e

            # Exponential backoff
            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        raise TransientIOError(
            f"{method} {path}: max retries ({self.max_retries}) exceeded"
        )

    async def fetch_all(self) -> RemotePage:
        data = await self._request(
            "GET", self._documents_path, params={"size": self.page_size}
        )
        return _parse_page(data)

    async def paginate(self, cursor: str) -> RemotePage:
        data = await self._request(
            "GET",
            self._documents_path,
            params={"size": self.page_size, "cursor": cursor},
        )
        return _parse_page(data)

    async def fetch_by_id(self, doc_id: str) -> dict[str, Any]:
        data = await self._request(
            "GET", self._item_path(doc_id), identity=doc_id
        )
        return _parse_document(data)

    async def fetch_by_name(self, name: str) -> dict[str, Any]:
        data = await self._request(
            "GET", f"/collections/{self.collection}/named/{name}", identity=name
        )
        return _parse_document(data)

    async def fetch_where(self, predicate: RawPredicate) -> RemotePage:
        """Walk every page of the collection and keep matching documents.

        The service has no way to evaluate a Python predicate, so filtering
        happens client-side.
        """
        page = await self.fetch_all()
        matches = [doc for doc in page.data if predicate(doc)]
        while page.after:
            page = await self.paginate(page.after)
            matches.extend(doc for doc in page.data if predicate(doc))
        return RemotePage(data=matches, after=None)

    async def create(self, doc: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", self._documents_path, json_data=doc)
        return _parse_document(data)

    async def update(self, doc_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        data = await self._request(
            "PATCH",
            self._item_path(doc_id),
            json_data=partial,
            identity=doc_id,
        )
        return _parse_document(data)

    async def replace(self, doc_id: str, full: dict[str, Any]) -> dict[str, Any]:
        data = await self._request(
            "PUT",
            self._item_path(doc_id),
            json_data=full,
            identity=doc_id,
        )
        return _parse_document(data)

    async def delete(self, doc_id: str) -> None:
        await self._request(
            "DELETE", self._item_path(doc_id), identity=doc_id
        )
