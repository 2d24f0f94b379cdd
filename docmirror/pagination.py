"""Pages of cached documents with a lazily fetched forward link."""

import asyncio
import logging
from functools import cmp_to_key
from typing import Any, AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)

Comparator = Callable[[Any, Any], int]
PageFetcher = Callable[[str], Awaitable["Page | None"]]


def _compare(a: Any, b: Any) -> int:
    if a == b:
        return 0
    # None sorts first
    if a is None:
        return -1
    if b is None:
        return 1
    return -1 if a < b else 1


def asc(key: Callable[[Any], Any]) -> Comparator:
    """Comparator ordering items by ``key`` ascending.

    Example:
        users.all().order(asc(lambda u: u["lastName"]), desc(lambda u: u["age"]))
    """
    return lambda a, b: _compare(key(a), key(b))


def desc(key: Callable[[Any], Any]) -> Comparator:
    """Comparator ordering items by ``key`` descending."""
    return lambda a, b: _compare(key(b), key(a))


class _ForwardLink:
    """The cached next page, shared by a page and its reordered copies."""

    __slots__ = ("page", "fetched", "lock")

    def __init__(self):
        self.page: Page | None = None
        self.fetched = False
        self.lock = asyncio.Lock()


class Page:
    """One batch of documents and the continuation to the next batch.

    ``await page.after()`` fetches the next page on first call and caches it,
    so ``await (await page.after()).after()`` walks the chain without cursor
    bookkeeping and without refetching pages already seen.
    """

    def __init__(
        self,
        data: list[Any],
        continuation: str | None = None,
        fetcher: PageFetcher | None = None,
        _link: _ForwardLink | None = None,
    ):
        """Initialize the page.

        Args:
            data: Items of this page, in order.
            continuation: Opaque token for the next page, or None if last.
            fetcher: Coroutine function fetching the page for a token.
        """
        self.data = data
        self.continuation = continuation
        self._fetcher = fetcher
        self._link = _link or _ForwardLink()

    def __len__(self) -> int:
        return len(self.data)

    def __iter__(self):
        return iter(self.data)

    def __repr__(self) -> str:
        return f"Page(items={len(self.data)}, continuation={self.continuation!r})"

    @property
    def has_more(self) -> bool:
        return self.continuation is not None and self._fetcher is not None

    async def after(self) -> "Page | None":
        """Get the next page.

        Returns:
            The next Page, or None when there are no further pages or the
            fetch failed. Failures are not cached, a later call retries.
        """
        if not self.has_more:
            return None

        async with self._link.lock:
            if not self._link.fetched:
                try:
                    self._link.page = await self._fetcher(self.continuation)
                except Exception as e:
                    logger.warning(
                        f"Failed to fetch page after {self.continuation!r}: {e}"
                    )
                    return None
                self._link.fetched = True

        return self._link.page

    async def walk(self) -> AsyncIterator["Page"]:
        """Yield this page and every following page."""
        page: Page | None = self
        while page is not None:
            yield page
            page = await page.after()

    def order(self, *comparators: Comparator) -> "Page":
        """Return a copy of this page with sorted data.

        The first comparator returning non-zero decides the order of a pair.
        The copy keeps this page's continuation and shares its cached next
        page. Neither this page nor the cache is reordered.
        """

        def combined(a: Any, b: Any) -> int:
            for comparator in comparators:
                result = comparator(a, b)
                if result != 0:
                    return result
            return 0

        return Page(
            sorted(self.data, key=cmp_to_key(combined)),
            continuation=self.continuation,
            fetcher=self._fetcher,
            _link=self._link,
        )
