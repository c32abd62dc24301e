"""
Lazy, single-pass query result streams.

A QueryStream wraps one backend cursor (any async iterable) and exposes it as
an async iterator plus derived views:
- take(n): ends after n elements pulled through the view
- skip(n): discards the first n elements pulled through the view
- paged(size): groups elements pulled through the view into lists

Every view derived from the same base, directly or through other views,
pulls from one shared cursor. Each physical pull is claimed by exactly one
consumer, in the order the pulls are issued; nothing is copied, buffered
ahead of demand or broadcast. Only the cursor position is shared, while
skip/take counters and page buffers belong to their view.

Invariants:
    - The underlying source is advanced exactly once per claimed element
    - Once the cursor ends (exhausted, closed, or a take limit passed) every
      view yields end-of-sequence permanently
    - A source failure is raised to the puller that hit it and re-raised to
      every later pull on any view
    - The source's aclose() is awaited at most once

How to change safely:
    - Never give a derived view its own iterator over the source
    - Keep every source read inside _SharedCursor.claim()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_END: Any = object()


async def _iterate(items: Iterable[T]) -> AsyncIterator[T]:
    for item in items:
        yield item


class _SharedCursor:
    """The single pull position shared by a base stream and all its views.

    Claims are serialized by an asyncio lock, so concurrent consumers are
    served in the order their claims were issued.
    """

    def __init__(
        self,
        source: AsyncIterable[Any] | None,
        error: BaseException | None = None,
    ) -> None:
        self._source: AsyncIterator[Any] | None = aiter(source) if source is not None else None
        self._lock = asyncio.Lock()
        self._error = error
        self._closed = source is None

    @property
    def closed(self) -> bool:
        return self._closed

    async def claim(self) -> Any:
        """Pull the next element from the source, or _END."""
        async with self._lock:
            if self._error is not None:
                raise self._error
            if self._closed:
                return _END
            try:
                return await self._source.__anext__()
            except StopAsyncIteration:
                await self._release()
                return _END
            except Exception as exc:
                self._error = exc
                logger.debug("Query stream source failed", extra={"error": repr(exc)})
                await self._release()
                raise

    async def close(self) -> None:
        async with self._lock:
            await self._release()

    async def _release(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._source, "aclose", None)
        self._source = None
        if aclose is not None:
            await aclose()


class QueryStream(Generic[T]):
    """Async, single-pass stream of query results.

    Iterating a stream, or any view derived from it, consumes the shared
    cursor. Iterating the same stream object twice continues where the
    previous iteration stopped.

    Example:
        >>> stream = repo.find({"status": "open"})
        >>> first_page = await stream.take(20).to_list()
        >>> async for batch in repo.find({}).paged(100):
        ...     process(batch)
    """

    def __init__(self, source: AsyncIterable[T] | None = None) -> None:
        """Wrap a backend cursor.

        Args:
            source: Async iterable of records (None gives an empty stream)
        """
        self._cursor = _SharedCursor(source)

    @classmethod
    def empty(cls) -> QueryStream[T]:
        return cls(None)

    @classmethod
    def from_iterable(cls, items: Iterable[T]) -> QueryStream[T]:
        return cls(_iterate(items))

    @classmethod
    def failed(cls, error: BaseException) -> QueryStream[T]:
        """A stream whose every pull raises ``error``."""
        stream = cls(None)
        stream._cursor = _SharedCursor(None, error=error)
        return stream

    async def _pull(self) -> Any:
        return await self._cursor.claim()

    def __aiter__(self) -> QueryStream[T]:
        return self

    async def __anext__(self) -> T:
        item = await self._pull()
        if item is _END:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> QueryStream[T]:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the shared cursor; every view derived from it ends."""
        await self._cursor.close()

    async def to_list(self) -> list[T]:
        """Drain this view into a list in pull order.

        A failure mid-pull propagates and the partial list is discarded.
        """
        results: list[T] = []
        async for item in self:
            results.append(item)
        return results

    def take(self, limit: int) -> QueryStream[T]:
        if limit < 0:
            raise ValueError(f"take() limit must not be negative, got {limit}")
        return _TakeView(self, limit)

    def skip(self, offset: int) -> QueryStream[T]:
        if offset < 0:
            raise ValueError(f"skip() offset must not be negative, got {offset}")
        return _SkipView(self, offset)

    def paged(self, page_size: int) -> QueryStream[list[T]]:
        if page_size < 1:
            raise ValueError(f"paged() page_size must be at least 1, got {page_size}")
        return _PagedView(self, page_size)


class _DerivedView(QueryStream[T]):
    """A view pulling through its parent, sharing the parent's cursor."""

    def __init__(self, parent: QueryStream[Any]) -> None:
        self._parent = parent
        self._cursor = parent._cursor
        self._lock = asyncio.Lock()


class _TakeView(_DerivedView[T]):
    def __init__(self, parent: QueryStream[T], limit: int) -> None:
        super().__init__(parent)
        self._remaining = limit

    async def _pull(self) -> Any:
        async with self._lock:
            if self._remaining <= 0:
                # Passing the limit ends the shared cursor for every view
                await self._cursor.close()
                return _END
            item = await self._parent._pull()
            if item is not _END:
                self._remaining -= 1
            return item


class _SkipView(_DerivedView[T]):
    def __init__(self, parent: QueryStream[T], offset: int) -> None:
        super().__init__(parent)
        self._remaining = offset

    async def _pull(self) -> Any:
        async with self._lock:
            while self._remaining > 0:
                item = await self._parent._pull()
                if item is _END:
                    return _END
                self._remaining -= 1
            return await self._parent._pull()


class _PagedView(_DerivedView[list[T]]):
    def __init__(self, parent: QueryStream[T], page_size: int) -> None:
        super().__init__(parent)
        self._page_size = page_size
        self._page: list[T] = []

    async def _pull(self) -> Any:
        async with self._lock:
            try:
                while len(self._page) < self._page_size:
                    item = await self._parent._pull()
                    if item is _END:
                        break
                    self._page.append(item)
            except Exception:
                self._page = []
                raise
            page, self._page = self._page, []
            return page if page else _END
