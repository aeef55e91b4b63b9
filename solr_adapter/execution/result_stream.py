"""
Lazy, paged result stream for ``select``.
"""

from collections import deque
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Tuple

PageFetcher = Callable[[int, int], Tuple[List[Dict[str, Any]], int]]


class ResultStream(Iterator[Any]):
    """
    Iterates query results one record at a time, fetching a page per round trip.

    The stream is finite and single-use: it can not be restarted and must
    not be consumed from two places at once. Abandoning it before
    exhaustion issues no further requests.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        convert: Callable[[Dict[str, Any]], Any],
        offset: int = 0,
        limit: Optional[int] = None,
        page_size: int = 100,
    ):
        """
        Initialize the stream.

        Args:
            fetch_page: Called with (offset, limit); returns (documents, numFound)
            convert: Maps one store document to the yielded value
            offset: Offset of the first result
            limit: Maximum number of results (None for all)
            page_size: Documents requested per round trip
        """
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self._fetch_page = fetch_page
        self._convert = convert
        self._next_offset = offset
        self._remaining = limit
        self._page_size = page_size
        self._buffer: Deque[Dict[str, Any]] = deque()
        self._exhausted = False
        self.pages_fetched = 0
        self.total: Optional[int] = None

    def __iter__(self) -> "ResultStream":
        return self

    def __next__(self) -> Any:
        if not self._buffer:
            if self._exhausted:
                raise StopIteration
            self._fill()
            if not self._buffer:
                raise StopIteration
        return self._convert(self._buffer.popleft())

    def _fill(self) -> None:
        page_limit = self._page_size
        if self._remaining is not None:
            page_limit = min(page_limit, self._remaining)
        if page_limit <= 0:
            self._exhausted = True
            return

        documents, num_found = self._fetch_page(self._next_offset, page_limit)
        self.pages_fetched += 1
        self.total = num_found

        self._next_offset += len(documents)
        if self._remaining is not None:
            self._remaining -= len(documents)

        if (
            len(documents) < page_limit
            or self._next_offset >= num_found
            or self._remaining == 0
        ):
            self._exhausted = True

        self._buffer.extend(documents)

    def close(self) -> None:
        """Stop the stream; buffered results are discarded."""
        self._buffer.clear()
        self._exhausted = True

    def collect(self) -> List[Any]:
        """Consume the rest of the stream into a list."""
        return list(self)

    def first(self) -> Optional[Any]:
        """Return the next result, or None when the stream is exhausted."""
        return next(self, None)
