"""Paging over counted source collections."""

from typing import Any, Callable, Generic, Iterator, List, Optional, Protocol, TypeVar

from loguru import logger

from .exceptions import PaginationError

T = TypeVar('T')


class PageQuery(Protocol[T]):
    """A query that can be read in offset/limit slices."""

    def list_page(self, offset: int, limit: int) -> List[T]: ...


class Pagination(Generic[T]):
    """Lazy, finite, single-use iteration over a counted collection.

    Pages are read with ``fetch_page(offset, limit)`` or ``query.list_page``.
    In offset-advancing mode every page starts where the previous one ended.
    In fixed-offset mode every page is read from offset 0; use it when the
    callback removes processed items from the collection being read.

    Iteration stops once ``max_count()`` items have been read or a page
    comes back with fewer than ``page_size`` items.
    """

    def __init__(
        self,
        page_size: int,
        max_count: Callable[[], int],
        fetch_page: Optional[Callable[[int, int], List[T]]] = None,
        query: Optional[PageQuery[T]] = None,
        fixed_offset: bool = False,
    ):
        """Initialize pagination.

        Args:
            page_size: Items requested per page
            max_count: Returns the total number of items to read
            fetch_page: Reads ``limit`` items starting at ``offset``
            query: Object exposing ``list_page(offset, limit)``
            fixed_offset: Re-read offset 0 for every page

        Raises:
            ValueError: If page size is not positive or no page source is given
        """
        if page_size <= 0:
            raise ValueError('Page size must be positive')
        if (fetch_page is None) == (query is None):
            raise ValueError('Exactly one of fetch_page or query must be provided')

        self.page_size = page_size
        self.max_count = max_count
        self.fixed_offset = fixed_offset
        self._fetch = fetch_page if fetch_page is not None else query.list_page
        self._consumed = False
        self.logger = logger.bind(component='Pagination')

    def pages(self) -> Iterator[List[T]]:
        """Yield pages until the collection is exhausted.

        Raises:
            PaginationError: If the pagination was already iterated
        """
        if self._consumed:
            raise PaginationError('Pagination has already been consumed')
        self._consumed = True

        total = self.max_count()
        self.logger.debug(
            f'Paging through {total} items '
            f'(page size {self.page_size}, fixed offset {self.fixed_offset})'
        )

        fetched = 0
        offset = 0
        while fetched < total:
            page = self._fetch(offset, self.page_size)
            if page:
                fetched += len(page)
                yield page
            if len(page) < self.page_size:
                break
            if not self.fixed_offset:
                offset += len(page)

    def items(self) -> Iterator[T]:
        """Yield items one by one across pages."""
        for page in self.pages():
            yield from page

    def for_each(self, callback: Callable[[T], Any]) -> int:
        """Invoke ``callback`` for every item.

        Returns:
            Number of items handed to the callback
        """
        count = 0
        for item in self.items():
            callback(item)
            count += 1
        return count

    def for_each_page(self, callback: Callable[[List[T]], Any]) -> int:
        """Invoke ``callback`` once per page.

        Returns:
            Number of items handed to the callback
        """
        count = 0
        for page in self.pages():
            callback(page)
            count += len(page)
        return count

    def to_list(self) -> List[T]:
        return list(self.items())
