"""
Bounded page iteration for offset-paginated REST endpoints.

The iterator always terminates: on a short (or empty) page, or when the
page cap is reached, whichever comes first.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, List

from storesync.utils.logger import log

PageFetcher = Callable[[int], Awaitable[List[Dict[str, Any]]]]


class BoundedPaginator:
    """
    Lazily walks pages 1..max_pages of a paginated endpoint.

    Usage:
        paginator = BoundedPaginator(fetch_page, page_size=100, max_pages=500)
        async for page in paginator:
            ...
        records = await paginator.collect()
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        page_size: int,
        max_pages: int,
        delay_seconds: float = 0.0,
        label: str = "records",
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        if max_pages < 1:
            raise ValueError("max_pages must be positive")
        self.fetch_page = fetch_page
        self.page_size = page_size
        self.max_pages = max_pages
        self.delay_seconds = delay_seconds
        self.label = label
        self.pages_fetched = 0
        self.truncated = False  # True when the cap stopped iteration

    async def __aiter__(self):
        for page_number in range(1, self.max_pages + 1):
            items = await self.fetch_page(page_number)
            self.pages_fetched = page_number
            items = items or []

            if items:
                yield items

            if len(items) < self.page_size:
                return

            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)

        self.truncated = True
        log.warning(
            f"Stopped fetching {self.label} after {self.max_pages} pages "
            f"(page cap reached, results may be incomplete)"
        )

    async def collect(self) -> List[Dict[str, Any]]:
        """Drain every page into a single list"""
        collected: List[Dict[str, Any]] = []
        async for items in self:
            collected.extend(items)
        return collected
