"""Incremental reveal (infinite scroll) over already-fetched sequences.

Revealing more items never triggers a fetch: the full list usually comes
from one upstream call. When the upstream list is itself paginated, the
caller fetches the next page once ``has_more`` turns False.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, Sequence, TypeVar

import anyio

from agenda.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def visible_slice(items: Sequence[T], count: int) -> list[T]:
    """First ``count`` items (day buckets in the agenda list)."""
    if count <= 0:
        return []
    return list(items[:count])


def has_more(items: Sequence[T], count: int) -> bool:
    return count < len(items)


@dataclass
class RevealWindow(Generic[T]):
    """Bounded view over a sequence."""
    items: list[T]
    total: int
    count: int
    
    @property
    def has_more(self) -> bool:
        return self.count < self.total
    
    @classmethod
    def create(cls, items: Sequence[T], count: int) -> "RevealWindow[T]":
        return cls(
            items=visible_slice(items, count),
            total=len(items),
            count=count,
        )


class RevealController:
    """
    Tracks how many day buckets are revealed.

    ``advance`` is debounced: while one advance is in flight ``busy`` is set
    and further triggers are ignored instead of queued.
    """

    def __init__(
        self,
        *,
        page_size: int | None = None,
        step: int | None = None,
        debounce_seconds: float | None = None,
    ) -> None:
        self.page_size = page_size if page_size is not None else settings.REVEAL_PAGE_SIZE
        self.step = step if step is not None else settings.REVEAL_STEP
        self.debounce_seconds = (
            debounce_seconds if debounce_seconds is not None else settings.REVEAL_DEBOUNCE_SECONDS
        )
        if self.page_size < 1 or self.step < 1:
            raise ValueError("page_size and step must be positive")
        self._count = self.page_size
        self._busy = False

    @property
    def count(self) -> int:
        return self._count

    @property
    def busy(self) -> bool:
        return self._busy

    async def advance(self, total: int | None = None) -> int:
        """Reveal one more step after the debounce window."""
        if self._busy:
            return self._count
        if total is not None and self._count >= total:
            return self._count
        self._busy = True
        try:
            if self.debounce_seconds:
                await anyio.sleep(self.debounce_seconds)
            self._count += self.step
            logger.debug("Revealed up to %s buckets", self._count)
        finally:
            self._busy = False
        return self._count

    def reset(self) -> None:
        """Back to the first page (search term changed)."""
        self._count = self.page_size

    def window(self, items: Sequence[T]) -> RevealWindow[T]:
        return RevealWindow.create(items, self._count)
