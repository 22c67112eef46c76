"""Bounded-concurrency title enrichment for extracted links.

A fixed pool of asyncio workers drains a queue of input indices and writes
each result into a preallocated slot, so output order always matches input
order regardless of completion order. A failing item leaves ``None`` in its
slot and never affects the other workers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from .import_contract import EnrichedLink

LOGGER = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5

T = TypeVar("T")
U = TypeVar("U")

TitleResolverFn = Callable[[str], Awaitable[Optional[str]]]


async def map_with_concurrency(
    items: Sequence[T],
    mapper: Callable[[T], Awaitable[U]],
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[Optional[U]]:
    if concurrency < 1:
        raise ValueError(f"concurrency must be a positive integer, got {concurrency}")

    results: List[Optional[U]] = [None] * len(items)
    if not items:
        return results

    pending: asyncio.Queue[int] = asyncio.Queue()
    for index in range(len(items)):
        pending.put_nowait(index)

    async def _worker() -> None:
        while True:
            try:
                index = pending.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                results[index] = await mapper(items[index])
            except Exception as exc:
                LOGGER.warning("Item %d (%r) failed: %s", index, items[index], exc)
                results[index] = None

    workers = min(concurrency, len(items))
    await asyncio.gather(*(_worker() for _ in range(workers)))
    return results


async def resolve_titles(
    urls: Sequence[str],
    resolver: TitleResolverFn,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[Optional[str]]:
    """Best-effort title lookup; blank or failed lookups come back as ``None``."""

    titles = await map_with_concurrency(urls, resolver, concurrency)
    return [title.strip() if isinstance(title, str) and title.strip() else None for title in titles]


def fallback_title(url: str, title: Optional[str]) -> str:
    if title and title.strip():
        return title.strip()
    return url


async def enrich_links(
    urls: Sequence[str],
    resolver: TitleResolverFn,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[EnrichedLink]:
    titles = await resolve_titles(urls, resolver, concurrency)
    return [EnrichedLink(url=url, title=fallback_title(url, title)) for url, title in zip(urls, titles)]
