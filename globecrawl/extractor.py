"""Exhaustive enumeration of scroll-to-load-more item lists."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any

from globecrawl.logging_config import get_logger
from globecrawl.models import ItemId

LOGGER = get_logger(__name__)

# Returns the trailing path segment of every rendered item link.
SNAPSHOT_IDS_JS = """
(linkSelector) => Array.from(document.querySelectorAll(linkSelector)).map((link) => {
    const path = link.pathname || "";
    return path.substring(path.lastIndexOf("/") + 1);
})
"""
CONTENT_EXTENT_JS = "() => document.body.scrollHeight"
SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"


class GrowthOutcome(str, Enum):
    """Result of waiting for more list content after a load trigger."""

    GREW = "grew"
    TIMED_OUT = "timed_out"


def parse_item_id(value: Any) -> ItemId | None:
    """Return the numeric id at the end of an href/path segment, or ``None``."""

    if value is None:
        return None
    text = str(value).strip().rstrip("/")
    text = text.rsplit("/", 1)[-1].split("?", 1)[0]
    if not text.isdigit():
        return None
    return int(text)


async def content_extent(page: Any) -> int:
    value = await page.evaluate(CONTENT_EXTENT_JS)
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


async def snapshot_ids(page: Any, link_selector: str) -> list[ItemId]:
    raw = await page.evaluate(SNAPSHOT_IDS_JS, link_selector) or []
    ids: list[ItemId] = []
    for value in raw:
        item_id = parse_item_id(value)
        if item_id is not None:
            ids.append(item_id)
    return ids


async def wait_for_growth(
    page: Any,
    previous_extent: int,
    *,
    timeout: float,
    poll_interval: float,
) -> GrowthOutcome:
    """Poll the scrollable extent until it exceeds ``previous_extent`` or ``timeout`` passes."""

    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(timeout, 0.0)
    while True:
        if await content_extent(page) > previous_extent:
            return GrowthOutcome.GREW
        remaining = deadline - loop.time()
        if remaining <= 0:
            return GrowthOutcome.TIMED_OUT
        await asyncio.sleep(min(poll_interval, remaining))


async def extract_all_ids(
    page: Any,
    *,
    link_selector: str,
    load_timeout: float = 3.0,
    poll_interval: float = 0.25,
    scroll_pause: float = 1.0,
    max_rounds: int | None = None,
) -> list[ItemId]:
    """Scroll ``page`` until no more content loads and return every item id seen.

    There is no end-of-list marker: the list is considered exhausted the first
    time a scroll produces no growth within ``load_timeout``, so that value
    trades crawl time against completeness.
    """

    seen: dict[ItemId, None] = {}
    rounds = 0
    while True:
        rounds += 1
        for item_id in await snapshot_ids(page, link_selector):
            seen.setdefault(item_id, None)

        previous_extent = await content_extent(page)
        await page.evaluate(SCROLL_TO_BOTTOM_JS)
        outcome = await wait_for_growth(
            page,
            previous_extent,
            timeout=load_timeout,
            poll_interval=poll_interval,
        )
        if outcome is GrowthOutcome.TIMED_OUT:
            break
        if max_rounds and rounds >= max_rounds:
            LOGGER.warning("Stopped scrolling after max_rounds=%d with content still loading", max_rounds)
            for item_id in await snapshot_ids(page, link_selector):
                seen.setdefault(item_id, None)
            break
        if scroll_pause > 0:
            await asyncio.sleep(scroll_pause)

    LOGGER.debug("List exhausted | rounds=%d ids=%d", rounds, len(seen))
    return list(seen)
