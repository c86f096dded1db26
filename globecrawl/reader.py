"""Catalog page reader: genre lists, title detail pages and thumbnail search."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_random_exponential

import globecrawl.selectors as selectors
from globecrawl.errors import PageLoadError
from globecrawl.extractor import extract_all_ids
from globecrawl.logging_config import get_logger
from globecrawl.models import Genre, ItemId, ItemRecord

LOGGER = get_logger(__name__)

_MINUTES_RE = re.compile(r"(\d+)\s*m(?:in)?\b", re.I)

TITLE_JS = """
(args) => {
    const fields = {};
    for (const [key, selector] of Object.entries(args.fields)) {
        const node = document.querySelector(selector);
        if (node !== null) fields[key] = node.innerText;
    }
    const sections = [];
    const sectionNodes = Array.from(document.querySelectorAll(args.sections)).slice(0, args.maxSections);
    for (const node of sectionNodes) {
        const label = node.querySelector(args.sectionLabel);
        if (label === null) continue;
        const tags = Array.from(node.querySelectorAll(args.sectionTags)).map((tag) => tag.innerText);
        sections.push({ label: label.innerText, tags });
    }
    const episodes = Array.from(document.querySelectorAll(args.episodeDuration)).map((node) => node.innerText);
    const audioDescription = document.querySelector(args.audioDescription) !== null;
    return { fields, sections, episodes, audioDescription };
}
"""

THUMBNAIL_JS = """
(args) => {
    const link = document.querySelector(args.link);
    if (link === null) return null;
    const path = link.pathname || "";
    const image = link.querySelector(args.thumbnail);
    return { code: path.substring(path.lastIndexOf("/") + 1), source: image ? image.src : null };
}
"""

GENRES_JS = """
(selector) => Array.from(document.querySelectorAll(selector)).map((link) => {
    const path = link.pathname || "";
    return { name: link.innerText, id: path.substring(path.lastIndexOf("/") + 1) };
})
"""


def _clean_tag(value: Any) -> str:
    return str(value or "").strip().strip(",").strip()


def _average_minutes(values: list[Any]) -> int | None:
    minutes: list[int] = []
    for value in values:
        match = _MINUTES_RE.search(str(value or ""))
        if match:
            minutes.append(int(match.group(1)))
    if not minutes:
        return None
    return int(sum(minutes) / len(minutes))


def finalize_title(item_id: ItemId, raw: dict[str, Any] | None) -> ItemRecord:
    """Turn the raw DOM payload into a title record, omitting anything absent."""

    raw = raw or {}
    record: ItemRecord = {"id": item_id}

    for key, value in (raw.get("fields") or {}).items():
        cleaned = str(value or "").strip()
        if cleaned:
            record[key] = cleaned

    tags: dict[str, list[str]] = {}
    for section in raw.get("sections") or []:
        label = str(section.get("label") or "").strip().rstrip(":").strip()
        values = [tag for tag in (_clean_tag(item) for item in section.get("tags") or []) if tag]
        if label and values:
            tags[label] = values
    if tags:
        record["tags"] = tags

    duration = record.get("duration")
    if duration is not None:
        record["is_film"] = _MINUTES_RE.search(duration) is not None
        if not record["is_film"]:
            average = _average_minutes(raw.get("episodes") or [])
            if average is not None:
                record["average_episode_duration"] = f"{average}m"

    record["has_audio_description"] = bool(raw.get("audioDescription"))
    return record


def search_term(name: str) -> str:
    return quote(name.replace("|", " ").strip())


class CatalogReader:
    """Reads ids, title records and thumbnails from an open catalog page."""

    def __init__(
        self,
        browser_conf: dict[str, Any],
        extractor_conf: dict[str, Any] | None = None,
    ) -> None:
        self.base_url = str(browser_conf.get("base_url", "")).rstrip("/")
        self.thumbnail_timeout = float(browser_conf.get("thumbnail_timeout", 30.0))
        extractor_conf = extractor_conf or {}
        self.load_timeout = float(extractor_conf.get("load_timeout", 3.0))
        self.poll_interval = float(extractor_conf.get("poll_interval", 0.25))
        self.scroll_pause = float(extractor_conf.get("scroll_pause", 1.0))
        self.max_rounds = int(extractor_conf.get("max_rounds") or 0) or None

    def url(self, path: str) -> str:
        return self.base_url + path

    async def _goto(self, page: Any, url: str, *, item: str | int | None = None) -> None:
        @retry(
            retry=retry_if_exception_type(PlaywrightError),
            stop=stop_after_attempt(3),
            wait=wait_random_exponential(multiplier=0.5, max=5),
            reraise=True,
        )
        async def _navigate() -> None:
            await page.goto(url, wait_until="networkidle")

        try:
            await _navigate()
        except PlaywrightError as exc:
            raise PageLoadError(url=url, item=item) from exc

    async def scrape_ids(self, page: Any, genre_id: str) -> list[ItemId]:
        LOGGER.info("Scraping ids from genre %s", genre_id)
        url = self.url(selectors.GENRE_PATH + genre_id + selectors.ALPHABETICAL_QUERY)
        await self._goto(page, url, item=genre_id)
        try:
            return await extract_all_ids(
                page,
                link_selector=selectors.LINK,
                load_timeout=self.load_timeout,
                poll_interval=self.poll_interval,
                scroll_pause=self.scroll_pause,
                max_rounds=self.max_rounds,
            )
        except PlaywrightError as exc:
            raise PageLoadError(url=url, item=genre_id) from exc

    async def scrape_title(self, page: Any, item_id: ItemId) -> ItemRecord:
        LOGGER.info("Scraping data from title %s", item_id)
        url = self.url(f"{selectors.TITLE_PATH}{item_id}")
        await self._goto(page, url, item=item_id)
        try:
            raw = await page.evaluate(
                TITLE_JS,
                {
                    "fields": selectors.TITLE_FIELDS,
                    "sections": selectors.ABOUT_SECTIONS,
                    "maxSections": selectors.MAX_TAG_SECTIONS,
                    "sectionLabel": selectors.SECTION_LABEL,
                    "sectionTags": selectors.SECTION_TAGS,
                    "episodeDuration": selectors.EPISODE_DURATION,
                    "audioDescription": selectors.AUDIO_DESCRIPTION,
                },
            )
        except PlaywrightError as exc:
            raise PageLoadError(url=url, item=item_id) from exc
        return finalize_title(item_id, raw)

    async def scrape_thumbnail(self, page: Any, name: str) -> dict[str, str] | None:
        """Search for ``name`` and return the first result's code and image source."""

        LOGGER.info("Scraping thumbnail from %s", name)
        url = self.url(selectors.SEARCH_PATH + search_term(name))
        await self._goto(page, url, item=name)
        try:
            await page.wait_for_selector(selectors.LINK, timeout=self.thumbnail_timeout * 1000)
        except PlaywrightTimeoutError:
            LOGGER.warning("No search result for %s within %.0fs", name, self.thumbnail_timeout)
            return None
        except PlaywrightError as exc:
            raise PageLoadError(url=url, item=name) from exc

        try:
            result = await page.evaluate(
                THUMBNAIL_JS, {"link": selectors.LINK, "thumbnail": selectors.THUMBNAIL}
            )
        except PlaywrightError as exc:
            raise PageLoadError(url=url, item=name) from exc
        if not result or not result.get("code") or not result.get("source"):
            return None
        return {"code": str(result["code"]), "source": str(result["source"])}

    async def scrape_genres(self, page: Any) -> list[Genre]:
        genres: dict[str, Genre] = {}
        for path, suffix in (
            (selectors.FILMS_GENRE_PATH, " Films"),
            (selectors.SERIES_GENRE_PATH, " Programmes"),
        ):
            LOGGER.info("Scraping%s genres", suffix.lower())
            url = self.url(path)
            await self._goto(page, url)
            try:
                await page.click(selectors.GENRE_BUTTON)
                entries = await page.evaluate(GENRES_JS, selectors.GENRE_LINKS) or []
            except PlaywrightError as exc:
                raise PageLoadError(url=url) from exc
            for entry in entries:
                genre_id = str(entry.get("id") or "").strip()
                name = str(entry.get("name") or "").strip()
                if genre_id and genre_id not in genres:
                    genres[genre_id] = Genre(id=genre_id, name=f"{name}{suffix}")
        return list(genres.values())
