"""Region-by-region crawl passes: ids, titles and thumbnails."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncContextManager, Awaitable, Callable, Iterable, Protocol

from globecrawl.errors import PageLoadError
from globecrawl.logging_config import get_logger
from globecrawl.models import Genre, ItemId, ItemRecord, Region
from globecrawl.progress import PassReport, ProgressLog
from globecrawl.store import IncrementalStore, missing_against

LOGGER = get_logger(__name__)

SessionOpener = Callable[[], AsyncContextManager[Any]]


class PassState(str, Enum):
    """Per-region progress of a pass."""

    PENDING_REGION = "pending_region"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    EXTRACTING = "extracting"
    PERSISTING = "persisting"
    NEXT_REGION = "next_region"
    DONE = "done"


class IdentityController(Protocol):
    async def connect(self, region: Region) -> bool: ...

    async def disconnect(self) -> bool: ...


class PageReader(Protocol):
    async def scrape_ids(self, page: Any, genre_id: str) -> list[ItemId]: ...

    async def scrape_title(self, page: Any, item_id: ItemId) -> ItemRecord: ...

    async def scrape_thumbnail(self, page: Any, name: str) -> dict[str, str] | None: ...


@dataclass
class CrawlOrchestrator:
    """Runs one pass at a time over the configured regions, strictly in sequence."""

    regions: list[Region]
    genres: list[Genre]
    store: IncrementalStore
    identity: IdentityController
    reader: PageReader
    open_session: SessionOpener
    progress: ProgressLog | None = None

    def _select(self, regions: Iterable[Region] | None) -> list[Region]:
        if regions is None:
            return list(self.regions)
        wanted = set(regions)
        unknown = wanted.difference(self.regions)
        if unknown:
            LOGGER.warning("Ignoring unknown regions: %s", ", ".join(sorted(unknown)))
        return [region for region in self.regions if region in wanted]

    def _record(self, report: PassReport, event: str, **details: Any) -> None:
        if self.progress is not None:
            self.progress.record(event, report.pass_name, **details)

    def _transition(self, report: PassReport, region: Region | None, state: PassState) -> None:
        LOGGER.debug("pass=%s region=%s state=%s", report.pass_name, region, state.value)
        self._record(report, "state", region=region, state=state.value)

    def _skip(self, report: PassReport, region: Region, reason: str) -> None:
        report.regions_skipped[region] = reason
        self._record(report, "region_skipped", region=region, reason=reason)
        self._transition(report, region, PassState.NEXT_REGION)

    async def _visit(
        self,
        report: PassReport,
        region: Region,
        work: Callable[[Any], Awaitable[None]],
    ) -> bool:
        """Connect to ``region``, open one session and run ``work`` on it."""

        self._transition(report, region, PassState.CONNECTING)
        if not await self.identity.connect(region):
            LOGGER.warning("Skipping region=%s: connection failed", region)
            self._skip(report, region, "connection_failed")
            return False

        self._transition(report, region, PassState.CONNECTED)
        try:
            async with self.open_session() as page:
                self._transition(report, region, PassState.EXTRACTING)
                await work(page)
        except PageLoadError as exc:
            LOGGER.error("Skipping region=%s: session failed: %s", region, exc)
            self._skip(report, region, "session_failed")
            return False

        report.regions_processed.append(region)
        self._transition(report, region, PassState.NEXT_REGION)
        return True

    def _finish(self, report: PassReport) -> PassReport:
        report.completed = True
        self._transition(report, None, PassState.DONE)
        self._record(report, "pass_done", summary=report.summary())
        LOGGER.info("Pass complete | %s", report.summary())
        return report

    # -- ids ---------------------------------------------------------------

    async def acquire_ids(
        self, regions: Iterable[Region] | None = None, *, resume: bool = True
    ) -> PassReport:
        """Enumerate every genre in every region and merge into the region id sets."""

        report = PassReport("ids")
        LOGGER.info("Acquiring ids...")
        self._record(report, "pass_started")
        completed = self.store.load_cursor() if resume else []
        if completed:
            LOGGER.info("Resuming ids pass; already done: %s", ", ".join(completed))

        try:
            for region in self._select(regions):
                self._transition(report, region, PassState.PENDING_REGION)
                if region in completed:
                    self._skip(report, region, "already_done")
                    continue
                LOGGER.info("Acquiring ids from %s...", region)

                async def collect(page: Any, region: Region = region) -> None:
                    region_ids: tuple[ItemId, ...] = ()
                    failed_genres = 0
                    for genre in self.genres:
                        try:
                            genre_ids = await self.reader.scrape_ids(page, genre.id)
                        except PageLoadError:
                            LOGGER.exception("Genre %s failed in region=%s", genre.id, region)
                            failed_genres += 1
                            report.units_failed += 1
                            continue
                        LOGGER.info(
                            "Genre %s (%s) region=%s ids=%d",
                            genre.id,
                            genre.name,
                            region,
                            len(genre_ids),
                        )
                        region_ids = region_ids + tuple(genre_ids)

                    self._transition(report, region, PassState.PERSISTING)
                    stored = self.store.extend_region_ids(region, region_ids)
                    report.units_saved += 1
                    self._record(report, "unit_saved", region=region, ids=len(stored))
                    if failed_genres == 0:
                        completed.append(region)
                        self.store.save_cursor(completed)

                await self._visit(report, region, collect)

            LOGGER.info("Updating global ids and availability...")
            self.store.rebuild_global_ids(self.regions)
            self.store.rebuild_availability(self.regions)
            self.store.clear_cursor()
            return self._finish(report)
        finally:
            await self.identity.disconnect()

    # -- titles ------------------------------------------------------------

    async def acquire_titles(self, regions: Iterable[Region] | None = None) -> PassReport:
        """Scrape a title record for every id that does not have one yet."""

        report = PassReport("titles")
        LOGGER.info("Acquiring missing titles...")
        self._record(report, "pass_started")
        titles = self.store.load_titles()

        try:
            for region in self._select(regions):
                self._transition(report, region, PassState.PENDING_REGION)
                missing = missing_against(self.store.load_region_ids(region), titles)
                if not missing:
                    self._skip(report, region, "nothing_missing")
                    continue
                LOGGER.info("Acquiring %d missing titles from %s...", len(missing), region)

                async def fetch(page: Any, region: Region = region, missing: list[ItemId] = missing) -> None:
                    for item_id in missing:
                        try:
                            record = await self.reader.scrape_title(page, item_id)
                        except PageLoadError:
                            LOGGER.exception("Title %s failed in region=%s", item_id, region)
                            report.units_failed += 1
                            self._record(report, "unit_failed", region=region, id=item_id)
                            continue
                        self._transition(report, region, PassState.PERSISTING)
                        self.store.save_title(item_id, record)
                        report.units_saved += 1
                        self._record(report, "unit_saved", region=region, id=item_id)

                await self._visit(report, region, fetch)

            return self._finish(report)
        finally:
            await self.identity.disconnect()

    # -- thumbnails --------------------------------------------------------

    async def acquire_thumbnails(self, regions: Iterable[Region] | None = None) -> PassReport:
        """Look up a thumbnail for every titled id that does not have one yet.

        Ids without a stored title name are skipped silently; they become
        eligible once a titles pass has recorded their name.
        """

        report = PassReport("thumbnails")
        LOGGER.info("Acquiring missing thumbnails...")
        self._record(report, "pass_started")
        thumbnails = self.store.load_thumbnails()
        unnamed: set[ItemId] = set()

        try:
            for region in self._select(regions):
                self._transition(report, region, PassState.PENDING_REGION)
                pending: list[tuple[ItemId, str]] = []
                for item_id in missing_against(self.store.load_region_ids(region), thumbnails):
                    name = self.store.title_name(item_id)
                    if name is None:
                        unnamed.add(item_id)
                    else:
                        pending.append((item_id, name))
                if not pending:
                    self._skip(report, region, "nothing_missing")
                    continue
                LOGGER.info("Acquiring %d missing thumbnails from %s...", len(pending), region)

                async def fetch(
                    page: Any,
                    region: Region = region,
                    pending: list[tuple[ItemId, str]] = pending,
                ) -> None:
                    for item_id, name in pending:
                        try:
                            thumbnail = await self.reader.scrape_thumbnail(page, name)
                        except PageLoadError:
                            LOGGER.exception("Thumbnail %s failed in region=%s", item_id, region)
                            thumbnail = None
                        if thumbnail is None:
                            report.units_failed += 1
                            self._record(report, "unit_failed", region=region, id=item_id)
                            continue
                        self._transition(report, region, PassState.PERSISTING)
                        self.store.save_thumbnail(item_id, thumbnail)
                        report.units_saved += 1
                        self._record(report, "unit_saved", region=region, id=item_id)

                await self._visit(report, region, fetch)

            report.no_name = len(unnamed)
            if unnamed:
                LOGGER.info("%d ids have no title name yet; run the titles pass first", len(unnamed))
            return self._finish(report)
        finally:
            await self.identity.disconnect()

    async def acquire_all(
        self, regions: Iterable[Region] | None = None, *, resume: bool = True
    ) -> list[PassReport]:
        """Run ids, titles then thumbnails; the order satisfies the name dependency."""

        selected = None if regions is None else list(regions)
        return [
            await self.acquire_ids(selected, resume=resume),
            await self.acquire_titles(selected),
            await self.acquire_thumbnails(selected),
        ]
