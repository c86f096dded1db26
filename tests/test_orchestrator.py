from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager

import pytest

from globecrawl.errors import PageLoadError, PersistenceError
from globecrawl.models import Genre
from globecrawl.orchestrator import CrawlOrchestrator
from globecrawl.progress import ProgressLog
from globecrawl.store import IncrementalStore


class ProcessKilled(Exception):
    """Stands in for the process dying mid-pass."""


class FakeIdentity:
    def __init__(self, unreachable: set[str] | None = None) -> None:
        self.unreachable = set(unreachable or ())
        self.connects: list[str] = []
        self.disconnects = 0
        self.current: str | None = None

    async def connect(self, region: str) -> bool:
        await self.disconnect()
        self.connects.append(region)
        if region in self.unreachable:
            return False
        self.current = region
        return True

    async def disconnect(self) -> bool:
        self.disconnects += 1
        self.current = None
        return True


class FakeReader:
    """Serves canned catalog data for whichever region the identity is on."""

    def __init__(
        self,
        identity: FakeIdentity,
        catalog: dict[str, dict[str, list[int]]],
        titles: dict[int, dict] | None = None,
        thumbnails: dict[str, dict[str, str]] | None = None,
    ) -> None:
        self.identity = identity
        self.catalog = catalog
        self.titles = titles or {}
        self.thumbnails = thumbnails or {}
        self.id_calls: list[tuple[str, str]] = []
        self.title_calls: list[int] = []
        self.thumbnail_calls: list[str] = []
        self.fail_genres: set[tuple[str, str]] = set()
        self.crash_in: str | None = None

    async def scrape_ids(self, page, genre_id: str) -> list[int]:
        region = self.identity.current
        assert page == f"page:{region}"
        if region == self.crash_in:
            raise ProcessKilled(region)
        self.id_calls.append((region, genre_id))
        if (region, genre_id) in self.fail_genres:
            raise PageLoadError(url=f"https://catalog.test/browse/genre/{genre_id}")
        return list(self.catalog[region].get(genre_id, []))

    async def scrape_title(self, page, item_id: int) -> dict:
        self.title_calls.append(item_id)
        if item_id not in self.titles:
            raise PageLoadError(url=f"https://catalog.test/title/{item_id}", item=item_id)
        return dict(self.titles[item_id])

    async def scrape_thumbnail(self, page, name: str) -> dict[str, str] | None:
        self.thumbnail_calls.append(name)
        return self.thumbnails.get(name)


class SessionCounter:
    def __init__(self, identity: FakeIdentity) -> None:
        self.identity = identity
        self.opened: list[str] = []

    def __call__(self):
        @asynccontextmanager
        async def _session():
            assert self.identity.current is not None, "session opened without identity"
            self.opened.append(self.identity.current)
            yield f"page:{self.identity.current}"

        return _session()


def _build(tmp_path, regions, genres, catalog, *, unreachable=None, titles=None, thumbnails=None):
    identity = FakeIdentity(unreachable)
    reader = FakeReader(identity, catalog, titles, thumbnails)
    sessions = SessionCounter(identity)
    store = IncrementalStore(tmp_path / "output")
    orchestrator = CrawlOrchestrator(
        regions=list(regions),
        genres=[Genre(id=genre, name=f"Genre {genre}") for genre in genres],
        store=store,
        identity=identity,
        reader=reader,
        open_session=sessions,
        progress=ProgressLog(run_id="test", log_path=tmp_path / "progress.jsonl"),
    )
    return orchestrator, identity, reader, sessions, store


def _read(path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_ids_pass_two_regions(tmp_path) -> None:
    orchestrator, identity, _, sessions, store = _build(
        tmp_path,
        ["r1", "r2"],
        ["g1"],
        {"r1": {"g1": [5, 3, 3, 1]}, "r2": {"g1": [1, 4]}},
    )

    report = asyncio.run(orchestrator.acquire_ids())

    assert report.completed is True
    assert report.regions_processed == ["r1", "r2"]
    assert _read(store.region_ids_path("r1")) == [1, 3, 5]
    assert _read(store.region_ids_path("r2")) == [1, 4]
    assert _read(store.ids_path) == [1, 3, 4, 5]
    assert _read(store.availability_path) == {
        "1": ["r1", "r2"],
        "3": ["r1"],
        "4": ["r2"],
        "5": ["r1"],
    }
    assert sessions.opened == ["r1", "r2"]
    assert identity.current is None
    assert not store.cursor_path.exists()


def test_ids_pass_concatenates_genres_within_region(tmp_path) -> None:
    orchestrator, _, reader, sessions, store = _build(
        tmp_path, ["r1"], ["g1", "g2"], {"r1": {"g1": [9, 2], "g2": [2, 7]}}
    )
    asyncio.run(orchestrator.acquire_ids())
    assert reader.id_calls == [("r1", "g1"), ("r1", "g2")]
    assert sessions.opened == ["r1"]
    assert store.load_region_ids("r1") == [2, 7, 9]


def test_unreachable_region_is_skipped_then_retried_alone(tmp_path) -> None:
    catalog = {"r1": {"g1": [1, 2]}, "x": {"g1": [8, 2]}, "r2": {"g1": [3]}}
    orchestrator, identity, reader, _, store = _build(
        tmp_path, ["r1", "x", "r2"], ["g1"], catalog, unreachable={"x"}
    )

    first = asyncio.run(orchestrator.acquire_ids())
    assert first.completed is True
    assert first.regions_skipped == {"x": "connection_failed"}
    assert store.load_region_ids("x") == []
    assert store.load_global_ids() == [1, 2, 3]

    identity.unreachable.clear()
    identity.connects.clear()
    reader.id_calls.clear()

    second = asyncio.run(orchestrator.acquire_ids(["x"]))
    assert identity.connects == ["x"]
    assert reader.id_calls == [("x", "g1")]
    assert second.regions_processed == ["x"]
    assert store.load_region_ids("x") == [2, 8]
    assert store.load_region_ids("r1") == [1, 2]
    assert store.load_global_ids() == [1, 2, 3, 8]
    assert store.load_availability()[2] == ["r1", "x"]


def test_ids_are_never_removed_by_later_runs(tmp_path) -> None:
    catalog = {"r1": {"g1": [1, 2, 3]}}
    orchestrator, _, reader, _, store = _build(tmp_path, ["r1"], ["g1"], catalog)
    asyncio.run(orchestrator.acquire_ids())
    reader.catalog = {"r1": {"g1": [3, 4]}}
    asyncio.run(orchestrator.acquire_ids())
    assert store.load_region_ids("r1") == [1, 2, 3, 4]


def test_interrupted_ids_pass_resumes_to_same_state(tmp_path) -> None:
    regions = ["r1", "r2", "r3"]
    catalog = {"r1": {"g1": [1, 2]}, "r2": {"g1": [2, 5]}, "r3": {"g1": [9]}}

    reference, _, _, _, reference_store = _build(tmp_path / "reference", regions, ["g1"], catalog)
    asyncio.run(reference.acquire_ids())

    orchestrator, identity, reader, _, store = _build(tmp_path / "run", regions, ["g1"], catalog)
    reader.crash_in = "r3"
    with pytest.raises(ProcessKilled):
        asyncio.run(orchestrator.acquire_ids())
    assert identity.current is None
    assert store.load_cursor() == ["r1", "r2"]

    reader.crash_in = None
    reader.id_calls.clear()
    report = asyncio.run(orchestrator.acquire_ids())

    assert reader.id_calls == [("r3", "g1")]
    assert report.regions_skipped == {"r1": "already_done", "r2": "already_done"}
    for name in ("ids.json", "availability.json", "region_ids/r1.json", "region_ids/r2.json", "region_ids/r3.json"):
        assert _read(store.output_dir / name) == _read(reference_store.output_dir / name)
    assert not store.cursor_path.exists()


def test_failed_genre_still_saves_other_genres(tmp_path) -> None:
    orchestrator, _, reader, _, store = _build(
        tmp_path, ["r1"], ["g1", "g2"], {"r1": {"g1": [4], "g2": [6]}}
    )
    reader.fail_genres.add(("r1", "g2"))
    report = asyncio.run(orchestrator.acquire_ids())
    assert report.units_failed == 1
    assert store.load_region_ids("r1") == [4]


def test_titles_pass_fetches_only_missing_and_flushes_each(tmp_path) -> None:
    titles = {
        1: {"id": 1, "name": "One", "duration": "1h 2m"},
        2: {"id": 2, "name": "Two", "duration": "2 Seasons"},
        3: {"id": 3, "name": "Three"},
    }
    orchestrator, identity, reader, sessions, store = _build(
        tmp_path, ["r1", "r2"], ["g1"], {}, titles=titles
    )
    store.extend_region_ids("r1", [1, 2])
    store.extend_region_ids("r2", [2, 3])
    store.save_title(1, titles[1])

    report = asyncio.run(orchestrator.acquire_titles())

    assert reader.title_calls == [2, 3]
    assert sessions.opened == ["r1", "r2"]
    assert report.units_saved == 2
    assert set(_read(store.titles_path)) == {"1", "2", "3"}


def test_titles_pass_with_nothing_missing_never_connects(tmp_path) -> None:
    orchestrator, identity, reader, sessions, store = _build(tmp_path, ["r1", "r2"], ["g1"], {})
    store.extend_region_ids("r1", [1])
    store.save_title(1, {"id": 1, "name": "One"})

    report = asyncio.run(orchestrator.acquire_titles())

    assert identity.connects == []
    assert sessions.opened == []
    assert reader.title_calls == []
    assert report.regions_skipped == {"r1": "nothing_missing", "r2": "nothing_missing"}
    assert report.completed is True


def test_title_failure_is_retried_next_run(tmp_path) -> None:
    orchestrator, _, reader, _, store = _build(
        tmp_path, ["r1"], ["g1"], {}, titles={1: {"id": 1, "name": "One"}}
    )
    store.extend_region_ids("r1", [1, 2])

    first = asyncio.run(orchestrator.acquire_titles())
    assert first.units_failed == 1
    assert set(store.load_titles()) == {1}

    reader.titles[2] = {"id": 2, "name": "Two"}
    reader.title_calls.clear()
    asyncio.run(orchestrator.acquire_titles())
    assert reader.title_calls == [2]


def test_partial_title_still_gets_thumbnail(tmp_path) -> None:
    partial = {"id": 7, "name": "Partial Show", "has_audio_description": False}
    orchestrator, _, reader, _, store = _build(
        tmp_path,
        ["r1"],
        ["g1"],
        {},
        titles={7: partial},
        thumbnails={"Partial Show": {"code": "70", "source": "https://img.test/70.jpg"}},
    )
    store.extend_region_ids("r1", [7])

    asyncio.run(orchestrator.acquire_titles())
    assert "duration" not in store.load_titles()[7]

    report = asyncio.run(orchestrator.acquire_thumbnails())
    assert reader.thumbnail_calls == ["Partial Show"]
    assert report.units_saved == 1
    assert _read(store.thumbnails_path) == {"7": {"code": "70", "source": "https://img.test/70.jpg"}}


def test_thumbnails_skip_ids_without_title_name(tmp_path) -> None:
    orchestrator, identity, reader, sessions, store = _build(tmp_path, ["r1"], ["g1"], {})
    store.extend_region_ids("r1", [1, 2])
    store.save_title(2, {"id": 2, "description": "nameless"})

    report = asyncio.run(orchestrator.acquire_thumbnails())

    assert report.no_name == 2
    assert identity.connects == []
    assert sessions.opened == []
    assert reader.thumbnail_calls == []
    assert store.load_thumbnails() == {}


def test_thumbnail_not_found_is_not_stored(tmp_path) -> None:
    orchestrator, _, reader, _, store = _build(tmp_path, ["r1"], ["g1"], {})
    store.extend_region_ids("r1", [3])
    store.save_title(3, {"id": 3, "name": "Unknown"})

    report = asyncio.run(orchestrator.acquire_thumbnails())

    assert reader.thumbnail_calls == ["Unknown"]
    assert report.units_failed == 1
    assert store.load_thumbnails() == {}


def test_acquire_all_runs_passes_in_order(tmp_path) -> None:
    orchestrator, identity, reader, _, store = _build(
        tmp_path,
        ["r1"],
        ["g1"],
        {"r1": {"g1": [11]}},
        titles={11: {"id": 11, "name": "Eleven"}},
        thumbnails={"Eleven": {"code": "11", "source": "https://img.test/11.jpg"}},
    )

    reports = asyncio.run(orchestrator.acquire_all())

    assert [report.pass_name for report in reports] == ["ids", "titles", "thumbnails"]
    assert all(report.completed for report in reports)
    assert store.load_titles()[11]["name"] == "Eleven"
    assert store.load_thumbnails()[11]["code"] == "11"
    assert identity.current is None


def test_persistence_failure_aborts_pass_and_releases_identity(tmp_path, monkeypatch) -> None:
    orchestrator, identity, _, _, store = _build(tmp_path, ["r1"], ["g1"], {"r1": {"g1": [1]}})

    def broken(region, ids):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "extend_region_ids", broken)
    with pytest.raises(PersistenceError):
        asyncio.run(orchestrator.acquire_ids())
    assert identity.current is None


def test_progress_log_records_region_events(tmp_path) -> None:
    orchestrator, _, _, _, _ = _build(
        tmp_path, ["r1", "x"], ["g1"], {"r1": {"g1": [1]}}, unreachable={"x"}
    )
    asyncio.run(orchestrator.acquire_ids())

    lines = (tmp_path / "progress.jsonl").read_text(encoding="utf-8").splitlines()
    events = [json.loads(line) for line in lines]
    kinds = [event["event"] for event in events]
    assert kinds[0] == "pass_started"
    assert kinds[-1] == "pass_done"
    assert {"event": "region_skipped", "region": "x", "reason": "connection_failed"} in [
        {"event": event["event"], **event["details"]}
        for event in events
        if event["event"] == "region_skipped"
    ]
    assert any(event["event"] == "unit_saved" for event in events)


def test_unknown_regions_are_ignored(tmp_path) -> None:
    orchestrator, identity, _, _, _ = _build(tmp_path, ["r1"], ["g1"], {"r1": {"g1": [1]}})
    report = asyncio.run(orchestrator.acquire_ids(["mars"]))
    assert identity.connects == []
    assert report.regions_processed == []
