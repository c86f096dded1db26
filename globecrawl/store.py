"""Incremental, append-only JSON state for regional id sets, titles and thumbnails."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any, Iterable, Mapping

from globecrawl.errors import PersistenceError, StoreCorruptError
from globecrawl.logging_config import get_logger
from globecrawl.models import ItemId, ItemRecord, Region

LOGGER = get_logger(__name__)

IDS_FILE = "ids.json"
TITLES_FILE = "titles.json"
THUMBNAILS_FILE = "thumbnails.json"
AVAILABILITY_FILE = "availability.json"
CURSOR_FILE = "ids_cursor.json"
REGION_IDS_DIR = "region_ids"


def clean_id_set(ids: Iterable[Any]) -> list[ItemId]:
    """Return ``ids`` deduplicated and sorted ascending.

    Every id collection passes through here before it is persisted.
    """

    return sorted({int(item_id) for item_id in ids})


def missing_against(
    region_ids: Iterable[ItemId], reference_map: Mapping[ItemId, Any]
) -> list[ItemId]:
    """Return the ids absent from ``reference_map``, keeping their input order."""

    return [item_id for item_id in region_ids if item_id not in reference_map]


def merge_availability(
    region_id_sets: Mapping[Region, Iterable[ItemId]],
) -> dict[ItemId, list[Region]]:
    """Rebuild the availability map from scratch.

    Regions are appended in the mapping's iteration order, so callers pass
    region id sets in the configured region order.
    """

    availability: dict[ItemId, list[Region]] = {}
    for region, ids in region_id_sets.items():
        for item_id in ids:
            regions = availability.setdefault(int(item_id), [])
            if region not in regions:
                regions.append(region)
    return availability


def merge_record(existing: Mapping[str, Any] | None, fresh: Mapping[str, Any]) -> ItemRecord:
    """Overlay freshly scraped fields onto a stored record without clearing any."""

    merged: ItemRecord = dict(existing or {})
    for key, value in fresh.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def _encode_map(data: Mapping[ItemId, Any]) -> dict[str, Any]:
    return {str(key): data[key] for key in sorted(data)}


def _decode_map(raw: Any, path: Path) -> dict[ItemId, Any]:
    if not isinstance(raw, dict):
        raise StoreCorruptError(f"Expected a JSON object in {path}")
    try:
        return {int(key): value for key, value in raw.items()}
    except ValueError as exc:
        raise StoreCorruptError(f"Non-numeric id key in {path}: {exc}") from exc


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write ``payload`` as compact JSON via a temp file + ``os.replace``."""

    tmp_name: str | None = None
    try:
        os.makedirs(path.parent, exist_ok=True)
        with NamedTemporaryFile(
            mode="w", encoding="utf-8", dir=str(path.parent), delete=False
        ) as handle:
            tmp_name = handle.name
            json.dump(payload, handle, ensure_ascii=False, separators=(",", ":"))
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc


def read_json(path: Path, default: Any) -> Any:
    """Load JSON from ``path``; a missing file yields ``default``."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)
    except FileNotFoundError:
        return default
    except json.JSONDecodeError as exc:
        raise StoreCorruptError(f"Snapshot {path} is not valid JSON: {exc}") from exc
    except OSError as exc:
        raise PersistenceError(f"Failed to read {path}: {exc}") from exc


class IncrementalStore:
    """Durable crawl state under a single output directory.

    Every ``save_*`` / ``extend_*`` / ``rebuild_*`` call flushes to disk before
    returning, so an interrupted run loses at most the unit in flight.
    """

    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)
        self._titles: dict[ItemId, ItemRecord] | None = None
        self._thumbnails: dict[ItemId, dict[str, str]] | None = None

    # -- paths -----------------------------------------------------------

    @property
    def ids_path(self) -> Path:
        return self.output_dir / IDS_FILE

    @property
    def titles_path(self) -> Path:
        return self.output_dir / TITLES_FILE

    @property
    def thumbnails_path(self) -> Path:
        return self.output_dir / THUMBNAILS_FILE

    @property
    def availability_path(self) -> Path:
        return self.output_dir / AVAILABILITY_FILE

    @property
    def cursor_path(self) -> Path:
        return self.output_dir / CURSOR_FILE

    def region_ids_path(self, region: Region) -> Path:
        return self.output_dir / REGION_IDS_DIR / f"{region}.json"

    # -- id sets ---------------------------------------------------------

    def _load_id_list(self, path: Path) -> list[ItemId]:
        raw = read_json(path, [])
        if not isinstance(raw, list):
            raise StoreCorruptError(f"Expected a JSON array in {path}")
        try:
            return clean_id_set(raw)
        except (TypeError, ValueError) as exc:
            raise StoreCorruptError(f"Non-numeric id in {path}: {exc}") from exc

    def load_region_ids(self, region: Region) -> list[ItemId]:
        return self._load_id_list(self.region_ids_path(region))

    def save_region_ids(self, region: Region, ids: Iterable[ItemId]) -> list[ItemId]:
        cleaned = clean_id_set(ids)
        write_json_atomic(self.region_ids_path(region), cleaned)
        return cleaned

    def extend_region_ids(self, region: Region, ids: Iterable[ItemId]) -> list[ItemId]:
        """Union ``ids`` into the region snapshot; ids already stored are never dropped."""

        existing = self.load_region_ids(region)
        stored = self.save_region_ids(region, [*existing, *ids])
        LOGGER.info(
            "Saved region ids | region=%s total=%d new=%d",
            region,
            len(stored),
            len(stored) - len(existing),
        )
        return stored

    def load_global_ids(self) -> list[ItemId]:
        return self._load_id_list(self.ids_path)

    def rebuild_global_ids(self, regions: Iterable[Region]) -> list[ItemId]:
        combined: list[ItemId] = list(self.load_global_ids())
        for region in regions:
            combined.extend(self.load_region_ids(region))
        cleaned = clean_id_set(combined)
        write_json_atomic(self.ids_path, cleaned)
        LOGGER.info("Saved global ids | total=%d", len(cleaned))
        return cleaned

    # -- records ---------------------------------------------------------

    def load_titles(self) -> dict[ItemId, ItemRecord]:
        if self._titles is None:
            self._titles = _decode_map(read_json(self.titles_path, {}), self.titles_path)
        return self._titles

    def save_title(self, item_id: ItemId, record: Mapping[str, Any]) -> ItemRecord:
        titles = self.load_titles()
        merged = merge_record(titles.get(item_id), record)
        titles[item_id] = merged
        write_json_atomic(self.titles_path, _encode_map(titles))
        return merged

    def title_name(self, item_id: ItemId) -> str | None:
        record = self.load_titles().get(item_id) or {}
        name = record.get("name")
        if isinstance(name, str) and name.strip():
            return name
        return None

    def load_thumbnails(self) -> dict[ItemId, dict[str, str]]:
        if self._thumbnails is None:
            self._thumbnails = _decode_map(
                read_json(self.thumbnails_path, {}), self.thumbnails_path
            )
        return self._thumbnails

    def save_thumbnail(self, item_id: ItemId, thumbnail: Mapping[str, str]) -> None:
        thumbnails = self.load_thumbnails()
        thumbnails[item_id] = {"code": thumbnail["code"], "source": thumbnail["source"]}
        write_json_atomic(self.thumbnails_path, _encode_map(thumbnails))

    # -- availability ----------------------------------------------------

    def load_availability(self) -> dict[ItemId, list[Region]]:
        return _decode_map(read_json(self.availability_path, {}), self.availability_path)

    def rebuild_availability(self, regions: Iterable[Region]) -> dict[ItemId, list[Region]]:
        region_id_sets = {region: self.load_region_ids(region) for region in regions}
        availability = merge_availability(region_id_sets)
        write_json_atomic(self.availability_path, _encode_map(availability))
        LOGGER.info("Saved availability | ids=%d", len(availability))
        return availability

    # -- ids-pass resume cursor -----------------------------------------

    def load_cursor(self) -> list[Region]:
        """Return regions already flushed by an unfinished ids pass."""

        raw = read_json(self.cursor_path, {})
        if not isinstance(raw, dict):
            return []
        completed = raw.get("completed") or []
        return [str(region) for region in completed]

    def save_cursor(self, completed: Iterable[Region]) -> None:
        payload = {
            "completed": list(completed),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        write_json_atomic(self.cursor_path, payload)

    def clear_cursor(self) -> None:
        try:
            self.cursor_path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise PersistenceError(f"Failed to remove {self.cursor_path}: {exc}") from exc
