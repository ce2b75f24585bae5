"""Step 1 – Fetch the three sources, normalize every row, join by state.

Module: from ingest import load, DataSources
"""

from __future__ import annotations

import asyncio
import csv
import io
import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict

from parse import parse_numeric_field, parse_population
from states import canonicalize

# ---------------------------------------------------------------------------
# Configuration constants (adjust as needed)
# ---------------------------------------------------------------------------

GEOMETRY_URL = "https://cdn.jsdelivr.net/npm/us-atlas@3/states-10m.json"
LANGUAGE_TABLE_PATH = "data/LanguageData_States.csv"
POPULATION_TABLE_PATH = "data/us_statewise_population.csv"
FETCH_TIMEOUT: float = 30.0                 # seconds, per remote source
UNKNOWN_LANGUAGE = "Unknown"

# Language table headers (matched case-insensitively after trimming)
COL_STATE = "State"
COL_LANGUAGE = "Language"
COL_SPEAKERS = "Speakers"
COL_SPEAKERS_MARGIN = "Margin of Error"
COL_LESS_THAN_VERY_WELL = 'Speak English less than "Very Well"'
COL_LESS_THAN_VERY_WELL_MARGIN = "Margin of Error (Speak English Less than Very Well)"

# Population table header aliases, consulted in priority order
POPULATION_NAME_ALIASES: tuple[str, ...] = ("Area", "State", "NAME", "Name", "Geography", "GeographyName")
POPULATION_VALUE_ALIASES: tuple[str, ...] = (
    "2010", "2010 Population", "Pop2010", "POP_2010", "2010 Population Estimate", "2010_est",
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class LoadError(RuntimeError):
    """One of the three sources could not be fetched or parsed."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class DataSources(BaseModel):
    """Where to read each input from: http(s) URL or local path."""
    model_config = ConfigDict(frozen=True)

    geometry: str = GEOMETRY_URL
    languages: str = LANGUAGE_TABLE_PATH
    population: str = POPULATION_TABLE_PATH


class LanguageRecord(BaseModel):
    """One language-table row after canonicalization and numeric parsing."""
    model_config = ConfigDict(frozen=True)

    state_raw: str | None
    state: str                                    # canonical name
    language: str
    speakers: float | None = None
    speakers_margin: float | None = None
    less_than_very_well: float | None = None
    less_than_very_well_margin: float | None = None
    source_row_index: int = 0                     # 1-based row number, header is row 1


class Dataset(BaseModel):
    """Read-only snapshot every aggregation query runs against."""
    model_config = ConfigDict(frozen=True)

    geometry: dict
    records: tuple[LanguageRecord, ...]
    language_by_state: dict[str, tuple[LanguageRecord, ...]]
    population_by_state: dict[str, int]
    nationwide_population: int | None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_url(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def _lookup(row: Mapping[str, object], column: str) -> object:
    """Fetch ``column`` from ``row`` ignoring header case and padding."""
    if column in row:
        return row[column]
    wanted = column.strip().lower()
    for key, value in row.items():
        if key is not None and key.strip().lower() == wanted:
            return value
    return None


def _first_present(row: Mapping[str, object], aliases: Iterable[str]) -> object:
    """Value of the first alias whose cell is non-empty, else None."""
    for alias in aliases:
        value = _lookup(row, alias)
        if value is not None and str(value).strip() != "":
            return value
    return None


def _read_csv(payload: bytes) -> list[dict]:
    reader = csv.DictReader(io.StringIO(payload.decode("utf-8-sig")))
    if reader.fieldnames:
        reader.fieldnames = [name.strip() for name in reader.fieldnames]
    return list(reader)


def _read_xlsx(payload: bytes) -> list[dict]:
    """Read the first worksheet and return rows as dicts keyed by header name."""
    import openpyxl

    wb = openpyxl.load_workbook(io.BytesIO(payload), read_only=True, data_only=True)
    try:
        ws = wb.worksheets[0]
        rows_iter = ws.iter_rows(values_only=True)
        try:
            header = [str(cell).strip() if cell is not None else "" for cell in next(rows_iter)]
        except StopIteration:
            return []
        return [dict(zip(header, row)) for row in rows_iter]
    finally:
        wb.close()


def _parse_table(payload: bytes, location: str) -> list[dict]:
    if location.lower().endswith(".xlsx"):
        return _read_xlsx(payload)
    return _read_csv(payload)


def _parse_geometry(payload: bytes, location: str) -> dict:
    document = json.loads(payload)
    if not isinstance(document, dict):
        raise ValueError(f"expected a JSON object, got {type(document).__name__}")
    return document


async def _read_bytes(location: str, client: httpx.AsyncClient) -> bytes:
    if _is_url(location):
        response = await client.get(location)
        response.raise_for_status()
        return response.content
    return await asyncio.to_thread(Path(location).read_bytes)


async def _fetch(source: str, location: str, client: httpx.AsyncClient, parser) -> object:
    logger.info("ingest: fetching %s from %s", source, location)
    try:
        payload = await _read_bytes(location, client)
        return parser(payload, location)
    except Exception as exc:
        raise LoadError(source, f"failed to load {location}: {exc}") from exc


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------


def language_record_from_row(row: Mapping[str, object], row_index: int = 0) -> LanguageRecord:
    """Normalize one raw language-table row."""
    state_raw = _lookup(row, COL_STATE)
    language = _lookup(row, COL_LANGUAGE)
    language = str(language).strip() if language is not None else ""
    return LanguageRecord(
        state_raw=str(state_raw) if state_raw is not None else None,
        state=canonicalize(state_raw),
        language=language or UNKNOWN_LANGUAGE,
        speakers=parse_numeric_field(_lookup(row, COL_SPEAKERS)),
        speakers_margin=parse_numeric_field(_lookup(row, COL_SPEAKERS_MARGIN)),
        less_than_very_well=parse_numeric_field(_lookup(row, COL_LESS_THAN_VERY_WELL)),
        less_than_very_well_margin=parse_numeric_field(_lookup(row, COL_LESS_THAN_VERY_WELL_MARGIN)),
        source_row_index=row_index,
    )


def build_language_by_state(records: Iterable[LanguageRecord]) -> dict[str, tuple[LanguageRecord, ...]]:
    """Group records under their canonical state, keeping input order."""
    grouped: dict[str, list[LanguageRecord]] = {}
    for record in records:
        grouped.setdefault(record.state, []).append(record)
    return {state: tuple(rows) for state, rows in grouped.items()}


def build_population_by_state(rows: Iterable[Mapping[str, object]]) -> dict[str, int]:
    """Canonical state → population, from the first usable alias columns.

    Rows with no name or an unparseable / negative population are skipped.
    A later row for the same state overwrites an earlier one.
    """
    population: dict[str, int] = {}
    for i, row in enumerate(rows, start=2):
        raw_name = _first_present(row, POPULATION_NAME_ALIASES)
        if raw_name is None:
            logger.info("ingest: population row %d has no state name. Skipped.", i)
            continue
        name = canonicalize(raw_name)
        value = parse_population(_first_present(row, POPULATION_VALUE_ALIASES))
        if value is None:
            logger.info("ingest: population row %d (%s) has no usable 2010 value. Skipped.", i, name)
            continue
        if name in population and population[name] != value:
            logger.info("ingest: population for %s overwritten: %d → %d", name, population[name], value)
        population[name] = value
    return population


def nationwide_population(population_by_state: Mapping[str, int]) -> int | None:
    """Sum of every known state population; None when nothing is known."""
    if not population_by_state:
        return None
    return sum(population_by_state.values())


def geometry_features(topology: Mapping | None, object_name: str = "states") -> list[dict]:
    """The state shapes of a TopoJSON topology (or a GeoJSON collection).

    Arcs are not decoded; each geometry is passed through with its ``id``
    and ``properties`` for the drawing layer.
    """
    if not topology:
        return []
    if topology.get("type") == "FeatureCollection":
        return list(topology.get("features") or [])
    obj = (topology.get("objects") or {}).get(object_name) or {}
    return list(obj.get("geometries") or [])


def build_dataset(
    geometry: dict,
    language_rows: Iterable[Mapping[str, object]],
    population_rows: Iterable[Mapping[str, object]],
) -> Dataset:
    """Normalize and join already-fetched sources into a snapshot."""
    records = tuple(language_record_from_row(row, i) for i, row in enumerate(language_rows, start=2))
    language_by_state = build_language_by_state(records)
    population_by_state = build_population_by_state(population_rows)

    unknown = [s for s in language_by_state if s not in population_by_state]
    if unknown:
        logger.info("ingest: %d state keys without population: %s", len(unknown), sorted(unknown))

    logger.info(
        "ingest: %d language records across %d states; population known for %d states",
        len(records), len(language_by_state), len(population_by_state),
    )
    return Dataset(
        geometry=geometry,
        records=records,
        language_by_state=language_by_state,
        population_by_state=population_by_state,
        nationwide_population=nationwide_population(population_by_state),
    )


# ---------------------------------------------------------------------------
# Public entry-point
# ---------------------------------------------------------------------------


async def load(sources: DataSources | None = None, client: httpx.AsyncClient | None = None) -> Dataset:
    """Fetch geometry, language table, and population table concurrently.

    Raises:
        LoadError: if any source fails.  The remaining fetches are cancelled
            and no partial dataset is returned.
    """
    sources = sources or DataSources()
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=FETCH_TIMEOUT, follow_redirects=True)

    try:
        tasks = [
            asyncio.ensure_future(_fetch("geometry", sources.geometry, client, _parse_geometry)),
            asyncio.ensure_future(_fetch("languages", sources.languages, client, _parse_table)),
            asyncio.ensure_future(_fetch("population", sources.population, client, _parse_table)),
        ]
        try:
            geometry, language_rows, population_rows = await asyncio.gather(*tasks)
        except LoadError as exc:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.error("ingest: load aborted: %s", exc)
            raise
    finally:
        if owns_client:
            await client.aclose()

    logger.info(
        "ingest: %d language rows, %d population rows read",
        len(language_rows), len(population_rows),
    )
    return build_dataset(geometry, language_rows, population_rows)
