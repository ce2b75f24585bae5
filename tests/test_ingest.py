"""Tests for ingest.py – record normalization, joins, and the concurrent load."""

import asyncio
import csv
import io
import sys
from pathlib import Path

import httpx
import openpyxl
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from conftest import LANGUAGE_ROWS, LTVW, LTVW_MOE, POPULATION_ROWS, TOPOLOGY  # noqa: E402
from ingest import (  # noqa: E402
    DataSources,
    LoadError,
    build_language_by_state,
    build_population_by_state,
    geometry_features,
    language_record_from_row,
    load,
    nationwide_population,
)


# ---------------------------------------------------------------------------
# Record normalization
# ---------------------------------------------------------------------------


class TestLanguageRecord:
    def test_fields_parsed(self):
        record = language_record_from_row(LANGUAGE_ROWS[0], row_index=2)
        assert record.state == "California"
        assert record.state_raw == "CA"
        assert record.language == "Spanish"
        assert record.speakers == 1_000_000
        assert record.less_than_very_well == 400_000
        assert record.less_than_very_well_margin == 3
        assert record.source_row_index == 2

    def test_unparseable_fields_are_none(self):
        record = language_record_from_row(LANGUAGE_ROWS[4])
        assert record.speakers is None
        assert record.less_than_very_well is None

    def test_header_case_and_padding_ignored(self):
        record = language_record_from_row({" state ": "ny", "LANGUAGE": "Yiddish", "speakers": "10"})
        assert record.state == "New York"
        assert record.language == "Yiddish"
        assert record.speakers == 10

    def test_missing_language_is_unknown(self):
        assert language_record_from_row({"State": "NY", "Language": " "}).language == "Unknown"

    def test_records_are_immutable(self):
        record = language_record_from_row(LANGUAGE_ROWS[0])
        with pytest.raises(Exception):
            record.speakers = 1.0


class TestLanguageByState:
    def test_code_and_name_share_a_key(self):
        records = [language_record_from_row(r) for r in LANGUAGE_ROWS]
        grouped = build_language_by_state(records)
        assert [r.language for r in grouped["California"]] == ["Spanish", "English"]
        assert [r.language for r in grouped["Texas"]] == ["Spanish", "Vietnamese", "Navajo"]

    def test_unrecognized_state_keeps_its_own_key(self):
        grouped = build_language_by_state(language_record_from_row(r) for r in LANGUAGE_ROWS)
        assert [r.language for r in grouped["Atlantis"]] == ["Atlantean"]


# ---------------------------------------------------------------------------
# Population join
# ---------------------------------------------------------------------------


class TestPopulationByState:
    def test_basic(self):
        assert build_population_by_state(POPULATION_ROWS) == {"California": 37253956, "Texas": 25145561}

    def test_alias_priority(self):
        rows = [{"Area": "Ohio", "State": "Iowa", "2010 Population": "11,536,504", "Pop2010": "1"}]
        assert build_population_by_state(rows) == {"Ohio": 11536504}

    def test_empty_alias_falls_through(self):
        rows = [{"Area": "", "NAME": "Utah", "2010": "", "POP_2010": "2763885"}]
        assert build_population_by_state(rows) == {"Utah": 2763885}

    def test_name_is_canonicalized(self):
        assert build_population_by_state([{"State": "wy", "2010": "563626"}]) == {"Wyoming": 563626}

    def test_later_row_overwrites(self):
        rows = [{"Area": "Maine", "2010": "1"}, {"Area": "ME", "2010": "1,328,361"}]
        assert build_population_by_state(rows) == {"Maine": 1328361}

    def test_bad_rows_skipped(self):
        rows = [
            {"Area": "Maine", "2010": "n/a"},
            {"Area": "Vermont", "2010": "-3"},
            {"Area": "", "2010": "100"},
            {"Other": "x"},
        ]
        assert build_population_by_state(rows) == {}

    def test_nationwide_population(self):
        assert nationwide_population({"A": 2, "B": 3}) == 5
        assert nationwide_population({}) is None


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class TestBuildDataset:
    def test_joined_snapshot(self, dataset):
        assert len(dataset.records) == len(LANGUAGE_ROWS)
        assert set(dataset.language_by_state) == {"California", "Texas", "Atlantis"}
        assert dataset.nationwide_population == 37253956 + 25145561

    def test_unrecognized_state_has_no_population(self, dataset):
        assert "Atlantis" in dataset.language_by_state
        assert dataset.population_by_state.get("Atlantis") is None

    def test_geometry_features_topology(self):
        features = geometry_features(TOPOLOGY)
        assert [f["id"] for f in features] == ["06", "48", "36"]

    def test_geometry_features_geojson(self):
        collection = {"type": "FeatureCollection", "features": [{"id": "01"}]}
        assert geometry_features(collection) == [{"id": "01"}]

    def test_geometry_features_missing_object(self):
        assert geometry_features({"type": "Topology", "objects": {}}) == []
        assert geometry_features(None) == []


# ---------------------------------------------------------------------------
# load()
# ---------------------------------------------------------------------------


class TestLoadLocal:
    def test_local_files(self, source_files):
        dataset = asyncio.run(load(DataSources(**source_files)))
        assert set(dataset.language_by_state) == {"California", "Texas", "Atlantis"}
        assert dataset.population_by_state["Texas"] == 25145561
        assert dataset.geometry["type"] == "Topology"

    def test_xlsx_population_table(self, source_files, tmp_path):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(["Area ", "2010"])
        ws.append(["California", 37253956])
        ws.append(["Texas", "25,145,561"])
        xlsx_path = tmp_path / "population.xlsx"
        wb.save(str(xlsx_path))

        sources = DataSources(**{**source_files, "population": str(xlsx_path)})
        dataset = asyncio.run(load(sources))
        assert dataset.population_by_state == {"California": 37253956, "Texas": 25145561}

    def test_missing_file_raises_single_load_error(self, source_files, tmp_path):
        sources = DataSources(**{**source_files, "population": str(tmp_path / "missing.csv")})
        with pytest.raises(LoadError) as excinfo:
            asyncio.run(load(sources))
        assert excinfo.value.source == "population"
        assert isinstance(excinfo.value.__cause__, FileNotFoundError)

    def test_invalid_geometry_json(self, source_files, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("[1, 2, 3]")
        with pytest.raises(LoadError) as excinfo:
            asyncio.run(load(DataSources(**{**source_files, "geometry": str(bad)})))
        assert excinfo.value.source == "geometry"


def _mock_client(routes: dict[str, httpx.Response]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        return routes.get(str(request.url), httpx.Response(404))

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestLoadRemote:
    GEOMETRY = "https://example.test/states-10m.json"
    LANGUAGES = "https://example.test/languages.csv"
    POPULATION = "https://example.test/population.csv"

    def _csv(self, rows: list[dict]) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
        return buffer.getvalue()

    def _sources(self) -> DataSources:
        return DataSources(geometry=self.GEOMETRY, languages=self.LANGUAGES, population=self.POPULATION)

    def test_all_remote(self):
        routes = {
            self.GEOMETRY: httpx.Response(200, json=TOPOLOGY),
            self.LANGUAGES: httpx.Response(200, text=self._csv(LANGUAGE_ROWS)),
            self.POPULATION: httpx.Response(200, text=self._csv(POPULATION_ROWS)),
        }

        async def run():
            async with _mock_client(routes) as client:
                return await load(self._sources(), client=client)

        dataset = asyncio.run(run())
        assert dataset.language_by_state["California"][0].speakers == 1_000_000
        assert dataset.nationwide_population == 37253956 + 25145561
        record = dataset.language_by_state["California"][0]
        assert record.less_than_very_well == 400_000

    def test_http_error_aborts_load(self):
        routes = {
            self.GEOMETRY: httpx.Response(500),
            self.LANGUAGES: httpx.Response(200, text=self._csv(LANGUAGE_ROWS)),
            self.POPULATION: httpx.Response(200, text=self._csv(POPULATION_ROWS)),
        }

        async def run():
            async with _mock_client(routes) as client:
                return await load(self._sources(), client=client)

        with pytest.raises(LoadError) as excinfo:
            asyncio.run(run())
        assert excinfo.value.source == "geometry"
        assert isinstance(excinfo.value.__cause__, httpx.HTTPStatusError)


class TestHeaderConstants:
    def test_fixture_uses_the_expected_headers(self):
        # The fixture rows and the loader agree on the long header names.
        record = language_record_from_row({"State": "CA", "Language": "x", LTVW: "7", LTVW_MOE: "2"})
        assert record.less_than_very_well == 7
        assert record.less_than_very_well_margin == 2
