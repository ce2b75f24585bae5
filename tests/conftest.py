"""Shared fixtures for pipeline tests."""

import csv
import json
import sys
from pathlib import Path

import pytest

# Ensure repo root is on sys.path so imports like `import states` work
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ingest import Dataset, build_dataset  # noqa: E402

LTVW = 'Speak English less than "Very Well"'
LTVW_MOE = "Margin of Error (Speak English Less than Very Well)"

LANGUAGE_ROWS: list[dict] = [
    {"State": "CA", "Language": "Spanish", "Speakers": "1,000,000", LTVW: "400,000", LTVW_MOE: "3"},
    {"State": "California", "Language": "English", "Speakers": "5,000,000", LTVW: "", LTVW_MOE: "4"},
    {"State": "Texas", "Language": "Spanish", "Speakers": "2,000", LTVW: "500", LTVW_MOE: "(x)"},
    {"State": "tx", "Language": "Vietnamese", "Speakers": "1000-2000", LTVW: "100", LTVW_MOE: "N/A"},
    {"State": "Texas", "Language": "Navajo", "Speakers": "N/A", LTVW: "", LTVW_MOE: ""},
    {"State": "Atlantis", "Language": "Atlantean", "Speakers": "<500", LTVW: "50", LTVW_MOE: ""},
]

POPULATION_ROWS: list[dict] = [
    {"Area": "California", "2010": "37,253,956"},
    {"Area": "Texas", "2010": "25,145,561"},
]

TOPOLOGY: dict = {
    "type": "Topology",
    "objects": {
        "states": {
            "type": "GeometryCollection",
            "geometries": [
                {"type": "Polygon", "arcs": [[0]], "id": "06", "properties": {"name": "California"}},
                {"type": "Polygon", "arcs": [[1]], "id": "48", "properties": {}},
                {"type": "Polygon", "arcs": [[2]], "id": "36", "properties": {"name": "New York"}},
            ],
        },
    },
    "arcs": [],
}


@pytest.fixture
def dataset() -> Dataset:
    """California, Texas (by code and name), and an unrecognized 'Atlantis'."""
    return build_dataset(TOPOLOGY, LANGUAGE_ROWS, POPULATION_ROWS)


@pytest.fixture
def source_files(tmp_path: Path) -> dict[str, str]:
    """The fixture tables written to disk as the loader reads them."""
    geometry_path = tmp_path / "states-10m.json"
    geometry_path.write_text(json.dumps(TOPOLOGY))
    language_path = tmp_path / "languages.csv"
    _write_csv(str(language_path), LANGUAGE_ROWS)
    population_path = tmp_path / "population.csv"
    _write_csv(str(population_path), POPULATION_ROWS)
    return {
        "geometry": str(geometry_path),
        "languages": str(language_path),
        "population": str(population_path),
    }


def _write_csv(path: str, rows: list[dict]) -> None:
    with open(path, "w", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
