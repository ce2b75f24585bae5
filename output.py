"""Step 3 – Turn (dataset, interaction state) into chart payloads and write them.

Every ``render_*`` handler is a pure command: same dataset and same
InteractionState in, equal payload out.  The drawing layer owns pixels;
these payloads are all it reads.

Standalone use goes through main.py.
Module:     from output import InteractionState, render_all, run_output
"""

from __future__ import annotations

import csv
import functools
import json
import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, ConfigDict

import aggregate
import states as states_module
from ingest import Dataset, geometry_features

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No data available"
NO_STATE_LANGUAGES_MESSAGE = "No language data available for this state."
OUTPUT_DIR = "viz_data"

# ---------------------------------------------------------------------------
# Interaction state
# ---------------------------------------------------------------------------


class InteractionState(BaseModel):
    """What the user has picked.  Handlers read it; only helpers below replace it."""
    model_config = ConfigDict(frozen=True)

    selected_state: str | None = None             # None → nationwide
    search_text: str = ""
    include_english: bool = True                  # bar chart checkboxes
    include_spanish: bool = True


def select_state(state: InteractionState, raw_name: str | None) -> InteractionState:
    """Click on the map or dropdown change.  Empty selection means nationwide."""
    if raw_name is None or not str(raw_name).strip():
        return clear_selection(state)
    return state.model_copy(update={"selected_state": states_module.canonicalize(raw_name)})


def clear_selection(state: InteractionState) -> InteractionState:
    return state.model_copy(update={"selected_state": None})


def set_search(state: InteractionState, text: str | None) -> InteractionState:
    return state.model_copy(update={"search_text": (text or "").strip()})


def toggle_language(state: InteractionState, language: str, checked: bool) -> InteractionState:
    """Bar-chart checkbox change.  Only English and Spanish have checkboxes."""
    if language == "English":
        return state.model_copy(update={"include_english": checked})
    if language == "Spanish":
        return state.model_copy(update={"include_spanish": checked})
    raise ValueError(f"no checkbox for language {language!r}")


def bar_exclusions(state: InteractionState) -> frozenset[str]:
    excluded = set()
    if not state.include_english:
        excluded.add("English")
    if not state.include_spanish:
        excluded.add("Spanish")
    return frozenset(excluded)


# ---------------------------------------------------------------------------
# View handlers
# ---------------------------------------------------------------------------


def _no_data(message: str = NO_DATA_MESSAGE) -> dict:
    return {"status": "no_data", "message": message}


def _degrades_to_no_data(handler):
    """A view that fails shows a placeholder instead of taking the page down."""

    @functools.wraps(handler)
    def wrapper(dataset: Dataset, state: InteractionState) -> dict:
        try:
            return handler(dataset, state)
        except Exception:
            logger.exception("output: %s failed; rendering placeholder", handler.__name__)
            return _no_data()

    return wrapper


def _matches_search(name: str, search_text: str) -> bool:
    return bool(search_text) and search_text.lower() in name.lower()


@_degrades_to_no_data
def render_map(dataset: Dataset, state: InteractionState) -> dict:
    """Choropleth of distinct languages per state, plus its legend domain."""
    counts = aggregate.diversity_by_state(dataset)
    domain_min, domain_max = aggregate.value_domain(counts.values())
    shapes = []
    for feature in geometry_features(dataset.geometry):
        name = states_module.feature_state_name(feature)
        shapes.append({
            "id": feature.get("id"),
            "state": name,
            "language_count": counts.get(name),
            "selected": name == state.selected_state,
            "highlighted": _matches_search(name, state.search_text),
        })
    return {
        "status": "ok",
        "title": "Map representing the amount of languages spoken by state",
        "domain": [domain_min, domain_max],
        "shapes": shapes,
    }


def _pie(totals: dict[str, float], population: float | None, caption: str, exclude=None) -> dict:
    slices = aggregate.shares_with_other_bucket(totals, population, exclude)
    if not slices:
        return _no_data()
    return {
        "status": "ok",
        "caption": caption,
        "population_used": population,
        "slices": [s.model_dump() for s in slices],
    }


@_degrades_to_no_data
def render_pies(dataset: Dataset, state: InteractionState) -> dict:
    """Language shares of the population, with and without English."""
    selected = state.selected_state
    totals = aggregate.language_totals(dataset, selected)
    if selected is None:
        population = dataset.nationwide_population
    else:
        population = dataset.population_by_state.get(selected)
    population = population or dataset.nationwide_population or sum(totals.values())

    scope = selected or "Nationwide"
    return {
        "with_english": _pie(
            totals, population, f"{scope}: language shares (by 2010 population)",
        ),
        "without_english": _pie(
            totals, population, f"{scope}: excluding English (shares among non-English)", exclude={"English"},
        ),
    }


@_degrades_to_no_data
def render_bar_chart(dataset: Dataset, state: InteractionState) -> dict:
    excluded = bar_exclusions(state)
    rows = aggregate.top_languages(dataset, exclude=excluded)
    if not rows:
        return _no_data()
    return {
        "status": "ok",
        "excluded": sorted(excluded),
        "bars": [{"language": r.language, "total": r.total_speakers} for r in rows],
    }


@_degrades_to_no_data
def render_dot_plot(dataset: Dataset, state: InteractionState) -> dict:
    points = aggregate.coverage_points(dataset)
    if not points:
        return _no_data()
    return {
        "status": "ok",
        "x_max": max(p.states_present for p in points),
        "y_max": max(p.total_speakers for p in points),
        "points": [
            {"language": p.language, "states": p.states_present, "total": p.total_speakers}
            for p in points
        ],
    }


def _known_state_diversity(dataset: Dataset) -> list[int]:
    counts = aggregate.diversity_by_state(dataset)
    return [count for name, count in counts.items() if states_module.is_known_state(name)]


@_degrades_to_no_data
def render_histogram(dataset: Dataset, state: InteractionState) -> dict:
    counts = _known_state_diversity(dataset)
    if not counts:
        return _no_data()
    selected_count = None
    if state.selected_state is not None:
        selected_count = aggregate.language_diversity_count(dataset, state.selected_state)
    return {
        "status": "ok",
        "bins": [b.model_dump() for b in aggregate.histogram(counts)],
        "selected_state": state.selected_state,
        "selected_count": selected_count,
    }


@_degrades_to_no_data
def render_box_plot(dataset: Dataset, state: InteractionState) -> dict:
    box = aggregate.box_plot(_known_state_diversity(dataset))
    if box is None:
        return _no_data()
    return {"status": "ok", **box.model_dump()}


@_degrades_to_no_data
def render_state_panel(dataset: Dataset, state: InteractionState) -> dict:
    """Side panel for the clicked state: summary numbers and its language table."""
    selected = state.selected_state
    summary = aggregate.state_aggregate(dataset, selected)
    panel = {
        "status": "ok",
        "state": selected or "Nationwide",
        "language_count": summary.language_count,
        "population": summary.population,
        "less_than_very_well": summary.less_than_very_well,
        "less_than_very_well_rms_margin": summary.rms_margin,
        "english_proficiency_pct": aggregate.english_proficiency_proportion(dataset, selected),
    }
    if selected is None:
        panel["languages"] = [{"language": lang, "speakers": n} for lang, n in summary.languages]
        return panel

    rows = aggregate.state_language_table(dataset, selected)
    if not rows:
        panel["message"] = NO_STATE_LANGUAGES_MESSAGE
    panel["languages"] = [{"language": lang, "speakers": n} for lang, n in rows]
    return panel


@_degrades_to_no_data
def search_states(dataset: Dataset, state: InteractionState) -> dict:
    options = aggregate.state_options(dataset)
    if state.search_text:
        options = [name for name in options if _matches_search(name, state.search_text)]
    return {"status": "ok", "query": state.search_text, "options": options}


VIEWS = {
    "map": render_map,
    "pies": render_pies,
    "bar": render_bar_chart,
    "dots": render_dot_plot,
    "histogram": render_histogram,
    "box_plot": render_box_plot,
    "state_panel": render_state_panel,
    "search": search_states,
}


def render_all(dataset: Dataset, state: InteractionState | None = None) -> dict[str, dict]:
    """Every view's payload for one interaction state."""
    state = state or InteractionState()
    return {name: handler(dataset, state) for name, handler in VIEWS.items()}


# ---------------------------------------------------------------------------
# CSV / JSON writers
# ---------------------------------------------------------------------------


def _write_csv(filepath: str, rows: list[dict], fieldnames: list[str]) -> None:
    Path(filepath).parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)
    logger.info("output: wrote %s (%d rows)", filepath, len(rows))


def _write_json(filepath: str, data: dict | list) -> None:
    Path(filepath).parent.mkdir(parents=True, exist_ok=True)
    Path(filepath).write_text(json.dumps(data, indent=2))
    logger.info("output: wrote %s (%d entries)", filepath, len(data))


STATE_TABLE_FIELDS = [
    "state", "usps_code", "fips_code", "census_region", "census_division",
    "language_count", "population", "less_than_very_well", "less_than_very_well_rms_margin",
    "english_proficiency_pct",
]


def state_table_rows(dataset: Dataset) -> list[dict]:
    """One row per state key in the language table, alphabetically."""
    rows: list[dict] = []
    for name in sorted(dataset.language_by_state, key=str.lower):
        ref = states_module.get_state_by_name(name) or {}
        summary = aggregate.state_aggregate(dataset, name)
        rows.append({
            "state": name,
            "usps_code": ref.get("usps_code", ""),
            "fips_code": ref.get("fips_code", ""),
            "census_region": ref.get("census_region", ""),
            "census_division": ref.get("census_division", ""),
            "language_count": summary.language_count,
            "population": summary.population if summary.population is not None else "",
            "less_than_very_well": f"{summary.less_than_very_well:.0f}",
            "less_than_very_well_rms_margin": f"{summary.rms_margin:.1f}",
            "english_proficiency_pct": f"{aggregate.english_proficiency_proportion(dataset, name):.2f}",
        })
    return rows


# ---------------------------------------------------------------------------
# Core logic
# ---------------------------------------------------------------------------


def run_output(
    dataset: Dataset,
    state: InteractionState | None = None,
    run_id: str | None = None,
    output_dir: str = OUTPUT_DIR,
) -> dict[str, str]:
    """Render every view and write payloads plus the per-state CSV.

    Returns:
        {view name: written path}, with the CSV under "states".
    """
    if run_id is None:
        run_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    payloads = render_all(dataset, state)
    degraded = sorted(name for name, payload in payloads.items() if payload.get("status") == "no_data")
    if degraded:
        logger.warning("output: views with no data: %s", degraded)

    written: dict[str, str] = {}
    for name, payload in payloads.items():
        path = str(Path(output_dir) / f"{name}_{run_id}.json")
        _write_json(path, payload)
        written[name] = path

    csv_path = str(Path(output_dir) / f"states_{run_id}.csv")
    _write_csv(csv_path, state_table_rows(dataset), STATE_TABLE_FIELDS)
    written["states"] = csv_path
    return written
