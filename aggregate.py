"""Step 2 – Derive every statistic the charts need from a loaded Dataset.

All functions are pure: they read the snapshot and return fresh objects.
Callers that need caching key it on the Dataset they passed in.

Module: from aggregate import language_totals, shares_with_other_bucket, ...
"""

from __future__ import annotations

import logging
import math
from collections.abc import Collection, Iterable, Mapping, Sequence

from pydantic import BaseModel

from ingest import Dataset, LanguageRecord
from states import UNKNOWN_STATE

# ---------------------------------------------------------------------------
# Configuration constants (adjust as needed)
# ---------------------------------------------------------------------------

OTHER_THRESHOLD: float = 0.01               # shares below this merge into OTHER_LABEL
OTHER_LABEL = "Other (<1%)"
TOP_N: int = 15                             # bars in the top-languages chart
DOT_PLOT_EXCLUDED: tuple[str, ...] = ("English", "Spanish")  # outliers that flatten the dot plot
HISTOGRAM_BINS: int = 10
WHISKER_IQR_MULTIPLIER: float = 1.5

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ShareEntry(BaseModel):
    label: str
    value: float
    share: float                                  # 0–1


class Quartiles(BaseModel):
    min: float
    q1: float
    median: float
    q3: float
    max: float
    iqr: float


class BoxPlot(BaseModel):
    quartiles: Quartiles
    whisker_low: float
    whisker_high: float
    outliers: list[float]


class HistogramBin(BaseModel):
    x0: float                                     # inclusive
    x1: float                                     # exclusive, except for the last bin
    count: int


class StateAggregate(BaseModel):
    """Per-state summary; ``state`` is None for the nationwide aggregate."""
    state: str | None
    language_count: int
    languages: list[tuple[str, float]]            # (language, speakers), speakers descending
    less_than_very_well: float
    rms_margin: float
    population: int | None


class LanguageAggregate(BaseModel):
    language: str
    total_speakers: float
    states_present: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _records_for(dataset: Dataset, state: str | None) -> Sequence[LanguageRecord]:
    """None means every record nationwide; an unseen state has no records."""
    if state is None:
        return dataset.records
    return dataset.language_by_state.get(state, ())


def _sum_by_language(records: Iterable[LanguageRecord]) -> dict[str, float]:
    totals: dict[str, float] = {}
    for record in records:
        totals[record.language] = totals.get(record.language, 0.0) + (record.speakers or 0.0)
    return totals


def _by_value_desc(items: Mapping[str, float]) -> list[tuple[str, float]]:
    return sorted(items.items(), key=lambda kv: (-kv[1], kv[0]))


# ---------------------------------------------------------------------------
# Core queries
# ---------------------------------------------------------------------------


def language_totals(dataset: Dataset, state: str | None = None) -> dict[str, float]:
    """Language → summed speakers (null counts as 0) for a state, or nationwide."""
    return _sum_by_language(_records_for(dataset, state))


def language_diversity_count(dataset: Dataset, state: str | None) -> int:
    """Distinct language names among a state's records, with or without speakers."""
    return len({r.language for r in _records_for(dataset, state)})


def diversity_by_state(dataset: Dataset) -> dict[str, int]:
    return {state: len({r.language for r in rows}) for state, rows in dataset.language_by_state.items()}


def language_coverage(dataset: Dataset) -> dict[str, int]:
    """Language → number of distinct states where it has more than 0 speakers."""
    states_by_language: dict[str, set[str]] = {}
    for record in dataset.records:
        if record.speakers is not None and record.speakers > 0:
            states_by_language.setdefault(record.language, set()).add(record.state)
    return {language: len(states) for language, states in states_by_language.items()}


def language_aggregates(dataset: Dataset) -> list[LanguageAggregate]:
    """Nationwide totals and state coverage per language, largest first."""
    coverage = language_coverage(dataset)
    return [
        LanguageAggregate(language=language, total_speakers=total, states_present=coverage.get(language, 0))
        for language, total in _by_value_desc(language_totals(dataset))
    ]


def shares_with_other_bucket(
    totals: Mapping[str, float],
    denominator: float | None,
    exclude: Collection[str] | None = None,
) -> list[ShareEntry]:
    """Each label's share of ``denominator``, with the long tail merged.

    Entries without a positive value are dropped.  With ``exclude`` the
    excluded labels are removed and shares are taken of what remains.
    Shares under OTHER_THRESHOLD collapse into one OTHER_LABEL entry,
    appended after the rest (which are sorted by share, largest first).
    A zero or missing denominator gives every entry a share of 0.
    """
    items = [(label, value) for label, value in totals.items() if value is not None and value > 0]

    if exclude is not None:
        items = [(label, value) for label, value in items if label not in exclude]
        denominator = sum(value for _, value in items)

    entries = [
        ShareEntry(label=label, value=value, share=value / denominator if denominator else 0.0)
        for label, value in items
    ]

    major = sorted((e for e in entries if e.share >= OTHER_THRESHOLD), key=lambda e: (-e.share, e.label))
    minor = [e for e in entries if e.share < OTHER_THRESHOLD]
    other_value = sum(e.value for e in minor)
    if other_value > 0:
        major.append(ShareEntry(label=OTHER_LABEL, value=other_value, share=sum(e.share for e in minor)))
    return major


def quartiles(sorted_values: Sequence[float]) -> Quartiles:
    """Nearest-rank quartiles: indices floor(n*0.25), floor(n*0.5), floor(n*0.75).

    Raises:
        ValueError: on empty input; callers guard before asking.
    """
    if not sorted_values:
        raise ValueError("quartiles of an empty sequence")
    values = sorted(sorted_values)
    n = len(values)
    q1 = values[math.floor(n * 0.25)]
    q3 = values[math.floor(n * 0.75)]
    return Quartiles(
        min=values[0],
        q1=q1,
        median=values[math.floor(n * 0.5)],
        q3=q3,
        max=values[-1],
        iqr=q3 - q1,
    )


def rms_error(errors: Iterable[float | None]) -> float:
    """Combine independent margins of error: sqrt of the sum of squares."""
    return math.sqrt(sum(e * e for e in errors if e is not None))


def english_proficiency_proportion(dataset: Dataset, state: str | None) -> float:
    """Percent of the population speaking English less than "very well".

    Divides by the state's population (nationwide when ``state`` is None).
    An unknown or zero population divides by 1 instead, which yields the raw
    count rather than a percentage.
    """
    less_than_very_well = sum(r.less_than_very_well or 0.0 for r in _records_for(dataset, state))
    if state is None:
        population = dataset.nationwide_population
    else:
        population = dataset.population_by_state.get(state)
    return 100 * less_than_very_well / (population or 1)


def state_aggregate(dataset: Dataset, state: str | None) -> StateAggregate:
    records = _records_for(dataset, state)
    if state is None:
        population = dataset.nationwide_population
    else:
        population = dataset.population_by_state.get(state)
    return StateAggregate(
        state=state,
        language_count=len({r.language for r in records}),
        languages=_by_value_desc(_sum_by_language(records)),
        less_than_very_well=sum(r.less_than_very_well or 0.0 for r in records),
        rms_margin=rms_error(r.less_than_very_well_margin for r in records),
        population=population,
    )


def nationwide_aggregate(dataset: Dataset) -> StateAggregate:
    return state_aggregate(dataset, None)


# ---------------------------------------------------------------------------
# Chart-shaped queries
# ---------------------------------------------------------------------------


def top_languages(dataset: Dataset, exclude: Collection[str] = (), limit: int = TOP_N) -> list[LanguageAggregate]:
    """Largest languages nationwide after dropping ``exclude``."""
    kept = [a for a in language_aggregates(dataset) if a.total_speakers > 0 and a.language not in exclude]
    return kept[:limit]


def coverage_points(dataset: Dataset, exclude: Collection[str] = DOT_PLOT_EXCLUDED) -> list[LanguageAggregate]:
    """(states present, total speakers) per language for the dot plot."""
    return [
        a for a in language_aggregates(dataset)
        if a.total_speakers > 0 and a.states_present > 0 and a.language not in exclude
    ]


def state_language_table(dataset: Dataset, state: str) -> list[tuple[str, float]]:
    """The state's records that carry a speaker count, largest first."""
    rows = [(r.language, r.speakers) for r in dataset.language_by_state.get(state, ()) if r.speakers is not None]
    return sorted(rows, key=lambda row: -row[1])


def state_options(dataset: Dataset) -> list[str]:
    """Every state key seen in either table, alphabetically, minus 'Unknown'."""
    names = set(dataset.population_by_state) | set(dataset.language_by_state)
    names.discard(UNKNOWN_STATE)
    return sorted(names, key=str.lower)


def value_domain(values: Iterable[float]) -> tuple[float, float]:
    """(min, max) for a color or axis scale.

    Empty input → (0, 1); a single repeated value v → (0, v), or (0, 1) if v is 0.
    """
    values = list(values)
    if not values:
        return (0.0, 1.0)
    lo, hi = min(values), max(values)
    if lo == hi:
        return (0.0, hi or 1.0)
    return (lo, hi)


def histogram(values: Iterable[float], bin_count: int = HISTOGRAM_BINS) -> list[HistogramBin]:
    """Equal-width bins over ``value_domain(values)``."""
    if bin_count < 1:
        raise ValueError(f"bin_count must be positive, got {bin_count}")
    values = list(values)
    lo, hi = value_domain(values)
    width = (hi - lo) / bin_count
    counts = [0] * bin_count
    for value in values:
        index = min(int((value - lo) / width), bin_count - 1)
        counts[max(index, 0)] += 1
    return [
        HistogramBin(x0=lo + i * width, x1=hi if i == bin_count - 1 else lo + (i + 1) * width, count=count)
        for i, count in enumerate(counts)
    ]


def box_plot(values: Iterable[float]) -> BoxPlot | None:
    """Quartiles with 1.5*IQR whiskers; None when there is nothing to plot."""
    values = sorted(values)
    if not values:
        return None
    q = quartiles(values)
    low_fence = q.q1 - WHISKER_IQR_MULTIPLIER * q.iqr
    high_fence = q.q3 + WHISKER_IQR_MULTIPLIER * q.iqr
    inside = [v for v in values if low_fence <= v <= high_fence]
    return BoxPlot(
        quartiles=q,
        whisker_low=inside[0],
        whisker_high=inside[-1],
        outliers=[v for v in values if v < low_fence or v > high_fence],
    )
