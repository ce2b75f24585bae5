"""Pipeline orchestrator – runs ingest → aggregate → output end-to-end.

Usage: uv run python main.py [--geometry URL|PATH] [--languages PATH]
                             [--population PATH] [--output-dir DIR] [--state NAME]
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

import aggregate
import ingest as ingest_module
import output as output_module

logger = logging.getLogger(__name__)

PIPELINE_STATE_DIR = ".pipeline_state"


def _write_manifest(run_id: str, data: dict) -> None:
    Path(PIPELINE_STATE_DIR).mkdir(parents=True, exist_ok=True)
    path = Path(PIPELINE_STATE_DIR) / "run_manifest.json"
    path.write_text(json.dumps(data, indent=2))


def _flag(argv: list[str], name: str, default: str | None = None) -> str | None:
    """Value following ``--name`` in argv, else ``default``."""
    flag = f"--{name}"
    if flag in argv:
        idx = argv.index(flag)
        if idx + 1 < len(argv):
            return argv[idx + 1]
    return default


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    argv = sys.argv[1:] if argv is None else argv

    defaults = ingest_module.DataSources()
    sources = ingest_module.DataSources(
        geometry=_flag(argv, "geometry", defaults.geometry),
        languages=_flag(argv, "languages", defaults.languages),
        population=_flag(argv, "population", defaults.population),
    )
    output_dir = _flag(argv, "output-dir", output_module.OUTPUT_DIR)
    interaction = output_module.select_state(output_module.InteractionState(), _flag(argv, "state"))

    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    logger.info("=== pipeline start  run_id=%s ===", run_id)

    # --- initial manifest ---
    manifest: dict = {
        "run_id": run_id,
        "started_at": datetime.now().isoformat(),
        "status": "started",
        "steps_completed": [],
        "sources": sources.model_dump(),
        "language_records": None,
        "states_with_languages": None,
        "states_with_population": None,
        "nationwide_population": None,
        "selected_state": interaction.selected_state,
        "outputs": None,
        "abort_reason": None,
    }
    _write_manifest(run_id, manifest)

    # -----------------------------------------------------------------------
    # Step 1 – ingest
    # -----------------------------------------------------------------------
    manifest["status"] = "loading"
    _write_manifest(run_id, manifest)

    try:
        dataset = asyncio.run(ingest_module.load(sources))
    except ingest_module.LoadError as exc:
        manifest["status"] = "ABORTED"
        manifest["abort_reason"] = str(exc)
        _write_manifest(run_id, manifest)
        logger.error("=== pipeline ABORTED: %s ===", exc)
        sys.exit(1)

    manifest["steps_completed"].append("ingest")
    manifest["language_records"] = len(dataset.records)
    manifest["states_with_languages"] = len(dataset.language_by_state)
    manifest["states_with_population"] = len(dataset.population_by_state)
    manifest["nationwide_population"] = dataset.nationwide_population

    # -----------------------------------------------------------------------
    # Step 2 – aggregate (summary only; views query on demand)
    # -----------------------------------------------------------------------
    nationwide = aggregate.nationwide_aggregate(dataset)
    logger.info(
        "aggregate: %d languages nationwide, %.2f%% speak English less than very well",
        nationwide.language_count,
        aggregate.english_proficiency_proportion(dataset, None),
    )
    manifest["steps_completed"].append("aggregate")

    # -----------------------------------------------------------------------
    # Step 3 – output
    # -----------------------------------------------------------------------
    manifest["status"] = "outputting"
    _write_manifest(run_id, manifest)

    manifest["outputs"] = output_module.run_output(dataset, interaction, run_id=run_id, output_dir=output_dir)

    manifest["steps_completed"].append("output")
    manifest["status"] = "completed"
    _write_manifest(run_id, manifest)

    logger.info("=== pipeline complete  run_id=%s ===", run_id)


if __name__ == "__main__":
    main()
