"""
Output directory layout and persistence of pipeline results.

Layout under the configured base directory:

- tables/: per-level summaries and long-form draws (Parquet)
- rasters/: cell-level mean and interval rasters (GeoTIFF)
- logs/: pipeline log files

Every run also writes the resolved runtime configuration as JSON, stamped
with a run id, so a set of outputs can always be traced back to the exact
settings that produced it.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

import xarray as xr
import rioxarray  # noqa: F401

from mbg.aggregation.aggregator import LevelResult

__all__ = ['setup_output_directories', 'write_outputs', 'new_run_id']

logger = logging.getLogger(__name__)


def setup_output_directories(base_dir: Union[str, Path]) -> Dict[str, Path]:
    """
    Create the output directory structure.

    Parameters
    ----------
    base_dir : str or Path
        Base output directory; created if missing.

    Returns
    -------
    dict
        Paths keyed 'base', 'tables', 'rasters', 'logs'
    """
    base_dir = Path(base_dir).expanduser().resolve()

    directories = {
        "base": base_dir,
        "tables": base_dir / "tables",
        "rasters": base_dir / "rasters",
        "logs": base_dir / "logs",
    }
    for path in directories.values():
        path.mkdir(parents=True, exist_ok=True)

    logger.debug("Output directories ready under %s", base_dir)
    return directories


def new_run_id() -> str:
    """Timestamp plus a short random suffix, e.g. ``20250101T120000Z-1a2b3c4d``."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


def write_outputs(results: Dict[str, LevelResult], cell_summary: Optional[xr.Dataset],
                  output_dirs: Dict[str, Path], config, run_id: Optional[str] = None) -> Dict[str, Path]:
    """
    Persist level results, cell rasters and the runtime config.

    Parameters
    ----------
    results : dict
        ``{level_name: LevelResult}`` from the aggregator.
    cell_summary : xr.Dataset, optional
        Output of summarize_cell_draws(); skipped when None.
    output_dirs : dict
        From setup_output_directories().
    config : InternalConfig
        Runtime config; supplies compression and whether to write draws.
    run_id : str, optional
        Generated when not given.

    Returns
    -------
    dict
        Written file paths keyed by a short label
        (e.g. ``region_summary``, ``cell_mean``, ``config``).
    """
    run_id = run_id or new_run_id()
    compression = None if config.output.compression == "none" else config.output.compression
    written = {}

    for name, result in results.items():
        path = output_dirs["tables"] / f"{name}_summary.parquet"
        result.summary.to_parquet(path, index=False, compression=compression)
        written[f"{name}_summary"] = path

        if config.output.write_draws:
            path = output_dirs["tables"] / f"{name}_draws.parquet"
            result.to_long().to_parquet(path, index=False, compression=compression)
            written[f"{name}_draws"] = path

    if cell_summary is not None:
        for stat in cell_summary.data_vars:
            path = output_dirs["rasters"] / f"cell_{stat}.tif"
            cell_summary[stat].rio.to_raster(path)
            written[f"cell_{stat}"] = path

    path = output_dirs["base"] / "runtime_config.json"
    with open(path, "w") as f:
        json.dump({
            "run_id": run_id,
            "created": datetime.now(timezone.utc).isoformat(),
            "config": config.model_dump(mode="json"),
        }, f, indent=2)
    written["config"] = path

    logger.info("Run %s: wrote %d files under %s", run_id, len(written), output_dirs["base"])
    return written
