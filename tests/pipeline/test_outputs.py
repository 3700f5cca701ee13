"""Tests for output directories and result persistence."""

import json

import pytest
import numpy as np
import pandas as pd

from mbg.aggregation import aggregate_draws
from mbg.models.draws import summarize_cell_draws
from mbg.pipeline.outputs import new_run_id, setup_output_directories, write_outputs
from tests.helpers.fake_grid import make_raster, make_aggregation_table

pytestmark = [pytest.mark.unit, pytest.mark.pipeline]


@pytest.fixture
def results(scenario_draws):
    table = make_aggregation_table([("A", 1, 1.0), ("A", 3, 1.0), ("B", 2, 1.0), ("B", 4, 1.0)])
    return {"district": aggregate_draws(scenario_draws, table, ["polygon_id"], name="district")}


@pytest.fixture
def cell_summary(scenario_draws):
    return summarize_cell_draws(scenario_draws, make_raster([[1, 2], [3, 4]], name="cell_id"))


def test_setup_output_directories(temp_dir):
    dirs = setup_output_directories(temp_dir / "run")

    assert set(dirs) == {"base", "tables", "rasters", "logs"}
    assert all(path.is_dir() for path in dirs.values())
    assert dirs["tables"].parent == dirs["base"]


def test_setup_is_idempotent(temp_dir):
    assert setup_output_directories(temp_dir) == setup_output_directories(temp_dir)


def test_run_ids_are_unique():
    assert new_run_id() != new_run_id()


class TestWriteOutputs:
    """Test write_outputs()."""

    def test_tables_rasters_and_config(self, results, cell_summary, output_dirs, internal_config):
        written = write_outputs(results, cell_summary, output_dirs, internal_config, run_id="r1")

        assert set(written) == {"district_summary", "district_draws", "cell_mean",
                                "cell_lower", "cell_upper", "config"}
        summary = pd.read_parquet(written["district_summary"])
        assert summary["polygon_id"].tolist() == ["A", "B"]
        np.testing.assert_allclose(summary["mean"], [0.4, 0.6])

        draws = pd.read_parquet(written["district_draws"])
        assert list(draws.columns) == ["polygon_id", "sample", "value"]
        assert len(draws) == 6
        np.testing.assert_allclose(draws["value"], results["district"].draws.reshape(-1))

        with open(written["config"]) as f:
            saved = json.load(f)
        assert saved["run_id"] == "r1"
        assert saved["config"]["aggregation"]["method"] == "mean"

    def test_without_draws_or_rasters(self, results, output_dirs, make_config):
        config = make_config(output={"write_draws": False, "compression": "none"})
        written = write_outputs(results, None, output_dirs, config)

        assert set(written) == {"district_summary", "config"}
        assert not (output_dirs["tables"] / "district_draws.parquet").exists()
        assert len(pd.read_parquet(written["district_summary"])) == 2

    def test_generates_run_id(self, results, output_dirs, internal_config):
        written = write_outputs(results, None, output_dirs, internal_config)
        with open(written["config"]) as f:
            assert json.load(f)["run_id"]
