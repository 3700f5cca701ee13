import logging

import pytest
import numpy as np
import pandas as pd
from scipy.special import expit
from shapely.geometry import box

from mbg.grid import build_id_raster, build_aggregation_table
from tests.helpers.fake_grid import make_raster, make_polygons


@pytest.fixture(autouse=True)
def restore_root_logging():
    """Runs that write outputs replace the root handlers; put them back."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def study_area():
    """4x4 grid split into districts A (west) and B (east), both in region R1."""
    template = make_raster(np.ones((4, 4)))
    polygons = make_polygons([
        {"polygon_id": "A", "region": "R1", "geometry": box(0, 0, 2, 4)},
        {"polygon_id": "B", "region": "R1", "geometry": box(2, 0, 4, 4)},
    ])
    id_raster = build_id_raster(polygons, template, rule="center")
    table = build_aggregation_table(polygons, id_raster, "polygon_id", keep_fields=["region"])
    return id_raster, table


@pytest.fixture
def elevation():
    """Rises from west to east."""
    return make_raster(np.tile(np.arange(4.0), (4, 1)), name="elevation")


@pytest.fixture
def population():
    return make_raster(np.full((4, 4), 10.0), name="population")


@pytest.fixture
def survey():
    """Sixty survey clusters whose prevalence grows with x."""
    rng = np.random.default_rng(7)
    x = rng.uniform(0.05, 3.95, size=60)
    y = rng.uniform(0.05, 3.95, size=60)
    trials = rng.integers(30, 80, size=60)
    p = expit(-1.0 + 0.8 * (np.floor(x) - 1.5))
    return pd.DataFrame({
        "x": x,
        "y": y,
        "indicator": rng.binomial(trials, p),
        "samplesize": trials,
    })


@pytest.fixture
def pipeline_config(make_config):
    """Two levels, few samples, fixed seed."""
    def _make(**overrides):
        settings = dict(
            KEEP_FIELDS=["region"],
            LEVELS={"district": ["polygon_id"], "region": ["region"]},
            N_SAMPLES=50,
            SEED=3,
        )
        settings.update(overrides)
        return make_config(**settings)

    return _make
