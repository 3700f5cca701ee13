"""Root-level pytest fixtures for the MBG test suite.

Provides shared configuration fixtures following the Pydantic-based
architecture, plus a tiny georeferenced study area. All tests must use
these fixtures instead of creating raw dict configs.
"""

import pytest
from pathlib import Path
import tempfile
import shutil

import numpy as np
from shapely.geometry import box

from mbg.schemas import ParamConfig, UserConfig, resolve_config
from mbg.pipeline.outputs import setup_output_directories
from tests.helpers.fake_grid import make_raster, make_polygons


# =============================================================================
# Configuration Fixtures (Pydantic-based)
# =============================================================================

@pytest.fixture
def param_config():
    """Expert configuration with all defaults.

    Use this as the base for all test configs. Override specific values
    using make_config or by creating custom UserConfig instances.
    """
    return ParamConfig()


@pytest.fixture
def internal_config(param_config):
    """Fully validated runtime configuration (no overrides).

    Use this when tests don't care about specific config values and just
    need a valid InternalConfig to pass to constructors.

    Examples
    --------
    >>> def test_aggregator_init(internal_config):
    ...     agg = PopulationWeightedAggregator(internal_config)
    ...     assert agg.method == "mean"
    """
    return resolve_config(param_config, None)


@pytest.fixture
def make_config(param_config):
    """Factory fixture for creating custom test configs.

    Returns a callable that accepts UserConfig-compatible kwargs.

    Examples
    --------
    >>> def test_custom_interval(make_config):
    ...     config = make_config(UI_LOWER=0.1, UI_UPPER=0.9)
    ...     assert config.aggregation.ui_lower == 0.1
    """
    def _make(**user_overrides):
        """Create InternalConfig with user overrides."""
        if user_overrides:
            user = UserConfig(**user_overrides)
            return resolve_config(param_config, user)
        else:
            return resolve_config(param_config, None)

    return _make


# =============================================================================
# Directory Fixtures
# =============================================================================

@pytest.fixture
def temp_dir():
    """Temporary directory that is cleaned up after test."""
    d = tempfile.mkdtemp()
    yield Path(d)
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def output_dirs(temp_dir):
    """Standard MBG output directory structure (base, tables, rasters, logs)."""
    return setup_output_directories(temp_dir)


# =============================================================================
# Study Area Fixtures
# =============================================================================

@pytest.fixture
def template():
    """2x2 grid of 1-unit cells covering [0, 2] x [0, 2] in EPSG:3857.

    Cell ids assigned row-major from the top-left:

        1 | 2
        --+--
        3 | 4
    """
    return make_raster(np.ones((2, 2)))


@pytest.fixture
def polygons():
    """Two polygons splitting the template into left (A) and right (B) halves."""
    return make_polygons([
        {"polygon_id": "A", "region": "R1", "geometry": box(0, 0, 1, 2)},
        {"polygon_id": "B", "region": "R1", "geometry": box(1, 0, 2, 2)},
    ])


@pytest.fixture
def scenario_draws():
    """Four cells x three samples."""
    return np.array([
        [0.1, 0.2, 0.3],
        [0.3, 0.4, 0.5],
        [0.5, 0.6, 0.7],
        [0.7, 0.8, 0.9],
    ])
