"""End-to-end model run.

Sequences the stages of a model-based geostatistics run on a prepared ID
raster and aggregation table, checking every stage boundary with
contracts. Errors raised by the inference engine propagate unchanged.
"""

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd
import xarray as xr

from mbg.aggregation import LevelResult, PopulationWeightedAggregator, population_to_cell_weights
from mbg.contracts import (
    require,
    assert_id_raster,
    assert_aggregation_table,
    assert_cell_draws,
    assert_table_matches_draws,
)
from mbg.grid.covariates import normalize_covariates, build_cell_design_matrix
from mbg.grid.geometry import check_raster_alignment
from mbg.grid.id_raster import n_cells
from mbg.grid.points import assign_points_to_cells
from mbg.models.draws import draw_parameters, generate_cell_draws, summarize_cell_draws
from mbg.models.inference import InferenceBackend, LINKS, PosteriorFit, resolve_backend
from mbg.models.submodels import SubmodelResult, run_regression_submodels
from mbg.pipeline.outputs import new_run_id, setup_output_directories, write_outputs
from mbg.schemas import InternalConfig

__all__ = ['MbgModelRunner']

logger = logging.getLogger(__name__)


class MbgModelRunner:
    """Runs one model from survey data to aggregated estimates.

    **Stages:**

    1. **Data**: survey points are mapped to cell ids (optionally collapsed
       per cell).

    2. **Design**: covariates are normalized over the study area and
       reduced to a cell design matrix.

    3. **Submodels** (when stacking is enabled): scikit-learn learners are
       tuned by cross-validation; their out-of-fold predictions become the
       fit's covariates at the data points and their full-fit predictions
       the covariates at cells.

    4. **Fit**: the inference backend returns a Gaussian posterior over
       the coefficients.

    5. **Draws**: coefficient draws, then cell draws through the inverse
       link, then cell summaries.

    6. **Aggregation**: population-weighted, draw by draw, to every
       configured level.

    7. **Outputs** (when ``output.base_dir`` is set): Parquet tables,
       GeoTIFF rasters and the runtime config.

    Example usage::

        config = resolve_config(ParamConfig(), UserConfig.model_validate(CONFIG))
        runner = MbgModelRunner(config, data, id_raster, covariates, table, population=pop)
        results = runner.run()
        results["region"].summary
    """

    def __init__(self, config: InternalConfig, data: pd.DataFrame, id_raster: xr.DataArray,
                 covariates: Mapping[str, xr.DataArray], aggregation_table: pd.DataFrame,
                 population: Optional[xr.DataArray] = None,
                 backend: Optional[InferenceBackend] = None):
        """Check inputs and store them; nothing is computed yet.

        Parameters
        ----------
        config : InternalConfig
            Fully resolved runtime configuration.
        data : pd.DataFrame
            Survey points with coordinates, outcome and trials columns
            named in ``config.data``. A ``cell_id`` column, if present, is
            trusted and coordinates are not looked up again.
        id_raster : xr.DataArray
            Output of build_id_raster().
        covariates : mapping
            ``{name: raster}`` aligned with the ID raster.
        aggregation_table : pd.DataFrame
            Output of build_aggregation_table().
        population : xr.DataArray, optional
            Population raster aligned with the ID raster.
        backend : InferenceBackend, optional
            Defaults to LaplaceGLMBackend built from ``config.inference``.

        Raises
        ------
        ContractViolation
            ID raster or aggregation table violates its contract.
        ValueError
            A covariate or population raster is not aligned with the grid.
        """
        assert_id_raster(id_raster)
        assert_aggregation_table(aggregation_table, config.aggregation_table.polygon_id_field)
        for name, raster in covariates.items():
            check_raster_alignment(raster, id_raster, name)
        if population is not None:
            check_raster_alignment(population, id_raster, "population")

        self.config = config
        self.data = data
        self.id_raster = id_raster
        self.covariates = dict(covariates)
        self.aggregation_table = aggregation_table
        self.population = population
        self.backend = resolve_backend(config, backend)
        self.link = LINKS[config.inference.family]
        self.n_cells = n_cells(id_raster)

        self.run_id = None
        self.output_dirs = None

        # Stage results (filled in by run())
        self.model_data: Optional[pd.DataFrame] = None
        self.cell_design: Optional[pd.DataFrame] = None
        self.submodels: Optional[SubmodelResult] = None
        self.fit: Optional[PosteriorFit] = None
        self.param_draws: Optional[np.ndarray] = None
        self.cell_draws: Optional[np.ndarray] = None
        self.cell_summary: Optional[xr.Dataset] = None
        self.results: Optional[Dict[str, LevelResult]] = None
        self.written: Dict[str, Path] = {}

    def _setup_logging(self):
        """Configure logging when the run writes outputs.

        Initializes the root logger with file and console handlers under
        ``logs/``. Without an output directory the ``mbg`` logger level is
        set and handlers are left to the caller.
        """
        log_level = getattr(logging, self.config.logging.level.upper(), logging.INFO)

        if self.config.output.base_dir is None:
            logging.getLogger("mbg").setLevel(log_level)
            return

        self.output_dirs = setup_output_directories(self.config.output.base_dir)
        log_path = self.output_dirs["logs"] / f"mbg_{self.run_id}.log"

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Clear existing handlers and add new ones
        root = logging.getLogger()
        root.setLevel(log_level)
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()

        fh = logging.FileHandler(log_path)
        fh.setLevel(log_level)
        fh.setFormatter(formatter)
        root.addHandler(fh)

        ch = logging.StreamHandler()
        ch.setLevel(log_level)
        ch.setFormatter(formatter)
        root.addHandler(ch)

        logger.info("Logging: level=%s, file=%s", self.config.logging.level, log_path)

    def run(self) -> Dict[str, LevelResult]:
        """Execute every stage and return the per-level results.

        Returns
        -------
        dict
            ``{level_name: LevelResult}`` in configured level order.
        """
        self.run_id = new_run_id()
        self._setup_logging()

        logger.info("=" * 60)
        logger.info("Starting MBG run %s", self.run_id)
        logger.info("=" * 60)

        self.model_data = self._prepare_data()
        self.cell_design = self._prepare_design()
        point_design, cell_design = self._stack()

        self.fit = self.backend.fit(
            point_design,
            self.model_data[self.config.data.outcome_field].to_numpy(),
            self.model_data[self.config.data.trials_field].to_numpy(),
        )

        self.param_draws = draw_parameters(self.fit, self.config.draws.n_samples,
                                           seed=self.config.draws.seed)
        self.cell_draws = generate_cell_draws(self.param_draws, cell_design,
                                              link=self.link, names=self.fit.names)
        assert_cell_draws(self.cell_draws, self.n_cells)
        assert_table_matches_draws(self.aggregation_table, self.cell_draws.shape[0])

        self.cell_summary = summarize_cell_draws(
            self.cell_draws, self.id_raster,
            self.config.aggregation.ui_lower, self.config.aggregation.ui_upper,
        )

        weights = None
        if self.population is not None:
            weights = population_to_cell_weights(self.population, self.id_raster)
        self.results = PopulationWeightedAggregator(self.config).aggregate(
            self.cell_draws, self.aggregation_table, population=weights
        )
        for name, result in self.results.items():
            logger.info("Level %s: %d polygons", name, len(result.summary))

        if self.output_dirs is not None:
            self.written = write_outputs(self.results, self.cell_summary, self.output_dirs,
                                         self.config, run_id=self.run_id)

        logger.info("MBG run %s complete", self.run_id)
        return self.results

    def _prepare_data(self) -> pd.DataFrame:
        """Survey rows with a cell id, restricted to the study area."""
        data_cfg = self.config.data
        for col in (data_cfg.outcome_field, data_cfg.trials_field):
            if col not in self.data.columns:
                raise ValueError(f"survey data is missing column '{col}'")

        if "cell_id" in self.data.columns:
            model_data = self.data.reset_index(drop=True)
        else:
            model_data = assign_points_to_cells(
                self.data, self.id_raster,
                x_field=data_cfg.x_field, y_field=data_cfg.y_field,
                collapse=data_cfg.collapse_to_cells,
                outcome_field=data_cfg.outcome_field, trials_field=data_cfg.trials_field,
            )

        require(len(model_data) > 0, "Data contract violated: no survey points inside the study area")
        cell_ids = model_data["cell_id"].to_numpy()
        require(
            bool(np.all((cell_ids >= 1) & (cell_ids <= self.n_cells))),
            f"Data contract violated: survey cell ids outside 1..{self.n_cells}"
        )
        logger.info("Model data: %d observations", len(model_data))
        return model_data

    def _prepare_design(self) -> pd.DataFrame:
        covariates = normalize_covariates(self.covariates, self.id_raster,
                                          method=self.config.covariates.normalize)
        design = build_cell_design_matrix(covariates, self.id_raster,
                                          intercept=self.config.covariates.intercept)
        logger.info("Cell design matrix: %d cells x %d columns (%s)",
                    design.shape[0], design.shape[1], ", ".join(design.columns))
        return design

    def _stack(self):
        """Point and cell design matrices for the fit, with or without submodels."""
        cell_ids = self.model_data["cell_id"].to_numpy()

        if not self.config.stacking.enabled:
            point_design = self.cell_design.loc[cell_ids].reset_index(drop=True)
            return point_design, self.cell_design

        logger.info("Running submodels: %s", ", ".join(self.config.stacking.models))
        self.submodels = run_regression_submodels(self.model_data, self.cell_design, self.config)

        point_parts = [self.submodels.point_predictions.reset_index(drop=True)]
        cell_parts = [self.submodels.cell_predictions]
        if self.config.stacking.use_raw_covariates:
            raw = self.cell_design.drop(columns=["intercept"], errors="ignore")
            point_parts.append(raw.loc[cell_ids].reset_index(drop=True))
            cell_parts.append(raw)
        if self.config.covariates.intercept:
            point_parts.insert(0, pd.DataFrame({"intercept": np.ones(len(cell_ids))}))
            cell_parts.insert(0, self.cell_design[["intercept"]])

        point_design = pd.concat(point_parts, axis=1)
        cell_design = pd.concat(cell_parts, axis=1)
        return point_design, cell_design
