"""MBG User Configuration.

This is the user-facing configuration file. Only list what differs from
the expert defaults in mbg.schemas.param.ParamConfig.

Usage:
    from mbg.schemas import ParamConfig, UserConfig, resolve_config, load_user_config_dict

    raw = load_user_config_dict("scripts/user_config.py")
    config = resolve_config(ParamConfig(), UserConfig.model_validate(raw))
"""

CONFIG = {
    # ========================================================================
    # OUTPUT
    # ========================================================================
    "BASE_DIR": "./mbg_output",   # tables/, rasters/, logs/ go here
    "LOG_LEVEL": "INFO",

    # ========================================================================
    # GRID & AGGREGATION TABLE
    # ========================================================================
    "RASTERIZE_RULE": "touched",  # "center", "touched" or "majority"
    "POLYGON_ID_FIELD": "adm2_code",
    "KEEP_FIELDS": ["adm1_code", "adm0_code"],

    # ========================================================================
    # AGGREGATION
    # ========================================================================
    "POPULATION_WEIGHTING": True,
    "AGGREGATION_METHOD": "mean",     # "mean" (prevalence) or "sum" (counts)
    "ZERO_WEIGHT_POLICY": "area",     # "area", "missing" or "error"
    "UI_LOWER": 0.025,
    "UI_UPPER": 0.975,
    "LEVELS": {
        "adm2": ["adm2_code"],
        "adm1": ["adm1_code"],
        "adm0": ["adm0_code"],
    },

    # ========================================================================
    # MODEL
    # ========================================================================
    "FAMILY": "binomial",
    "NORMALIZE_COVARIATES": "zscore",
    "STACKING": True,
    "SUBMODELS": ["ridge", "rf", "gbm"],
    "CV_FOLDS": 5,
    "N_SAMPLES": 250,
    "SEED": 2024,
}
