"""Summaries across the sample dimension of a draws matrix.

One quantile definition (linear interpolation between order statistics,
numpy's default ``method="linear"``) is used for every level and for
cell-level summaries, so intervals are comparable across outputs.
"""

import numpy as np
import pandas as pd

from mbg.contracts import require

__all__ = ['summarize_draws', 'QUANTILE_METHOD']

QUANTILE_METHOD = "linear"


def summarize_draws(draws: np.ndarray, lower: float = 0.025, upper: float = 0.975) -> pd.DataFrame:
    """Mean and interval bounds for each row of ``draws``.

    Parameters
    ----------
    draws : np.ndarray
        (n_units, n_samples). Rows that contain NaN summarize to NaN.
    lower, upper : float
        Quantiles of the uncertainty interval.

    Returns
    -------
    pd.DataFrame
        Columns ``mean``, ``lower``, ``upper``; one row per input row.

    Notes
    -----
    Only ``lower <= upper`` is guaranteed. The mean usually lies inside
    the interval for reasonably symmetric draws, but strongly skewed draws
    or a narrow quantile pair can put it outside; it is not clamped.
    """
    require(
        draws.ndim == 2,
        f"Draws contract violated: expected 2D draws, got {draws.ndim} dims"
    )
    if draws.shape[0] == 0:
        return pd.DataFrame({"mean": [], "lower": [], "upper": []}, dtype=np.float64)

    bounds = np.quantile(draws, [lower, upper], axis=1, method=QUANTILE_METHOD)
    return pd.DataFrame({
        "mean": draws.mean(axis=1),
        "lower": bounds[0],
        "upper": bounds[1],
    })
