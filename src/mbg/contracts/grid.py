"""ID raster contract.

Enforces the guarantee that the grid rasterization stage produced a valid
ID raster: a 2D (y, x) grid whose valid cells hold the dense, contiguous
identifiers 1..N and whose transform is axis-aligned.
"""

import numpy as np
import xarray as xr
from mbg.contracts.base import require, format_ids


def assert_id_raster(id_raster: xr.DataArray) -> None:
    """Enforce ID raster contract.

    Parameters
    ----------
    id_raster : xr.DataArray
        Output of build_id_raster()

    Raises
    ------
    ContractViolation
        If any invariant is violated
    """
    require(
        isinstance(id_raster, xr.DataArray),
        f"ID raster contract violated: got {type(id_raster)}, expected DataArray"
    )
    require(
        id_raster.ndim == 2,
        f"ID raster contract violated: {id_raster.ndim} dims, expected 2"
    )
    require(
        tuple(id_raster.dims) == ("y", "x"),
        f"ID raster contract violated: dims are {tuple(id_raster.dims)}, expected ('y', 'x')"
    )

    values = id_raster.values
    valid = values[np.isfinite(values)]
    require(
        valid.size > 0,
        "ID raster contract violated: no valid cells"
    )
    require(
        np.all(valid == np.round(valid)),
        "ID raster contract violated: cell ids must be integers"
    )

    ids = np.sort(valid.astype(np.int64))
    expected = np.arange(1, valid.size + 1)
    if not np.array_equal(ids, expected):
        missing = np.setdiff1d(expected, ids)
        require(
            False,
            "ID raster contract violated: cell ids are not dense and contiguous "
            f"over 1..{valid.size} (missing {format_ids(missing)})"
        )
