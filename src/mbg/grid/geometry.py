"""Coordinate reference system and grid transform checks.

Every geometry operation in the grid package goes through these helpers so
that polygon layers and rasters are compared the same way everywhere. No
reprojection happens here: mismatched inputs are a configuration error.
"""

import numpy as np
import xarray as xr
import geopandas as gpd
import rioxarray  # noqa: F401  (registers the .rio accessor)
from pyproj import CRS
from rasterio.transform import Affine

from mbg.contracts import require

__all__ = ['check_crs_match', 'check_raster_alignment', 'grid_transform', 'as_2d']


def _raster_crs(raster: xr.DataArray):
    crs = raster.rio.crs
    if crs is None:
        return None
    return CRS.from_wkt(crs.to_wkt())


def check_crs_match(polygons: gpd.GeoDataFrame, raster: xr.DataArray) -> None:
    """Fail unless the polygon layer and the raster share a defined CRS.

    Raises
    ------
    ValueError
        If either CRS is undefined, or the two differ.
    """
    if polygons.crs is None:
        raise ValueError("polygon layer has an undefined coordinate reference system")
    raster_crs = _raster_crs(raster)
    if raster_crs is None:
        raise ValueError("raster has an undefined coordinate reference system")
    if not CRS.from_user_input(polygons.crs).equals(raster_crs, ignore_axis_order=True):
        raise ValueError(
            "CRS mismatch between polygon layer and raster: "
            f"{polygons.crs.to_string()} vs {raster_crs.to_string()}"
        )


def check_raster_alignment(raster: xr.DataArray, reference: xr.DataArray, name: str) -> None:
    """Fail unless ``raster`` sits on exactly the same grid as ``reference``.

    Raises
    ------
    ValueError
        Names the offending raster and the property that differs.
    """
    if raster.shape != reference.shape:
        raise ValueError(
            f"raster '{name}' has shape {raster.shape}, expected {reference.shape}"
        )
    crs, ref_crs = _raster_crs(raster), _raster_crs(reference)
    if crs is None or ref_crs is None or not crs.equals(ref_crs, ignore_axis_order=True):
        raise ValueError(f"raster '{name}' CRS does not match the ID raster CRS")
    if not raster.rio.transform().almost_equals(reference.rio.transform()):
        raise ValueError(f"raster '{name}' transform does not match the ID raster transform")


def grid_transform(raster: xr.DataArray) -> Affine:
    """Affine transform of an axis-aligned raster."""
    transform = raster.rio.transform()
    require(
        np.isclose(transform.b, 0.0) and np.isclose(transform.d, 0.0),
        f"Grid contract violated: rotated transforms are not supported ({tuple(transform)[:6]})"
    )
    return transform


def as_2d(raster: xr.DataArray) -> xr.DataArray:
    """Drop a singleton band dimension so the raster is (y, x)."""
    if "band" in raster.dims:
        require(
            raster.sizes["band"] == 1,
            f"Grid contract violated: expected a single band, got {raster.sizes['band']}"
        )
        raster = raster.squeeze("band", drop=True)
    require(
        tuple(raster.dims) == ("y", "x"),
        f"Grid contract violated: raster dims are {tuple(raster.dims)}, expected ('y', 'x')"
    )
    return raster
