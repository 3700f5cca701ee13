import numpy as np
import pandas as pd
import xarray as xr
import rioxarray  # noqa: F401
import geopandas as gpd
from rasterio.transform import from_origin


def make_raster(values, res=1.0, x0=0.0, y0=None, crs="EPSG:3857", name=None):
    """
    Create a georeferenced (y, x) raster with north-up cells of size ``res``.

    ``x0`` is the left edge and ``y0`` the top edge (default: a grid whose
    bottom edge sits at y = 0).
    """
    values = np.asarray(values, dtype=np.float64)
    ny, nx = values.shape
    y0 = ny * res if y0 is None else y0

    x = x0 + res * (np.arange(nx) + 0.5)
    y = y0 - res * (np.arange(ny) + 0.5)
    da = xr.DataArray(values, dims=("y", "x"), coords={"y": y, "x": x}, name=name)
    if crs is not None:
        da = da.rio.write_crs(crs)
    return da.rio.write_transform(from_origin(x0, y0, res, res))


def make_polygons(records, crs="EPSG:3857"):
    """GeoDataFrame from a list of dicts that each carry a ``geometry``."""
    return gpd.GeoDataFrame(records, geometry="geometry", crs=crs)


def make_aggregation_table(rows, polygon_id_field="polygon_id"):
    """
    Aggregation table from (polygon_id, cell_id, area_fraction) tuples.
    """
    table = pd.DataFrame(rows, columns=[polygon_id_field, "cell_id", "area_fraction"])
    table["cell_id"] = table["cell_id"].astype(np.int64)
    table["area_fraction"] = table["area_fraction"].astype(np.float64)
    return table
