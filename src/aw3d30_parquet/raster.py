from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
import rasterio
from rasterio.errors import RasterioError

from aw3d30_parquet.errors import DecodeError


@dataclass(frozen=True)
class GeoTransform:
    """GDAL-ordered affine geotransform.

    https://gdal.org/user/raster_data_model.html#affine-geotransform
    """

    origin_x: float
    pixel_width: float
    rotation_x: float
    origin_y: float
    rotation_y: float
    pixel_height: float

    @staticmethod
    def from_gdal(coefficients: Sequence[float]) -> "GeoTransform":
        if len(coefficients) != 6:
            raise ValueError(f"Expected 6 geotransform coefficients, got {len(coefficients)}")
        return GeoTransform(*(float(c) for c in coefficients))

    def to_gdal(self) -> tuple[float, float, float, float, float, float]:
        return (
            self.origin_x,
            self.pixel_width,
            self.rotation_x,
            self.origin_y,
            self.rotation_y,
            self.pixel_height,
        )

    @property
    def is_identity(self) -> bool:
        return self.to_gdal() == (0.0, 1.0, 0.0, 0.0, 0.0, 1.0)


@dataclass(frozen=True)
class PixelRecord:
    """Per-pixel columns for one tile; index ``y * width + x`` across all three."""

    lat: np.ndarray
    lon: np.ndarray
    elevation: np.ndarray

    def __post_init__(self) -> None:
        if self.lat.ndim != 1 or self.lon.ndim != 1 or self.elevation.ndim != 1:
            raise ValueError("PixelRecord columns must be 1D")
        if not (len(self.lat) == len(self.lon) == len(self.elevation)):
            raise ValueError(
                "PixelRecord columns must have equal length: "
                f"lat={len(self.lat)} lon={len(self.lon)} elevation={len(self.elevation)}"
            )

    def __len__(self) -> int:
        return int(self.lat.shape[0])


def pixel_records_from_grid(
    elevation: np.ndarray, geotransform: GeoTransform
) -> PixelRecord:
    if elevation.ndim != 2:
        raise ValueError("elevation must be a 2D (height, width) array")
    height, width = elevation.shape

    xs = np.arange(width, dtype=np.float64)
    ys = np.arange(height, dtype=np.float64)[:, np.newaxis]

    lon = np.empty((height, width), dtype=np.float64)
    lat = np.empty((height, width), dtype=np.float64)
    # Same evaluation order as GDAL: origin + x * a + y * b.
    np.add(geotransform.origin_x + xs * geotransform.pixel_width, ys * geotransform.rotation_x, out=lon)
    np.add(geotransform.origin_y + xs * geotransform.rotation_y, ys * geotransform.pixel_height, out=lat)

    return PixelRecord(
        lat=lat.reshape(-1),
        lon=lon.reshape(-1),
        elevation=np.ascontiguousarray(elevation, dtype=np.int32).reshape(-1),
    )


def read_pixel_records(path: Path) -> tuple[GeoTransform, PixelRecord]:
    """Decode band 1 of a GeoTIFF into per-pixel (lat, lon, elevation) columns."""

    key = str(path)
    try:
        with rasterio.open(path) as ds:
            if ds.count < 1:
                raise DecodeError("raster has no bands", key=key)
            geotransform = GeoTransform.from_gdal(ds.transform.to_gdal())
            if geotransform.is_identity:
                raise DecodeError("raster has no geotransform", key=key)
            elevation = ds.read(1, out_dtype="int32")
    except DecodeError:
        raise
    except (RasterioError, OSError) as exc:
        raise DecodeError(f"failed to read raster: {exc}", key=key) from exc

    return geotransform, pixel_records_from_grid(elevation, geotransform)
