from __future__ import annotations

import warnings
from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.transform import Affine


def _write_geotiff(path: Path, data: np.ndarray, transform: Affine | None) -> Path:
    height, width = data.shape
    profile = {
        "driver": "GTiff",
        "height": height,
        "width": width,
        "count": 1,
        "dtype": str(data.dtype),
    }
    if transform is not None:
        profile["transform"] = transform
        profile["crs"] = "EPSG:4326"
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        with rasterio.open(path, "w", **profile) as dst:
            dst.write(data, 1)
    return path


def test_single_row_raster_produces_expected_records(tmp_path: Path) -> None:
    from aw3d30_parquet.raster import read_pixel_records

    path = _write_geotiff(
        tmp_path / "scenario.tif",
        np.array([[100, 200]], dtype=np.int16),
        Affine(1.0, 0.0, 10.0, 0.0, -1.0, 50.0),
    )

    geotransform, record = read_pixel_records(path)

    assert geotransform.to_gdal() == (10.0, 1.0, 0.0, 50.0, 0.0, -1.0)
    assert len(record) == 2
    assert record.lat.tolist() == [50.0, 50.0]
    assert record.lon.tolist() == [10.0, 11.0]
    assert record.elevation.tolist() == [100, 200]
    assert record.elevation.dtype == np.int32
    assert record.lat.dtype == np.float64


def test_grid_is_flattened_row_major_with_rotation_terms() -> None:
    from aw3d30_parquet.raster import GeoTransform, pixel_records_from_grid

    height, width = 3, 4
    elevation = np.arange(height * width, dtype=np.int16).reshape(height, width) - 5
    gt = GeoTransform.from_gdal((4.0, 0.25, 0.01, 53.0, 0.02, -0.5))

    record = pixel_records_from_grid(elevation, gt)

    assert len(record) == height * width
    for y in range(height):
        for x in range(width):
            index = y * width + x
            assert record.elevation[index] == elevation[y, x]
            assert record.lon[index] == pytest.approx(4.0 + x * 0.25 + y * 0.01)
            assert record.lat[index] == pytest.approx(53.0 + x * 0.02 + y * -0.5)


def test_negative_elevations_survive_widening(tmp_path: Path) -> None:
    from aw3d30_parquet.raster import read_pixel_records

    path = _write_geotiff(
        tmp_path / "dead_sea.tif",
        np.array([[-430, -9999], [0, 32767]], dtype=np.int16),
        Affine(0.5, 0.0, 35.0, 0.0, -0.5, 32.0),
    )

    _, record = read_pixel_records(path)

    assert record.elevation.tolist() == [-430, -9999, 0, 32767]
    assert record.lat.tolist() == [32.0, 32.0, 31.5, 31.5]
    assert record.lon.tolist() == [35.0, 35.5, 35.0, 35.5]


def test_pixel_record_rejects_ragged_columns() -> None:
    from aw3d30_parquet.raster import PixelRecord

    with pytest.raises(ValueError, match="equal length"):
        PixelRecord(
            lat=np.zeros(3),
            lon=np.zeros(3),
            elevation=np.zeros(2, dtype=np.int32),
        )
    with pytest.raises(ValueError, match="1D"):
        PixelRecord(
            lat=np.zeros((2, 2)),
            lon=np.zeros(4),
            elevation=np.zeros(4, dtype=np.int32),
        )


def test_geotransform_requires_six_coefficients() -> None:
    from aw3d30_parquet.raster import GeoTransform

    with pytest.raises(ValueError, match="Expected 6"):
        GeoTransform.from_gdal((1.0, 2.0, 3.0))
    assert GeoTransform.from_gdal((0, 1, 0, 0, 0, 1)).is_identity


def test_missing_file_is_a_decode_error(tmp_path: Path) -> None:
    from aw3d30_parquet.errors import DecodeError
    from aw3d30_parquet.raster import read_pixel_records

    with pytest.raises(DecodeError, match="failed to read raster") as excinfo:
        read_pixel_records(tmp_path / "absent.tif")
    assert excinfo.value.stage == "decode"


def test_corrupt_file_is_a_decode_error(tmp_path: Path) -> None:
    from aw3d30_parquet.errors import DecodeError
    from aw3d30_parquet.raster import read_pixel_records

    path = tmp_path / "ALPSMLC30_N052E004_DSM.tif"
    path.write_bytes(b"II*\x00not really a tiff")

    with pytest.raises(DecodeError):
        read_pixel_records(path)


def test_raster_without_geotransform_is_rejected(tmp_path: Path) -> None:
    from aw3d30_parquet.errors import DecodeError
    from aw3d30_parquet.raster import read_pixel_records

    path = _write_geotiff(
        tmp_path / "plain.tif", np.array([[1, 2]], dtype=np.int16), None
    )

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        with pytest.raises(DecodeError, match="no geotransform"):
            read_pixel_records(path)
