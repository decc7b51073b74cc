from aw3d30_parquet.catalog import RemoteObject, iter_remote_objects, list_remote_objects
from aw3d30_parquet.columnar import WriteOptions, build_write_options, write_pixel_records
from aw3d30_parquet.config import PipelineConfig, get_pipeline_config, load_pipeline_config
from aw3d30_parquet.coordinates import Coordinate, parse_tile_id
from aw3d30_parquet.errors import (
    BatchAbortedError,
    CatalogError,
    DecodeError,
    EncodeError,
    FetchError,
)
from aw3d30_parquet.fetcher import fetch_object
from aw3d30_parquet.pipeline import BatchSummary, TilePipeline, TileResult, run_pipeline
from aw3d30_parquet.raster import GeoTransform, PixelRecord, read_pixel_records
from aw3d30_parquet.regions import REGION_PRESETS, Region, matches, resolve_region

__version__ = "0.3.0"

__all__ = [
    "BatchAbortedError",
    "BatchSummary",
    "CatalogError",
    "Coordinate",
    "DecodeError",
    "EncodeError",
    "FetchError",
    "GeoTransform",
    "PipelineConfig",
    "PixelRecord",
    "REGION_PRESETS",
    "Region",
    "RemoteObject",
    "TilePipeline",
    "TileResult",
    "WriteOptions",
    "build_write_options",
    "fetch_object",
    "get_pipeline_config",
    "iter_remote_objects",
    "list_remote_objects",
    "load_pipeline_config",
    "matches",
    "parse_tile_id",
    "read_pixel_records",
    "resolve_region",
    "run_pipeline",
    "write_pixel_records",
]
