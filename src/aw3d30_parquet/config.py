from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Final, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from aw3d30_parquet.coordinates import DEFAULT_TILE_SUFFIX
from aw3d30_parquet.regions import REGION_PRESETS, Region, band, resolve_region

SUPPORTED_SCHEMA_VERSIONS: Final[set[int]] = {1}

DEFAULT_PIPELINE_CONFIG_PATH: Final[Path] = Path("config") / "pipeline.yaml"
DEFAULT_PIPELINE_CONFIG_ENV: Final[str] = "AW3D30_PIPELINE_CONFIG"

CompressionCodec = Literal["zstd", "snappy", "gzip", "brotli", "lz4", "none"]
FailurePolicy = Literal["abort", "continue"]


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    endpoint_url: Optional[str] = "https://opentopography.s3.sdsc.edu"
    region_name: Optional[str] = None
    bucket: str = "raster"
    prefix: str = "AW3D30/AW3D30_global/"
    anonymous: bool = True
    page_size: Optional[int] = Field(default=None, ge=1, le=1000)

    @model_validator(mode="after")
    def _validate_bucket(self) -> "StorageConfig":
        if self.bucket.strip() == "":
            raise ValueError("storage.bucket must not be empty")
        return self


class PathsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    raw_dir: Path = Path("tif")
    output_dir: Path = Path("parquet")


class ConcurrencyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_concurrent_fetches: int = Field(default=8, ge=1, le=64)
    # None = os.cpu_count()
    cpu_workers: Optional[int] = Field(default=None, ge=1, le=256)
    chunk_size: int = Field(default=1024 * 1024, ge=4096)


class OutputConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    compression: CompressionCodec = "zstd"
    compression_level: Optional[int] = None


class BandConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lat_hemisphere: Literal["N", "S"]
    lat_min: int = Field(ge=0, le=90)
    lat_max: int = Field(ge=0, le=90)
    lon_hemisphere: Literal["E", "W"]
    lon_min: int = Field(ge=0, le=180)
    lon_max: int = Field(ge=0, le=180)

    @model_validator(mode="after")
    def _validate_order(self) -> "BandConfig":
        if self.lat_min > self.lat_max:
            raise ValueError("lat_min must be <= lat_max")
        if self.lon_min > self.lon_max:
            raise ValueError("lon_min must be <= lon_max")
        return self


class PipelineConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1

    storage: StorageConfig = Field(default_factory=StorageConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    region: str = "world"
    regions: dict[str, list[BandConfig]] = Field(default_factory=dict)
    tile_suffix: str = DEFAULT_TILE_SUFFIX

    failure_policy: FailurePolicy = "abort"
    progress_log_every: int = Field(default=50, ge=1, le=100_000)

    event_log_path: Optional[Path] = None
    summary_path: Optional[Path] = None

    @model_validator(mode="after")
    def _validate(self) -> "PipelineConfig":
        if self.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
            raise ValueError(
                f"Unsupported pipeline schema_version={self.schema_version}; "
                f"supported versions: {sorted(SUPPORTED_SCHEMA_VERSIONS)}"
            )
        normalized: dict[str, list[BandConfig]] = {}
        for name, bands in self.regions.items():
            key = name.strip().lower()
            if key == "":
                raise ValueError("region names must not be empty")
            if key in REGION_PRESETS:
                raise ValueError(f"region {name!r} shadows a built-in preset")
            normalized[key] = bands
        self.regions = normalized
        resolve_region(self.region, extra=self.custom_regions())
        return self

    def custom_regions(self) -> dict[str, Region]:
        return {
            name: Region(
                name=name,
                bands=tuple(
                    band(
                        item.lat_hemisphere,
                        item.lat_min,
                        item.lat_max,
                        item.lon_hemisphere,
                        item.lon_min,
                        item.lon_max,
                    )
                    for item in bands
                ),
            )
            for name, bands in self.regions.items()
        }

    def resolve_region(self, name: Optional[str] = None) -> Region:
        return resolve_region(name or self.region, extra=self.custom_regions())


def _resolve_config_path(path: Optional[Union[str, Path]]) -> tuple[Path, bool]:
    """Return the config path and whether it was requested explicitly."""

    if path is not None:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = (Path.cwd() / candidate).resolve()
        return candidate, True

    explicit = os.environ.get(DEFAULT_PIPELINE_CONFIG_ENV)
    if explicit:
        candidate = Path(explicit).expanduser()
        if not candidate.is_absolute():
            candidate = (Path.cwd() / candidate).resolve()
        return candidate, True

    return Path.cwd() / DEFAULT_PIPELINE_CONFIG_PATH, False


def _parse_yaml(text: str, *, source: Path) -> Mapping[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Failed to load pipeline YAML: {source}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"pipeline config must be a mapping: {source}")
    return data


def load_pipeline_config(path: Union[str, Path]) -> PipelineConfig:
    config_path = Path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"pipeline config file not found: {config_path}")

    raw_text = config_path.read_text(encoding="utf-8")
    data = dict(_parse_yaml(raw_text, source=config_path))

    try:
        return PipelineConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid pipeline config ({config_path}): {exc}") from exc


@lru_cache(maxsize=8)
def _get_pipeline_config_cached(
    config_path: str, mtime_ns: int, size: int
) -> PipelineConfig:
    _ = (mtime_ns, size)
    return load_pipeline_config(config_path)


def get_pipeline_config(path: Optional[Union[str, Path]] = None) -> PipelineConfig:
    resolved, explicit = _resolve_config_path(path)
    try:
        stat = resolved.stat()
    except FileNotFoundError as exc:
        if not explicit:
            return PipelineConfig()
        raise FileNotFoundError(f"pipeline config file not found: {resolved}") from exc
    return _get_pipeline_config_cached(str(resolved), stat.st_mtime_ns, stat.st_size)


get_pipeline_config.cache_clear = _get_pipeline_config_cached.cache_clear  # type: ignore[attr-defined]
