from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Final, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from aw3d30_parquet.errors import EncodeError
from aw3d30_parquet.raster import PixelRecord

logger = logging.getLogger(__name__)

PARQUET_SUFFIX: Final[str] = ".parquet"
SUPPORTED_CODECS: Final[frozenset[str]] = frozenset(
    {"zstd", "snappy", "gzip", "brotli", "lz4", "none"}
)

ELEVATION_SCHEMA: Final[pa.Schema] = pa.schema(
    [
        pa.field("lat", pa.float64(), nullable=False),
        pa.field("lon", pa.float64(), nullable=False),
        pa.field("elevation", pa.int32(), nullable=False),
    ]
)


@dataclass(frozen=True)
class WriteOptions:
    schema: pa.Schema = field(default_factory=lambda: ELEVATION_SCHEMA)
    compression: str = "zstd"
    compression_level: Optional[int] = None


def build_write_options(
    compression: str = "zstd", compression_level: Optional[int] = None
) -> WriteOptions:
    codec = (compression or "").strip().lower()
    if codec not in SUPPORTED_CODECS:
        raise ValueError(
            f"Unsupported compression={compression!r}; expected one of: "
            f"{', '.join(sorted(SUPPORTED_CODECS))}"
        )
    if codec == "none" and compression_level is not None:
        raise ValueError("compression_level requires a compression codec")
    return WriteOptions(compression=codec, compression_level=compression_level)


def output_path_for(key: str, output_dir: Path) -> Path:
    name = PurePosixPath(key).name
    if name in {"", ".", ".."}:
        raise ValueError(f"Object key has no file name: {key!r}")
    return output_dir / PurePosixPath(name).with_suffix(PARQUET_SUFFIX).name


def _to_table(record: PixelRecord, schema: pa.Schema) -> pa.Table:
    return pa.Table.from_arrays(
        [
            pa.array(record.lat, type=pa.float64()),
            pa.array(record.lon, type=pa.float64()),
            pa.array(record.elevation, type=pa.int32()),
        ],
        schema=schema,
    )


def write_pixel_records(
    record: PixelRecord,
    output_path: Path,
    options: WriteOptions,
) -> bool:
    """Write ``record`` as a single row group; return False if already present."""

    if output_path.exists():
        logger.debug("tile_write_skipped", extra={"path": str(output_path)})
        return False

    tmp_path = output_path.with_name(output_path.name + ".tmp")
    key = str(output_path)
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise EncodeError(f"cannot prepare {output_path.parent}: {exc}", key=key) from exc

    try:
        table = _to_table(record, options.schema)
        with pq.ParquetWriter(
            tmp_path,
            options.schema,
            compression=options.compression,
            compression_level=options.compression_level,
        ) as writer:
            writer.write_table(table, row_group_size=max(1, table.num_rows))
        tmp_path.replace(output_path)
    except (pa.ArrowException, OSError, ValueError) as exc:
        tmp_path.unlink(missing_ok=True)
        raise EncodeError(f"failed to write parquet: {exc}", key=key) from exc

    logger.debug(
        "tile_written",
        extra={"path": key, "rows": len(record), "compression": options.compression},
    )
    return True
