from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from aw3d30_parquet.catalog import RemoteObject
from aw3d30_parquet.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class FetchOutcome:
    path: Path
    downloaded: bool
    bytes_written: int


def local_path_for(key: str, local_dir: Path) -> Path:
    name = PurePosixPath(key).name
    if name in {"", ".", ".."}:
        raise ValueError(f"Object key has no file name: {key!r}")
    return local_dir / name


def _local_size(path: Path) -> int | None:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return None


def fetch_object(
    client: Any,
    obj: RemoteObject,
    *,
    bucket: str,
    local_dir: Path,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> FetchOutcome:
    """Download ``obj`` into ``local_dir`` unless a same-sized copy exists.

    The body is streamed to ``<name>.part`` and only renamed into place once
    the byte count matches ``obj.size``, so a file at the final path is always
    complete.
    """

    dest = local_path_for(obj.key, local_dir)
    try:
        if _local_size(dest) == obj.size:
            logger.debug(
                "tile_fetch_skipped",
                extra={"key": obj.key, "path": str(dest), "size": obj.size},
            )
            return FetchOutcome(path=dest, downloaded=False, bytes_written=0)
        local_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FetchError(f"cannot prepare {dest}: {exc}", key=obj.key) from exc

    part = dest.with_name(dest.name + ".part")
    bytes_written = 0
    try:
        try:
            response = client.get_object(Bucket=bucket, Key=obj.key)
        except (BotoCoreError, ClientError) as exc:
            raise FetchError(f"get_object failed: {exc}", key=obj.key) from exc

        content_length = response.get("ContentLength")
        body = response["Body"]
        try:
            if content_length is not None and int(content_length) != obj.size:
                raise FetchError(
                    f"Remote size mismatch: listed={obj.size} content_length={content_length}",
                    key=obj.key,
                )
            with part.open("wb") as handle:
                for chunk in body.iter_chunks(chunk_size=chunk_size):
                    if chunk:
                        handle.write(chunk)
                        bytes_written += len(chunk)
        finally:
            body.close()

        if bytes_written != obj.size:
            raise FetchError(
                f"Size mismatch: expected={obj.size} actual={bytes_written}",
                key=obj.key,
            )
        part.replace(dest)
    except FetchError:
        part.unlink(missing_ok=True)
        raise
    except (BotoCoreError, ClientError, OSError) as exc:
        part.unlink(missing_ok=True)
        raise FetchError(f"download failed: {exc}", key=obj.key) from exc

    logger.debug(
        "tile_fetched",
        extra={"key": obj.key, "path": str(dest), "bytes": bytes_written},
    )
    return FetchOutcome(path=dest, downloaded=True, bytes_written=bytes_written)
