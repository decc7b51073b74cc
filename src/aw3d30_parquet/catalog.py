from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from botocore.exceptions import BotoCoreError, ClientError

from aw3d30_parquet.coordinates import DEFAULT_TILE_SUFFIX, parse_tile_id, tile_stem
from aw3d30_parquet.errors import CatalogError
from aw3d30_parquet.regions import Region, matches

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteObject:
    key: str
    size: int


def _iter_pages(
    client: Any,
    *,
    bucket: str,
    prefix: str,
    page_size: Optional[int],
) -> Iterator[dict[str, Any]]:
    request: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
    if page_size is not None:
        request["MaxKeys"] = int(page_size)

    page_number = 0
    while True:
        try:
            page = client.list_objects_v2(**request)
        except (BotoCoreError, ClientError) as exc:
            raise CatalogError(
                f"Failed to list s3://{bucket}/{prefix} (page {page_number + 1}): {exc}"
            ) from exc

        page_number += 1
        yield page

        if not page.get("IsTruncated"):
            break
        token = page.get("NextContinuationToken")
        if not token:
            raise CatalogError(
                f"Listing of s3://{bucket}/{prefix} is truncated but has no continuation token"
            )
        request["ContinuationToken"] = token

    logger.debug(
        "catalog_pages_drained",
        extra={"bucket": bucket, "prefix": prefix, "pages": page_number},
    )


def iter_remote_objects(
    client: Any,
    *,
    bucket: str,
    prefix: str,
    region: Optional[Region] = None,
    page_size: Optional[int] = None,
    suffix: Optional[str] = DEFAULT_TILE_SUFFIX,
) -> Iterator[RemoteObject]:
    """Yield every object under ``bucket/prefix`` in provider page order.

    With ``region`` set, keys whose stem does not parse as a tile identifier
    or whose coordinate falls outside the region are dropped.
    """

    for page in _iter_pages(client, bucket=bucket, prefix=prefix, page_size=page_size):
        for entry in page.get("Contents") or []:
            key = str(entry["Key"])
            if region is not None:
                stem = tile_stem(key)
                coordinate = parse_tile_id(stem, suffix=suffix) if stem else None
                if coordinate is None or not matches(region, coordinate):
                    continue
            yield RemoteObject(key=key, size=int(entry.get("Size") or 0))


def list_remote_objects(
    client: Any,
    *,
    bucket: str,
    prefix: str,
    region: Optional[Region] = None,
    page_size: Optional[int] = None,
    suffix: Optional[str] = DEFAULT_TILE_SUFFIX,
) -> list[RemoteObject]:
    objects = list(
        iter_remote_objects(
            client,
            bucket=bucket,
            prefix=prefix,
            region=region,
            page_size=page_size,
            suffix=suffix,
        )
    )
    logger.info(
        "catalog_listed",
        extra={
            "bucket": bucket,
            "prefix": prefix,
            "region": region.name if region is not None else None,
            "objects": len(objects),
        },
    )
    return objects
