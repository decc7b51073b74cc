from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore import UNSIGNED
from botocore.config import Config

from aw3d30_parquet.config import StorageConfig
from aw3d30_parquet.settings import StorageSettings


def build_s3_client(
    config: StorageConfig,
    *,
    settings: Optional[StorageSettings] = None,
    max_pool_connections: int = 10,
) -> Any:
    """Create one S3 client for the whole batch.

    botocore clients are thread-safe, so the same instance is shared by the
    listing call and every concurrent fetch.
    """

    settings = settings or StorageSettings()
    client_config = Config(max_pool_connections=max(1, int(max_pool_connections)))

    credentials: dict[str, Any] = {}
    if settings.has_credentials:
        credentials = {
            "aws_access_key_id": settings.access_key_id.get_secret_value(),  # type: ignore[union-attr]
            "aws_secret_access_key": settings.secret_access_key.get_secret_value(),  # type: ignore[union-attr]
        }
        if settings.session_token is not None:
            credentials["aws_session_token"] = settings.session_token.get_secret_value()
    elif config.anonymous:
        client_config = client_config.merge(Config(signature_version=UNSIGNED))

    return boto3.client(
        "s3",
        endpoint_url=settings.endpoint_url or config.endpoint_url,
        region_name=settings.region_name or config.region_name,
        config=client_config,
        **credentials,
    )
