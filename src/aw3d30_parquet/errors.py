from __future__ import annotations

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from aw3d30_parquet.pipeline import BatchSummary

TileStage = Literal["fetch", "decode", "encode"]


class Aw3d30Error(RuntimeError):
    pass


class CatalogError(Aw3d30Error):
    """Raised when the remote listing cannot be paginated to completion."""


class TileError(Aw3d30Error):
    stage: TileStage = "fetch"

    def __init__(self, message: str, *, key: str) -> None:
        super().__init__(f"{key}: {message}")
        self.key = key


class FetchError(TileError):
    stage: TileStage = "fetch"


class DecodeError(TileError):
    stage: TileStage = "decode"


class EncodeError(TileError):
    stage: TileStage = "encode"


class BatchAbortedError(Aw3d30Error):
    def __init__(self, message: str, *, summary: "BatchSummary") -> None:
        super().__init__(message)
        self.summary = summary
