from __future__ import annotations

import asyncio
import contextvars
import functools
import json
import logging
import os
import time
import uuid
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Literal, Optional, Sequence, TypeVar

from aw3d30_parquet.catalog import RemoteObject, list_remote_objects
from aw3d30_parquet.columnar import (
    WriteOptions,
    build_write_options,
    output_path_for,
    write_pixel_records,
)
from aw3d30_parquet.config import PipelineConfig
from aw3d30_parquet.errors import BatchAbortedError, TileError, TileStage
from aw3d30_parquet.events import JsonlEventLog
from aw3d30_parquet.fetcher import fetch_object
from aw3d30_parquet.observability import run_context, tile_context
from aw3d30_parquet.raster import read_pixel_records
from aw3d30_parquet.regions import Region
from aw3d30_parquet.storage import build_s3_client

logger = logging.getLogger(__name__)

T = TypeVar("T")

TileStatus = Literal["success", "skipped", "failed"]


@dataclass(frozen=True)
class TileResult:
    key: str
    status: TileStatus
    downloaded: bool = False
    written: bool = False
    rows: int = 0
    stage: Optional[str] = None
    error: Optional[str] = None
    duration_s: float = 0.0


@dataclass(frozen=True)
class BatchSummary:
    run_id: str
    total: int
    succeeded: int
    skipped: int
    failed: int
    downloaded: int
    written: int
    duration_s: float
    aborted: bool = False
    results: Sequence[TileResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0 and not self.aborted

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "downloaded": self.downloaded,
            "written": self.written,
            "duration_s": self.duration_s,
            "aborted": self.aborted,
            "results": [asdict(result) for result in self.results],
        }


@dataclass(frozen=True)
class ConvertOutcome:
    written: bool
    rows: int


def convert_tile(raw_path: Path, output_path: Path, options: WriteOptions) -> ConvertOutcome:
    """Decode then encode one tile; runs on the CPU pool."""

    if output_path.exists():
        return ConvertOutcome(written=False, rows=0)
    _, record = read_pixel_records(raw_path)
    written = write_pixel_records(record, output_path, options)
    return ConvertOutcome(written=written, rows=len(record))


def write_summary(summary: BatchSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(
        json.dumps(summary.to_dict(), ensure_ascii=False, indent=2) + "\n",
        encoding="utf-8",
    )
    tmp_path.replace(path)


def _summarize(
    run_id: str,
    results: list[TileResult],
    *,
    total: int,
    duration_s: float,
    aborted: bool,
) -> BatchSummary:
    return BatchSummary(
        run_id=run_id,
        total=total,
        succeeded=sum(1 for r in results if r.status == "success"),
        skipped=sum(1 for r in results if r.status == "skipped"),
        failed=sum(1 for r in results if r.status == "failed"),
        downloaded=sum(1 for r in results if r.downloaded),
        written=sum(1 for r in results if r.written),
        duration_s=duration_s,
        aborted=aborted,
        results=results,
    )


class TilePipeline:
    """Drive listing -> fetch -> decode -> encode for every tile of a batch.

    Fetches are admitted through a semaphore and run on an I/O thread pool;
    decode and encode run on a separate CPU pool so they never occupy a
    fetch slot or the event loop.
    """

    def __init__(
        self,
        *,
        client: Any,
        config: PipelineConfig,
        event_log: Optional[JsonlEventLog] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self._client = client
        self._config = config
        self._write_options = build_write_options(
            config.output.compression, config.output.compression_level
        )
        if event_log is None and config.event_log_path is not None:
            event_log = JsonlEventLog(config.event_log_path)
        self._event_log = event_log
        self._run_id = run_id or uuid.uuid4().hex
        self._max_fetches = int(config.concurrency.max_concurrent_fetches)
        self._cpu_workers = int(config.concurrency.cpu_workers or os.cpu_count() or 1)

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def write_options(self) -> WriteOptions:
        return self._write_options

    def list_tiles(self, region: Optional[Region] = None) -> list[RemoteObject]:
        storage = self._config.storage
        return list_remote_objects(
            self._client,
            bucket=storage.bucket,
            prefix=storage.prefix,
            region=region or self._config.resolve_region(),
            page_size=storage.page_size,
            suffix=self._config.tile_suffix,
        )

    async def _in_executor(
        self, executor: Executor, fn: Callable[..., T], *args: Any, **kwargs: Any
    ) -> T:
        loop = asyncio.get_running_loop()
        ctx = contextvars.copy_context()
        return await loop.run_in_executor(
            executor, functools.partial(ctx.run, fn, *args, **kwargs)
        )

    def _record_event(
        self, key: str, stage: str, outcome: str, **payload: Any
    ) -> None:
        if self._event_log is None:
            return
        self._event_log.record(
            run_id=self._run_id, key=key, stage=stage, outcome=outcome, payload=payload
        )

    def _failed_result(
        self,
        obj: RemoteObject,
        *,
        stage: TileStage,
        error: str,
        downloaded: bool,
        t0: float,
        exc_info: bool = False,
    ) -> TileResult:
        duration_s = time.perf_counter() - t0
        logger.error(
            "tile_failed",
            extra={
                "key": obj.key,
                "stage": stage,
                "error": error,
                "duration_s": duration_s,
            },
            exc_info=exc_info,
        )
        self._record_event(obj.key, stage, "failed", error=error)
        return TileResult(
            key=obj.key,
            status="failed",
            downloaded=downloaded,
            stage=stage,
            error=error,
            duration_s=duration_s,
        )

    async def _process_tile(
        self,
        obj: RemoteObject,
        *,
        fetch_slots: asyncio.Semaphore,
        io_pool: Executor,
        cpu_pool: Executor,
    ) -> TileResult:
        paths = self._config.paths
        t0 = time.perf_counter()
        with tile_context(obj.key):
            downloaded = False
            stage: TileStage = "fetch"
            try:
                async with fetch_slots:
                    fetched = await self._in_executor(
                        io_pool,
                        fetch_object,
                        self._client,
                        obj,
                        bucket=self._config.storage.bucket,
                        local_dir=paths.raw_dir,
                        chunk_size=self._config.concurrency.chunk_size,
                    )
                downloaded = fetched.downloaded
                self._record_event(
                    obj.key,
                    "fetch",
                    "downloaded" if downloaded else "skipped",
                    bytes=fetched.bytes_written,
                )

                # Decode and encode share one CPU job.
                stage = "decode"
                converted = await self._in_executor(
                    cpu_pool,
                    convert_tile,
                    fetched.path,
                    output_path_for(obj.key, paths.output_dir),
                    self._write_options,
                )
                self._record_event(
                    obj.key,
                    "encode",
                    "written" if converted.written else "skipped",
                    rows=converted.rows,
                )
            except TileError as exc:
                return self._failed_result(
                    obj, stage=exc.stage, error=str(exc), downloaded=downloaded, t0=t0
                )
            except Exception as exc:  # noqa: BLE001
                return self._failed_result(
                    obj,
                    stage=stage,
                    error=f"{obj.key}: {type(exc).__name__}: {exc}",
                    downloaded=downloaded,
                    t0=t0,
                    exc_info=True,
                )

            duration_s = time.perf_counter() - t0
            status: TileStatus = (
                "success" if (downloaded or converted.written) else "skipped"
            )
            logger.info(
                "tile_finished",
                extra={
                    "key": obj.key,
                    "status": status,
                    "downloaded": downloaded,
                    "written": converted.written,
                    "rows": converted.rows,
                    "duration_s": duration_s,
                },
            )
            return TileResult(
                key=obj.key,
                status=status,
                downloaded=downloaded,
                written=converted.written,
                rows=converted.rows,
                duration_s=duration_s,
            )

    async def run(
        self,
        objects: Optional[Sequence[RemoteObject]] = None,
        *,
        region: Optional[Region] = None,
    ) -> BatchSummary:
        with run_context(self._run_id):
            return await self._run(objects, region=region)

    async def _run(
        self,
        objects: Optional[Sequence[RemoteObject]],
        *,
        region: Optional[Region],
    ) -> BatchSummary:
        t0 = time.perf_counter()
        io_pool = ThreadPoolExecutor(
            max_workers=self._max_fetches, thread_name_prefix="aw3d30-io"
        )
        cpu_pool = ThreadPoolExecutor(
            max_workers=self._cpu_workers, thread_name_prefix="aw3d30-cpu"
        )
        tasks: list[asyncio.Task[TileResult]] = []
        aborted_by: Optional[TileResult] = None
        try:
            if objects is None:
                objects = await self._in_executor(io_pool, self.list_tiles, region)
            total = len(objects)

            self._config.paths.raw_dir.mkdir(parents=True, exist_ok=True)
            self._config.paths.output_dir.mkdir(parents=True, exist_ok=True)

            logger.info(
                "pipeline_started",
                extra={
                    "total_tiles": total,
                    "max_concurrent_fetches": self._max_fetches,
                    "cpu_workers": self._cpu_workers,
                    "failure_policy": self._config.failure_policy,
                    "compression": self._write_options.compression,
                },
            )

            fetch_slots = asyncio.Semaphore(self._max_fetches)
            tasks = [
                asyncio.create_task(
                    self._process_tile(
                        obj, fetch_slots=fetch_slots, io_pool=io_pool, cpu_pool=cpu_pool
                    )
                )
                for obj in objects
            ]

            completed = 0
            failed = 0
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                completed += 1
                if result.status == "failed":
                    failed += 1
                if (
                    completed == total
                    or completed % self._config.progress_log_every == 0
                ):
                    logger.info(
                        "pipeline_progress",
                        extra={"completed": completed, "total_tiles": total, "failed": failed},
                    )
                if result.status == "failed" and self._config.failure_policy == "abort":
                    aborted_by = result
                    break
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            io_pool.shutdown(wait=True, cancel_futures=True)
            cpu_pool.shutdown(wait=True, cancel_futures=True)

        results = [
            task.result()
            for task in tasks
            if task.done() and not task.cancelled() and task.exception() is None
        ]
        summary = _summarize(
            self._run_id,
            results,
            total=len(tasks),
            duration_s=time.perf_counter() - t0,
            aborted=aborted_by is not None,
        )
        logger.info(
            "pipeline_finished",
            extra={
                "total_tiles": summary.total,
                "succeeded": summary.succeeded,
                "skipped": summary.skipped,
                "failed": summary.failed,
                "downloaded": summary.downloaded,
                "written": summary.written,
                "aborted": summary.aborted,
                "duration_s": summary.duration_s,
            },
        )
        if self._config.summary_path is not None:
            write_summary(summary, self._config.summary_path)

        if aborted_by is not None:
            raise BatchAbortedError(
                f"Batch {self._run_id} aborted: {aborted_by.error}",
                summary=summary,
            )
        return summary


def run_pipeline(
    config: PipelineConfig,
    *,
    client: Any = None,
    region: Optional[Region] = None,
    objects: Optional[Sequence[RemoteObject]] = None,
    event_log: Optional[JsonlEventLog] = None,
) -> BatchSummary:
    if client is None:
        client = build_s3_client(
            config.storage,
            max_pool_connections=config.concurrency.max_concurrent_fetches + 1,
        )
    pipeline = TilePipeline(client=client, config=config, event_log=event_log)
    return asyncio.run(pipeline.run(objects, region=region))
