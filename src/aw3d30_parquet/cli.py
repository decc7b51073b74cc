from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from aw3d30_parquet.config import PipelineConfig, get_pipeline_config
from aw3d30_parquet.errors import BatchAbortedError, CatalogError
from aw3d30_parquet.observability import configure_logging
from aw3d30_parquet.pipeline import BatchSummary, TilePipeline, run_pipeline
from aw3d30_parquet.regions import REGION_PRESETS
from aw3d30_parquet.storage import build_s3_client

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aw3d30-parquet",
        description="Convert AW3D30 elevation tiles into per-pixel Parquet files.",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to pipeline.yaml (defaults to AW3D30_PIPELINE_CONFIG / config/pipeline.yaml).",
    )
    parser.add_argument(
        "--region",
        default=None,
        help=f"Region preset or configured region (presets: {', '.join(sorted(REGION_PRESETS))})",
    )
    parser.add_argument("--raw-dir", default=None, help="Directory for fetched GeoTIFFs")
    parser.add_argument("--output-dir", default=None, help="Directory for Parquet output")
    parser.add_argument("--max-concurrent-fetches", type=int, default=None)
    parser.add_argument("--cpu-workers", type=int, default=None)
    parser.add_argument(
        "--compression",
        choices=("zstd", "snappy", "gzip", "brotli", "lz4", "none"),
        default=None,
        help="Parquet compression codec (default: zstd)",
    )
    parser.add_argument(
        "--on-error",
        dest="failure_policy",
        choices=("abort", "continue"),
        default=None,
        help="abort: stop the batch on the first tile failure (default); "
        "continue: finish remaining tiles and report failures",
    )
    parser.add_argument("--event-log", default=None, help="Append per-tile events to this JSONL file")
    parser.add_argument("--summary", default=None, help="Write the run summary JSON here")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument(
        "--log-format",
        choices=("json", "text"),
        default="json",
        help="Log output format (default: json)",
    )
    parser.add_argument(
        "--dry-run",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="List matching tiles without fetching (default: false)",
    )
    parser.add_argument(
        "--list-regions",
        action="store_true",
        help="Print available regions and exit",
    )
    return parser


def _apply_overrides(cfg: PipelineConfig, args: argparse.Namespace) -> PipelineConfig:
    update: dict[str, Any] = {}
    if args.region is not None:
        update["region"] = args.region
    if args.failure_policy is not None:
        update["failure_policy"] = args.failure_policy
    if args.event_log is not None:
        update["event_log_path"] = Path(args.event_log)
    if args.summary is not None:
        update["summary_path"] = Path(args.summary)

    paths: dict[str, Any] = {}
    if args.raw_dir is not None:
        paths["raw_dir"] = Path(args.raw_dir)
    if args.output_dir is not None:
        paths["output_dir"] = Path(args.output_dir)
    if paths:
        update["paths"] = {**cfg.paths.model_dump(), **paths}

    concurrency: dict[str, Any] = {}
    if args.max_concurrent_fetches is not None:
        concurrency["max_concurrent_fetches"] = args.max_concurrent_fetches
    if args.cpu_workers is not None:
        concurrency["cpu_workers"] = args.cpu_workers
    if concurrency:
        update["concurrency"] = {**cfg.concurrency.model_dump(), **concurrency}

    if args.compression is not None:
        update["output"] = {
            **cfg.output.model_dump(),
            "compression": args.compression,
            "compression_level": None,
        }

    if not update:
        return cfg
    return PipelineConfig.model_validate({**cfg.model_dump(), **update})


def _summary_payload(summary: BatchSummary) -> dict[str, Any]:
    return {
        "run_id": summary.run_id,
        "total": summary.total,
        "succeeded": summary.succeeded,
        "skipped": summary.skipped,
        "failed": summary.failed,
        "downloaded": summary.downloaded,
        "written": summary.written,
        "aborted": summary.aborted,
        "failures": [
            {"key": r.key, "stage": r.stage, "error": r.error}
            for r in summary.results
            if r.status == "failed"
        ],
    }


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True))


def main(argv: Optional[Sequence[str]] = None, *, client: Any = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(log_level=args.log_level, json_output=args.log_format == "json")

    try:
        cfg = _apply_overrides(get_pipeline_config(args.config_path), args)
    except (ValueError, FileNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    if args.list_regions:
        _print_json(
            {
                "presets": sorted(REGION_PRESETS),
                "configured": sorted(cfg.regions),
                "default": cfg.region,
            }
        )
        return EXIT_OK

    region = cfg.resolve_region()
    if client is None:
        client = build_s3_client(
            cfg.storage,
            max_pool_connections=cfg.concurrency.max_concurrent_fetches + 1,
        )

    try:
        if args.dry_run:
            objects = TilePipeline(client=client, config=cfg).list_tiles(region)
            _print_json(
                {
                    "region": region.name,
                    "tiles": len(objects),
                    "bytes": sum(obj.size for obj in objects),
                    "keys": [obj.key for obj in objects],
                }
            )
            return EXIT_OK

        summary = run_pipeline(cfg, client=client, region=region)
    except CatalogError as exc:
        logger.error("catalog_failed", extra={"error": str(exc)})
        return EXIT_FAILED
    except BatchAbortedError as exc:
        _print_json(_summary_payload(exc.summary))
        return EXIT_FAILED

    _print_json(_summary_payload(summary))
    return EXIT_OK if summary.ok else EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
