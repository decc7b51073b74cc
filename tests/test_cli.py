from __future__ import annotations

import io
import json
import runpy
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pytest
import rasterio
from botocore.response import StreamingBody
from rasterio.transform import Affine

PREFIX = "AW3D30/AW3D30_global/"


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("aw3d30_parquet.observability._LOGGING_CONFIGURED", True)


class FakeS3Client:
    def __init__(self, objects: dict[str, bytes]) -> None:
        self._objects = objects
        self.get_calls = 0

    def list_objects_v2(self, **kwargs: Any) -> dict[str, Any]:
        return {
            "IsTruncated": False,
            "Contents": [
                {"Key": key, "Size": len(data)} for key, data in sorted(self._objects.items())
            ],
        }

    def get_object(self, **kwargs: Any) -> dict[str, Any]:
        self.get_calls += 1
        data = self._objects[kwargs["Key"]]
        return {"Body": StreamingBody(io.BytesIO(data), len(data)), "ContentLength": len(data)}


def _tile_bytes(tmp_path: Path) -> bytes:
    path = tmp_path / "src.tif"
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=1,
        width=2,
        count=1,
        dtype="int16",
        crs="EPSG:4326",
        transform=Affine(1.0, 0.0, 4.0, 0.0, -1.0, 53.0),
    ) as dst:
        dst.write(np.array([[7, 8]], dtype=np.int16), 1)
    data = path.read_bytes()
    path.unlink()
    return data


def _write_config(tmp_path: Path, **extra: str) -> Path:
    lines = [
        "storage:",
        "  bucket: raster",
        f"  prefix: {PREFIX}",
        "paths:",
        f"  raw_dir: {tmp_path / 'tif'}",
        f"  output_dir: {tmp_path / 'parquet'}",
        "region: netherlands",
    ]
    lines.extend(f"{key}: {value}" for key, value in extra.items())
    path = tmp_path / "pipeline.yaml"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def _last_json(out: str) -> dict[str, Any]:
    return json.loads(out.strip().splitlines()[-1])


def _catalog(tmp_path: Path) -> dict[str, bytes]:
    tile = _tile_bytes(tmp_path)
    return {
        f"{PREFIX}ALPSMLC30_N052E004_DSM.tif": tile,
        f"{PREFIX}ALPSMLC30_N051E005_DSM.tif": tile,
        f"{PREFIX}ALPSMLC30_S034W070_DSM.tif": tile,
        f"{PREFIX}README.txt": b"readme",
    }


def test_cli_dry_run_lists_matching_tiles(tmp_path: Path, capsys) -> None:
    from aw3d30_parquet.cli import main

    client = FakeS3Client(_catalog(tmp_path))
    config_path = _write_config(tmp_path)

    exit_code = main(["--config", str(config_path), "--dry-run"], client=client)

    assert exit_code == 0
    assert client.get_calls == 0
    payload = _last_json(capsys.readouterr().out)
    assert payload["region"] == "netherlands"
    assert payload["tiles"] == 2
    assert payload["keys"] == [
        f"{PREFIX}ALPSMLC30_N051E005_DSM.tif",
        f"{PREFIX}ALPSMLC30_N052E004_DSM.tif",
    ]
    assert not (tmp_path / "parquet").exists()


def test_cli_region_flag_overrides_config(tmp_path: Path, capsys) -> None:
    from aw3d30_parquet.cli import main

    client = FakeS3Client(_catalog(tmp_path))
    config_path = _write_config(tmp_path)

    exit_code = main(
        ["--config", str(config_path), "--region", "world", "--dry-run"], client=client
    )

    assert exit_code == 0
    assert _last_json(capsys.readouterr().out)["tiles"] == 3


def test_cli_run_writes_outputs(tmp_path: Path, capsys) -> None:
    from aw3d30_parquet.cli import main

    client = FakeS3Client(_catalog(tmp_path))
    config_path = _write_config(tmp_path)
    summary_path = tmp_path / "summary.json"

    exit_code = main(
        [
            "--config",
            str(config_path),
            "--compression",
            "snappy",
            "--summary",
            str(summary_path),
            "--log-format",
            "text",
        ],
        client=client,
    )

    assert exit_code == 0
    payload = _last_json(capsys.readouterr().out)
    assert payload["succeeded"] == 2
    assert payload["failed"] == 0
    assert payload["failures"] == []
    assert (tmp_path / "parquet" / "ALPSMLC30_N052E004_DSM.parquet").exists()
    assert json.loads(summary_path.read_text(encoding="utf-8"))["written"] == 2


def test_cli_reports_tile_failures(tmp_path: Path, capsys) -> None:
    from aw3d30_parquet.cli import main

    catalog = _catalog(tmp_path)
    catalog[f"{PREFIX}ALPSMLC30_N051E005_DSM.tif"] = b"garbage"
    config_path = _write_config(tmp_path)

    exit_code = main(
        ["--config", str(config_path), "--on-error", "continue"],
        client=FakeS3Client(catalog),
    )

    assert exit_code == 1
    payload = _last_json(capsys.readouterr().out)
    assert payload["aborted"] is False
    assert payload["failures"] == [
        {
            "key": f"{PREFIX}ALPSMLC30_N051E005_DSM.tif",
            "stage": "decode",
            "error": payload["failures"][0]["error"],
        }
    ]


def test_cli_abort_exit_code(tmp_path: Path, capsys) -> None:
    from aw3d30_parquet.cli import main

    catalog = _catalog(tmp_path)
    catalog[f"{PREFIX}ALPSMLC30_N051E005_DSM.tif"] = b"garbage"
    config_path = _write_config(tmp_path, failure_policy="abort")

    exit_code = main(["--config", str(config_path)], client=FakeS3Client(catalog))

    assert exit_code == 1
    assert _last_json(capsys.readouterr().out)["aborted"] is True


def test_cli_invalid_config_is_a_usage_error(tmp_path: Path, capsys) -> None:
    from aw3d30_parquet.cli import main

    config_path = _write_config(tmp_path, region="atlantis")

    assert main(["--config", str(config_path)], client=FakeS3Client({})) == 2
    assert "Unknown region" in capsys.readouterr().err


def test_cli_rejects_out_of_range_override(tmp_path: Path, capsys) -> None:
    from aw3d30_parquet.cli import main

    config_path = _write_config(tmp_path)

    exit_code = main(
        ["--config", str(config_path), "--max-concurrent-fetches", "0", "--dry-run"],
        client=FakeS3Client({}),
    )
    assert exit_code == 2


def test_module_entrypoint_lists_regions(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys
) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("AW3D30_PIPELINE_CONFIG", raising=False)
    monkeypatch.setattr(sys, "argv", ["aw3d30-parquet", "--list-regions"])

    with pytest.raises(SystemExit) as excinfo:
        runpy.run_module("aw3d30_parquet", run_name="__main__")

    assert excinfo.value.code == 0
    payload = _last_json(capsys.readouterr().out)
    assert payload["presets"] == ["europe", "netherlands", "world"]
    assert payload["configured"] == []
    assert payload["default"] == "world"
