import base64
import json
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from fsbatch.batch import Operation
from fsbatch.cli import load_batch, main, run_batch, summarize_reads
from fsbatch.decoder import ReadType
from fsbatch.errors import QuotaExceededError


def _write_batch(path, operations) -> str:
    path.write_text(json.dumps(operations))
    return str(path)


def _run_cli(argv: list[str]) -> int:
    with patch.object(sys, "argv", ["fsbatch", *argv]), patch("fsbatch.cli.configure_logging"):
        with pytest.raises(SystemExit) as exc_info:
            main()
    return exc_info.value.code


class TestLoadBatch:
    def test_loads_operations(self, tmp_path):
        batch_file = tmp_path / "batch.json"
        _write_batch(batch_file, [{"cmd": "mkdir", "name": "Foo", "force": True}])

        operations = load_batch(batch_file)

        assert operations == [Operation("mkdir", name="Foo", force=True)]

    def test_rejects_non_list(self, tmp_path):
        batch_file = tmp_path / "batch.json"
        batch_file.write_text(json.dumps({"cmd": "mkdir"}))

        with pytest.raises(ValueError, match="JSON list"):
            load_batch(batch_file)

    def test_reports_bad_operation_index(self, tmp_path):
        batch_file = tmp_path / "batch.json"
        _write_batch(batch_file, [{"cmd": "mkdir", "name": "a"}, {"cmd": "truncate"}])

        with pytest.raises(ValueError, match="Operation 1"):
            load_batch(batch_file)

    def test_rejects_invalid_json(self, tmp_path):
        batch_file = tmp_path / "batch.json"
        batch_file.write_text("[{not json")

        with pytest.raises(ValueError):
            load_batch(batch_file)


class TestSummarizeReads:
    def test_formats_each_read_type(self):
        text = Operation("read", read_type=ReadType.STRING)
        text.result.type, text.result.success, text.result.data = ReadType.STRING, True, "hi"
        raw = Operation("read", read_type=ReadType.ARRAYBUFFER)
        raw.result.type, raw.result.success, raw.result.data = ReadType.ARRAYBUFFER, True, b"\x00\x01"
        skipped = Operation("read")

        reads = summarize_reads([Operation("mkdir", name="a"), text, raw, skipped])

        assert reads == [
            {"step": 1, "type": "string", "success": True, "data": "hi"},
            {
                "step": 2,
                "type": "arraybuffer",
                "success": True,
                "data": base64.b64encode(b"\x00\x01").decode("ascii"),
            },
        ]


class TestRunCommand:
    def test_runs_batch_against_local_storage(self, tmp_path, capsys):
        data_dir = tmp_path / "data"
        batch_file = _write_batch(
            tmp_path / "batch.json",
            [
                {"cmd": "mkdir", "name": "docs", "force": True},
                {"cmd": "chdir", "name": "docs"},
                {"cmd": "open", "name": "a.txt", "create": True},
                {"cmd": "write", "data": "hello"},
                {"cmd": "read", "type": "string"},
            ],
        )

        code = _run_cli(["run", batch_file, "--data-dir", str(data_dir)])

        assert code == 0
        assert (data_dir / "persistent" / "docs" / "a.txt").read_text() == "hello"
        out = capsys.readouterr().out
        assert "[ok] 0: mkdir" in out
        assert '"data": "hello"' in out
        assert "done: true" in out

    def test_failing_batch_exits_non_zero(self, tmp_path, capsys):
        batch_file = _write_batch(
            tmp_path / "batch.json",
            [
                {"cmd": "chdir", "name": "missing"},
                {"cmd": "mkdir", "name": "never"},
            ],
        )

        code = _run_cli(["run", batch_file, "--data-dir", str(tmp_path / "data")])

        assert code == 1
        out = capsys.readouterr().out
        assert "[FAILED] 0: chdir" in out
        assert "1: mkdir" not in out
        assert not (tmp_path / "data" / "persistent" / "never").exists()

    def test_temporary_store_is_removed(self, tmp_path):
        data_dir = tmp_path / "data"
        batch_file = _write_batch(
            tmp_path / "batch.json",
            [{"cmd": "open", "name": "a.txt", "create": True}],
        )

        code = _run_cli(["run", batch_file, "--data-dir", str(data_dir), "--temporary"])

        assert code == 0
        assert list((data_dir / "temporary").iterdir()) == []

    def test_quota_is_enforced(self, tmp_path, capsys):
        batch_file = _write_batch(
            tmp_path / "batch.json",
            [
                {"cmd": "open", "name": "a.txt", "create": True},
                {"cmd": "write", "data": "more than eight bytes"},
            ],
        )

        code = _run_cli(
            ["run", batch_file, "--data-dir", str(tmp_path / "data"), "--quota-bytes", "8"]
        )

        assert code == 1
        assert "[FAILED] 1: write" in capsys.readouterr().out

    def test_invalid_batch_file(self, tmp_path, capsys):
        code = _run_cli(["run", str(tmp_path / "missing.json")])

        assert code == 1
        assert "Could not read batch file" in capsys.readouterr().out

    def test_s3_requires_bucket(self, tmp_path, monkeypatch, capsys):
        monkeypatch.delenv("FSBATCH_S3_BUCKET", raising=False)
        batch_file = _write_batch(tmp_path / "batch.json", [])

        code = _run_cli(["run", batch_file, "--storage", "s3"])

        assert code == 1
        assert "--s3-bucket" in capsys.readouterr().out


class TestVersionCommand:
    def test_prints_version(self, capsys):
        with patch.object(sys, "argv", ["fsbatch", "version"]):
            main()

        assert "fsbatch version" in capsys.readouterr().out


class TestRunBatch:
    @pytest.mark.asyncio
    async def test_closes_storage_when_session_cannot_open(self, capsys):
        storage = MagicMock(spec=["open_session", "close"])
        storage.open_session = AsyncMock(side_effect=QuotaExceededError(100, 10))
        storage.close = AsyncMock()

        result = await run_batch(storage, [], persistent=True, quota_bytes=10)

        assert result is False
        storage.close.assert_awaited_once()
        assert "Could not open storage" in capsys.readouterr().out
