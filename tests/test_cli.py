"""
Tests for the CLI helpers.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pika.exceptions import AMQPConnectionError

from jobbridge.cli import build_parser, main, parse_input_params, run_worker
from jobbridge.config import BridgeConfig


class TestParseInputParams:

    def test_types(self):
        params = parse_input_params(["key=k1", "days=3", "ratio=0.5", "urgent=true", "note=a=b"])
        assert params == {"key": "k1", "days": 3, "ratio": 0.5, "urgent": True, "note": "a=b"}

    def test_none(self):
        assert parse_input_params(None) == {}

    def test_rejects_missing_equals(self):
        with pytest.raises(ValueError):
            parse_input_params(["key"])


class TestParser:

    def test_worker(self):
        args = build_parser().parse_args(["worker", "--resource", "r.yaml", "-i", "key=k1"])
        assert (args.command, args.resource, args.input) == ("worker", "r.yaml", ["key=k1"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


def test_main_reports_bad_config(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("jobbridge:\n  worker:\n    max_jobs_active: 0\n")
    assert main(["--config", str(path), "consume"]) == 1


async def test_worker_closes_engine_when_broker_unreachable():
    engine = MagicMock()
    engine.connect = AsyncMock(return_value=engine)
    engine.topology = AsyncMock(return_value="topology")
    engine.close = AsyncMock()

    with patch("jobbridge.cli.EngineClient", return_value=engine), \
            patch("jobbridge.cli.Producer") as producer_cls:
        producer_cls.return_value.connect.side_effect = AMQPConnectionError("refused")

        with pytest.raises(AMQPConnectionError):
            await run_worker(BridgeConfig.from_dict({}, environ={}))

    engine.close.assert_awaited_once()
    producer_cls.return_value.close.assert_not_called()
