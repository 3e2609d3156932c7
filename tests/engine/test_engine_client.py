"""
Tests for EngineClient with a mocked Temporal client.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from temporalio.service import RPCError, RPCStatusCode

from jobbridge.config import EngineConfig
from jobbridge.engine import keys
from jobbridge.engine.client import BlockingEngineClient, EngineClient, translate_rpc_error
from jobbridge.errors import EngineError, EngineUnavailableError, JobNotFoundError

RESOURCE = Path(__file__).resolve().parents[2] / "resources" / "vacation.yaml"


def rpc_error(status: RPCStatusCode) -> RPCError:
    return RPCError("rejected", status, b"")


@pytest.fixture
def temporal():
    client = MagicMock()
    client.start_workflow = AsyncMock()
    handle = MagicMock()
    handle.complete = AsyncMock()
    client.get_async_activity_handle.return_value = handle
    return client


@pytest.fixture
def engine(temporal):
    engine = EngineClient(EngineConfig(), key_generator=keys.InstanceKeyGenerator(clock=lambda: 1_700_000_000.0))
    engine._client = temporal
    return engine


class TestTranslateRpcError:

    def test_not_found(self):
        error = translate_rpc_error(rpc_error(RPCStatusCode.NOT_FOUND), job_key=7)
        assert isinstance(error, JobNotFoundError)
        assert error.job_key == 7

    @pytest.mark.parametrize("status", [
        RPCStatusCode.UNAVAILABLE,
        RPCStatusCode.DEADLINE_EXCEEDED,
        RPCStatusCode.RESOURCE_EXHAUSTED,
    ])
    def test_transient(self, status):
        assert isinstance(translate_rpc_error(rpc_error(status)), EngineUnavailableError)

    def test_other(self):
        error = translate_rpc_error(rpc_error(RPCStatusCode.PERMISSION_DENIED))
        assert type(error) is EngineError


class TestDeploy:

    def test_versions_increase(self, engine):
        first = engine.deploy_process(RESOURCE)
        second = engine.deploy_process(RESOURCE)

        assert first.processes[0].version == 1
        assert second.processes[0].version == 2
        assert second.processes[0].resource_name == "vacation.yaml"
        assert engine.latest_definition("vacation")[1] == 2

    def test_missing_resource(self, engine, tmp_path):
        with pytest.raises(EngineError):
            engine.deploy_process(tmp_path / "missing.yaml")

    def test_not_deployed(self, engine):
        with pytest.raises(EngineError):
            engine.latest_definition("vacation")


class TestCreateProcessInstance:

    async def test_starts_workflow(self, engine, temporal):
        temporal.start_workflow.return_value = MagicMock(id="process-instance-1", first_execution_run_id="run-1")
        engine.deploy_process(RESOURCE)

        instance = await engine.create_process_instance("vacation", {"value": "v2"})

        payload = temporal.start_workflow.call_args.args[1]
        kwargs = temporal.start_workflow.call_args.kwargs
        assert kwargs["id"] == keys.workflow_id(instance.key)
        assert kwargs["task_queue"] == "jobbridge-processes"
        assert payload["variables"] == {"value": "v2"}
        assert payload["definition"]["id"] == "vacation"
        assert instance.run_id == "run-1"

    async def test_translates_rpc_error(self, engine, temporal):
        temporal.start_workflow.side_effect = rpc_error(RPCStatusCode.UNAVAILABLE)
        engine.deploy_process(RESOURCE)

        with pytest.raises(EngineUnavailableError):
            await engine.create_process_instance("vacation")


class TestCompleteJob:

    async def test_completes_activity_by_key(self, engine, temporal):
        job_key = keys.job_key(1234, 0)

        await engine.complete_job(job_key)

        temporal.get_async_activity_handle.assert_called_once_with(
            workflow_id="process-instance-1234",
            run_id=None,
            activity_id=str(job_key),
        )
        temporal.get_async_activity_handle.return_value.complete.assert_awaited_once()

    async def test_unknown_job(self, engine, temporal):
        temporal.get_async_activity_handle.return_value.complete.side_effect = rpc_error(RPCStatusCode.NOT_FOUND)

        with pytest.raises(JobNotFoundError) as exc:
            await engine.complete_job(keys.job_key(1234, 0))
        assert exc.value.job_key == keys.job_key(1234, 0)

    async def test_not_connected(self):
        with pytest.raises(RuntimeError):
            await EngineClient(EngineConfig()).complete_job(1)


class TestBlockingEngineClient:

    def test_complete_job_runs_to_completion(self, temporal):
        blocking = BlockingEngineClient(EngineConfig())
        blocking._engine._client = temporal
        try:
            blocking.complete_job(keys.job_key(1, 0))
        finally:
            blocking.close()
        temporal.get_async_activity_handle.return_value.complete.assert_awaited_once()

    def test_propagates_engine_errors(self, temporal):
        temporal.get_async_activity_handle.return_value.complete.side_effect = rpc_error(RPCStatusCode.NOT_FOUND)
        blocking = BlockingEngineClient(EngineConfig())
        blocking._engine._client = temporal
        try:
            with pytest.raises(JobNotFoundError):
                blocking.complete_job(keys.job_key(1, 0))
        finally:
            blocking.close()
