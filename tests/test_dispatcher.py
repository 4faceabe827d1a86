"""Tests for the tool registry and the dispatcher."""

import asyncio

import pytest

from shared.errors import ToolError, UnknownToolError
from shared.models import ToolCallRequest, ToolDescriptor, ToolResultStatus
from domains.base import ToolExecutor


class RecordingExecutor(ToolExecutor):
    """Executor double that records calls and can delay or fail tools."""

    def __init__(self, delays=None, failures=None):
        self.delays = delays or {}
        self.failures = failures or {}
        self.events = []

    async def execute(self, name, arguments):
        self.events.append(("start", name))
        await asyncio.sleep(self.delays.get(name, 0))
        if name in self.failures:
            raise self.failures[name]
        self.events.append(("end", name))
        return {"tool": name, "arguments": arguments}


def make_registry(*names):
    from orchestrator.registry import ToolRegistry

    return ToolRegistry(
        ToolDescriptor(name=name, description=f"{name} tool") for name in names
    )


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_describe_keeps_declaration_order(self):
        """Test descriptors are returned in declaration order."""
        registry = make_registry("checkVitals", "searchMedicalDatabase", "scheduleAppointment")

        assert [d.name for d in registry.describe()] == [
            "checkVitals", "searchMedicalDatabase", "scheduleAppointment"
        ]
        assert registry.names() == [d.name for d in registry]
        assert len(registry) == 3

    def test_lookup_is_exact(self):
        """Test lookups match names exactly."""
        registry = make_registry("checkVitals")

        assert "checkVitals" in registry
        assert "checkvitals" not in registry
        assert registry.get("CheckVitals") is None
        assert registry.require("checkVitals").name == "checkVitals"

    def test_require_unknown_raises(self):
        """Test require fails for names outside the registry."""
        registry = make_registry("checkVitals")

        with pytest.raises(UnknownToolError) as exc_info:
            registry.require("prescribeMedication")
        assert exc_info.value.tool_name == "prescribeMedication"

    def test_duplicate_names_rejected(self):
        """Test two descriptors with the same name are refused."""
        with pytest.raises(ValueError, match="already registered"):
            make_registry("checkVitals", "checkVitals")

    def test_empty_registry(self):
        """Test an empty registry is valid."""
        registry = make_registry()

        assert registry.describe() == ()
        assert len(registry) == 0


class TestDispatcher:
    """Tests for Dispatcher."""

    @pytest.mark.asyncio
    async def test_results_follow_request_order(self):
        """Test results are ordered by request even when completion is not."""
        from orchestrator.dispatcher import Dispatcher

        executor = RecordingExecutor(delays={"slow": 0.05, "fast": 0})
        dispatcher = Dispatcher(make_registry("slow", "fast"), executor)

        results = await dispatcher.execute([
            ToolCallRequest(call_id="a", name="slow"),
            ToolCallRequest(call_id="b", name="fast"),
        ])

        assert [r.call_id for r in results] == ["a", "b"]
        assert [r.name for r in results] == ["slow", "fast"]
        # Concurrent: the fast tool finished before the slow one
        assert executor.events.index(("end", "fast")) < executor.events.index(("end", "slow"))

    @pytest.mark.asyncio
    async def test_sequential_mode(self):
        """Test sequential dispatch runs calls one after another."""
        from orchestrator.dispatcher import Dispatcher

        executor = RecordingExecutor(delays={"slow": 0.02})
        dispatcher = Dispatcher(make_registry("slow", "fast"), executor, concurrent=False)

        results = await dispatcher.execute([
            ToolCallRequest(name="slow"),
            ToolCallRequest(name="fast"),
        ])

        assert [r.name for r in results] == ["slow", "fast"]
        assert executor.events == [
            ("start", "slow"), ("end", "slow"), ("start", "fast"), ("end", "fast")
        ]

    @pytest.mark.asyncio
    async def test_success_payload(self):
        """Test a successful call carries the executor's payload."""
        from orchestrator.dispatcher import Dispatcher

        dispatcher = Dispatcher(make_registry("scheduleAppointment"), RecordingExecutor())

        results = await dispatcher.execute([
            ToolCallRequest(name="scheduleAppointment", arguments={"department": "cardiology"})
        ])

        result = results[0]
        assert result.status == ToolResultStatus.SUCCESS
        assert result.call_id is None
        assert result.payload == {
            "tool": "scheduleAppointment",
            "arguments": {"department": "cardiology"}
        }
        assert result.execution_time_ms >= 0

    @pytest.mark.asyncio
    async def test_unknown_tool_not_executed(self):
        """Test unknown names yield an error result without execution."""
        from orchestrator.dispatcher import Dispatcher

        executor = RecordingExecutor()
        dispatcher = Dispatcher(make_registry("checkVitals"), executor)

        results = await dispatcher.execute([ToolCallRequest(call_id="x", name="launchRocket")])

        assert results[0].status == ToolResultStatus.NOT_FOUND
        assert results[0].call_id == "x"
        assert "launchRocket" in results[0].error
        assert executor.events == []

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self):
        """Test one failing call does not affect the others."""
        from orchestrator.dispatcher import Dispatcher

        executor = RecordingExecutor(failures={"broken": ToolError("broken", "monitor offline")})
        dispatcher = Dispatcher(make_registry("broken", "checkVitals"), executor)

        results = await dispatcher.execute([
            ToolCallRequest(name="broken"),
            ToolCallRequest(name="checkVitals"),
        ])

        assert results[0].status == ToolResultStatus.ERROR
        assert results[0].to_response() == {"error": "monitor offline"}
        assert results[1].status == ToolResultStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_error(self):
        """Test arbitrary executor exceptions are converted to results."""
        from orchestrator.dispatcher import Dispatcher

        executor = RecordingExecutor(failures={"flaky": RuntimeError("socket closed")})
        dispatcher = Dispatcher(make_registry("flaky"), executor)

        results = await dispatcher.execute([ToolCallRequest(name="flaky")])

        assert results[0].is_error
        assert results[0].error == "Tool 'flaky' failed: socket closed"

    @pytest.mark.asyncio
    async def test_timeout(self):
        """Test slow tools are cut off by the per-call timeout."""
        from orchestrator.dispatcher import Dispatcher

        executor = RecordingExecutor(delays={"slow": 5})
        dispatcher = Dispatcher(make_registry("slow", "fast"), executor, timeout=0.05)

        results = await dispatcher.execute([
            ToolCallRequest(name="slow"),
            ToolCallRequest(name="fast"),
        ])

        assert results[0].status == ToolResultStatus.TIMEOUT
        assert "timed out" in results[0].error
        assert results[1].status == ToolResultStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        """Test an empty batch yields no results."""
        from orchestrator.dispatcher import Dispatcher

        dispatcher = Dispatcher(make_registry("checkVitals"), RecordingExecutor())

        assert await dispatcher.execute([]) == []

    @pytest.mark.asyncio
    async def test_clinic_tools_end_to_end(self):
        """Test dispatch through the clinic domain executor."""
        from domains.base import DomainToolExecutor
        from domains.clinic import register_clinic_domain
        from orchestrator.dispatcher import Dispatcher
        from orchestrator.registry import ToolRegistry

        executor = DomainToolExecutor()
        register_clinic_domain(executor)
        dispatcher = Dispatcher(ToolRegistry(executor.descriptors), executor)

        results = await dispatcher.execute([
            ToolCallRequest(call_id="1", name="searchMedicalDatabase", arguments={"query": "migraine"}),
            ToolCallRequest(call_id="2", name="searchMedicalDatabase", arguments={}),
        ])

        assert results[0].status == ToolResultStatus.SUCCESS
        assert "migraine" in results[0].payload["results"]
        assert results[1].status == ToolResultStatus.ERROR
        assert "required property" in results[1].error


class TestToolCallResult:
    """Tests for the result mapping sent back to the backend."""

    def test_to_response(self):
        """Test rendering of payloads and errors."""
        from shared.models import ToolCallResult

        request = ToolCallRequest(name="checkVitals")

        assert ToolCallResult.success(request, {"hr": 72}).to_response() == {"hr": 72}
        assert ToolCallResult.success(request, None).to_response() == {"result": "ok"}
        assert ToolCallResult.success(request, {}).to_response() == {"result": "ok"}
        assert ToolCallResult.success(request, "done").to_response() == {"result": "done"}
        assert ToolCallResult.failure(request, "boom").to_response() == {"error": "boom"}
