import asyncio
import json
import threading
import time

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, PARSE_ERROR

from conftest import call_request, run
from mcp_toolhost.audit import AuditLogger
from mcp_toolhost.builtin import register_builtin_tools
from mcp_toolhost.config import ServerConfig
from mcp_toolhost.dispatcher import Dispatcher
from mcp_toolhost.errors import InvalidParameter
from mcp_toolhost.registry import ToolRegistry
from mcp_toolhost.schema import PropertyKind, PropertySpec, Schema
from mcp_toolhost.tools import ToolHandler


class SlowTool(ToolHandler):
    """Blocking tool that honours its cancel token."""

    name = "slow"
    description = "Sleeps until cancelled or done"
    schema = Schema.of(seconds=PropertySpec(PropertyKind.NUMBER, "How long to sleep"))
    supports_cancellation = True
    observed_tokens = []

    def execute(self, arguments, cancel_token):
        SlowTool.observed_tokens.append(cancel_token)
        cancel_token.wait(arguments.get("seconds", 10))
        cancel_token.raise_if_cancelled()
        return {"slept": arguments.get("seconds", 10)}


class CrashingTool(ToolHandler):
    name = "crash"
    description = "Raises an uncategorized error"

    async def execute(self, arguments, cancel_token):
        raise KeyError("boom")


class PickyTool(ToolHandler):
    name = "picky"
    description = "Raises a validation error from inside execute"

    def execute(self, arguments, cancel_token):
        raise InvalidParameter("mode", "a supported mode")


class OpaqueTool(ToolHandler):
    name = "opaque"
    description = "Returns something that is not JSON"

    def execute(self, arguments, cancel_token):
        return object()


class BarrierTool(ToolHandler):
    """Two calls only finish if they run at the same time."""

    name = "barrier"
    description = "Waits for a partner call"
    barrier = None

    def execute(self, arguments, cancel_token):
        BarrierTool.barrier.wait(timeout=2)
        return {"ok": True}


def builtin_dispatcher(host, registry, config):
    register_builtin_tools(registry, host)
    return Dispatcher(registry, config)


# ----------------------------------------------------------------------
# initialize / ping / unknown methods
# ----------------------------------------------------------------------


def test_initialize_acknowledges_capabilities(dispatcher):
    response = run(dispatcher.handle({
        "jsonrpc": "2.0",
        "method": "initialize",
        "params": {"protocolVersion": "2024-11-05", "clientInfo": {"name": "t", "version": "1"}},
        "id": 1,
    }))
    result = response["result"]
    assert response["id"] == 1
    assert result["protocolVersion"] == "2024-11-05"
    assert result["capabilities"]["tools"] == {"listChanged": False}
    assert result["serverInfo"]["name"] == "mcp-toolhost"


def test_ping(dispatcher):
    assert run(dispatcher.handle({"method": "ping", "id": "p"})) == {
        "jsonrpc": "2.0", "id": "p", "result": {},
    }


def test_unknown_method_preserves_id(dispatcher):
    response = run(dispatcher.handle({"method": "frobnicate", "id": 9}))
    assert response["id"] == 9
    assert "result" not in response
    assert response["error"]["code"] == METHOD_NOT_FOUND
    assert response["error"]["data"]["kind"] == "MethodNotFound"
    assert "frobnicate" in response["error"]["message"]


def test_notifications_get_no_response(dispatcher):
    assert run(dispatcher.handle({"jsonrpc": "2.0", "method": "notifications/initialized"})) is None
    assert run(dispatcher.handle({"jsonrpc": "2.0", "method": "frobnicate"})) is None


# ----------------------------------------------------------------------
# Parse errors
# ----------------------------------------------------------------------


def test_malformed_json_is_parse_error(dispatcher):
    response = run(dispatcher.handle_text("{not json"))
    assert response["id"] is None
    assert response["error"]["code"] == PARSE_ERROR
    assert response["error"]["data"]["kind"] == "ParseError"


def test_deeply_nested_json_is_parse_error(dispatcher):
    response = run(dispatcher.handle_text("[" * 200000 + "]" * 200000))
    assert response["id"] is None
    assert response["error"]["code"] == PARSE_ERROR
    assert response["error"]["data"]["kind"] == "ParseError"


def test_non_finite_constants_are_parse_errors(dispatcher):
    for literal in ("NaN", "Infinity", "-Infinity"):
        response = run(dispatcher.handle_text(
            '{"jsonrpc": "2.0", "id": %s, "method": "ping"}' % literal
        ))
        assert response["id"] is None
        assert response["error"]["code"] == PARSE_ERROR
        # The response must itself be strict JSON.
        json.dumps(response, allow_nan=False)


def test_non_finite_id_is_not_echoed(dispatcher):
    response = run(dispatcher.handle({"jsonrpc": "2.0", "id": float("nan"), "method": "ping"}))
    assert response["id"] is None
    assert response["error"]["code"] == INVALID_REQUEST
    json.dumps(response, allow_nan=False)


def test_non_object_request_is_invalid(dispatcher):
    response = run(dispatcher.handle("tools/list"))
    assert response["error"]["code"] == INVALID_REQUEST
    assert response["error"]["data"]["kind"] == "ParseError"
    assert response["id"] is None


def test_missing_method_is_invalid(dispatcher):
    response = run(dispatcher.handle({"jsonrpc": "2.0", "id": 4}))
    assert response["id"] == 4
    assert response["error"]["code"] == INVALID_REQUEST


def test_wrong_jsonrpc_version_is_invalid(dispatcher):
    response = run(dispatcher.handle({"jsonrpc": "1.0", "method": "ping", "id": 4}))
    assert response["error"]["code"] == INVALID_REQUEST


def test_non_object_params_are_invalid(dispatcher):
    response = run(dispatcher.handle({"method": "tools/call", "params": ["calculator"], "id": 5}))
    assert response["error"]["code"] == INVALID_REQUEST


def test_parse_error_short_circuits_registry(host, config):
    class CountingRegistry(ToolRegistry):
        lookups = 0

        def lookup(self, name):
            CountingRegistry.lookups += 1
            return super().lookup(name)

    d = Dispatcher(CountingRegistry(), config)
    try:
        run(d.handle({"method": "tools/call", "params": "calculator", "id": 1}))
    finally:
        d.close()
    assert CountingRegistry.lookups == 0


# ----------------------------------------------------------------------
# tools/list
# ----------------------------------------------------------------------


def test_tools_list_in_registration_order(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    try:
        response = run(d.handle({"method": "tools/list", "id": 2}))
    finally:
        d.close()

    tools = response["result"]["tools"]
    assert [t["name"] for t in tools] == registry.registered_names()
    calculator = tools[0]
    assert calculator["name"] == "calculator"
    assert calculator["inputSchema"]["required"] == ["operation", "a", "b"]
    assert calculator["inputSchema"]["properties"]["a"]["type"] == "number"
    assert set(calculator) == {"name", "description", "inputSchema"}


def test_tools_list_is_idempotent(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    try:
        first = run(d.handle({"method": "tools/list", "id": 1}))
        second = run(d.handle({"method": "tools/list", "id": 1}))
    finally:
        d.close()
    assert first == second


def test_tools_list_last_registration_wins(host, registry, config):
    class EchoV1(ToolHandler):
        name = "echo"
        description = "v1"

    class EchoV2(ToolHandler):
        name = "echo"
        description = "v2"

    class Other(ToolHandler):
        name = "other"

    registry.register(EchoV1.descriptor(), host)
    registry.register(Other.descriptor(), host)
    registry.register(EchoV2.descriptor(), host)

    d = Dispatcher(registry, config)
    try:
        tools = run(d.handle({"method": "tools/list", "id": 1}))["result"]["tools"]
    finally:
        d.close()
    assert [(t["name"], t["description"]) for t in tools] == [("echo", "v2"), ("other", "")]


# ----------------------------------------------------------------------
# tools/call
# ----------------------------------------------------------------------


def test_calculator_add(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    try:
        response = run(d.handle(call_request("calculator", {"operation": "add", "a": 5, "b": 3}, 3)))
    finally:
        d.close()
    assert response == {
        "jsonrpc": "2.0",
        "id": 3,
        "result": {"operation": "add", "a": 5, "b": 3, "result": 8},
    }


def test_calculator_division_by_zero(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    try:
        response = run(d.handle(call_request("calculator", {"operation": "divide", "a": 1, "b": 0}, 4)))
    finally:
        d.close()
    assert "result" not in response
    assert response["id"] == 4
    assert response["error"]["code"] == INTERNAL_ERROR
    assert response["error"]["data"]["kind"] == "ExecutionFailed"
    assert "Division by zero" in response["error"]["message"]


def test_calculator_missing_parameter(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    try:
        response = run(d.handle(call_request("calculator", {"operation": "add", "a": 5})))
    finally:
        d.close()
    assert "result" not in response
    assert response["error"]["code"] == INVALID_PARAMS
    assert response["error"]["data"] == {"kind": "MissingParameter", "parameter": "b"}


def test_invalid_parameter_reports_expected_kind(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    try:
        response = run(d.handle(call_request("calculator", {"operation": "add", "a": "5", "b": 3})))
    finally:
        d.close()
    assert response["error"]["data"]["kind"] == "InvalidParameter"
    assert response["error"]["data"]["expected"] == "a number"


def test_unregistered_tool_is_not_available(dispatcher):
    response = run(dispatcher.handle(call_request("nope", {"x": 1}, 7)))
    assert "result" not in response
    assert response["id"] == 7
    assert response["error"]["code"] == METHOD_NOT_FOUND
    assert response["error"]["data"] == {"kind": "NotAvailable", "tool": "nope"}


def test_call_requires_name(dispatcher):
    response = run(dispatcher.handle({"method": "tools/call", "params": {}, "id": 1}))
    assert response["error"]["data"] == {"kind": "MissingParameter", "parameter": "name"}


def test_arguments_must_be_object(dispatcher):
    response = run(dispatcher.handle({
        "method": "tools/call", "params": {"name": "x", "arguments": [1]}, "id": 1,
    }))
    assert response["error"]["data"]["kind"] == "InvalidParameter"
    assert response["error"]["data"]["parameter"] == "arguments"


def test_arguments_default_to_empty(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    try:
        response = run(d.handle(call_request("get_status")))
    finally:
        d.close()
    assert response["result"] == {"available": True, "status": {"mode": "edit", "running": False}}


def test_validation_failure_skips_execution(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    try:
        response = run(d.handle(call_request("execute_script", {"script": 42})))
    finally:
        d.close()
    assert response["error"]["data"]["kind"] == "InvalidParameter"
    assert host.calls == []


def test_uncategorized_fault_becomes_execution_failed(host, registry, dispatcher):
    registry.register(CrashingTool.descriptor(), host)
    response = run(dispatcher.handle(call_request("crash", {}, 11)))
    assert response["id"] == 11
    assert response["error"]["data"]["kind"] == "ExecutionFailed"
    assert "KeyError" in response["error"]["message"]


def test_taxonomy_error_inside_execute_becomes_execution_failed(host, registry, dispatcher):
    registry.register(PickyTool.descriptor(), host)
    response = run(dispatcher.handle(call_request("picky", {})))
    assert response["error"]["code"] == INTERNAL_ERROR
    assert response["error"]["data"]["kind"] == "ExecutionFailed"
    assert response["error"]["data"]["cause"] == "InvalidParameter"


def test_unserializable_result_is_execution_failed(host, registry, dispatcher):
    registry.register(OpaqueTool.descriptor(), host)
    response = run(dispatcher.handle(call_request("opaque", {})))
    assert response["error"]["data"]["kind"] == "ExecutionFailed"
    assert response["error"]["data"]["tool"] == "opaque"


def test_timeout_cancels_token(host, registry):
    config = ServerConfig(call_timeout=0.2)
    registry.register(SlowTool.descriptor(), host)
    d = Dispatcher(registry, config)
    SlowTool.observed_tokens.clear()
    try:
        started = time.monotonic()
        response = run(d.handle(call_request("slow", {"seconds": 5})))
        elapsed = time.monotonic() - started
    finally:
        d.close()

    assert elapsed < 2
    assert response["error"]["data"]["kind"] == "ExecutionFailed"
    assert response["error"]["data"]["timeout"] == 0.2
    assert "timed out" in response["error"]["message"]
    assert SlowTool.observed_tokens[0].cancelled


def test_caller_cancellation_fires_token(host, registry, config):
    registry.register(SlowTool.descriptor(), host)
    d = Dispatcher(registry, config)
    SlowTool.observed_tokens.clear()

    async def scenario():
        task = asyncio.ensure_future(d.handle(call_request("slow", {"seconds": 5})))
        while not SlowTool.observed_tokens:
            await asyncio.sleep(0.01)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            return True
        return False

    try:
        assert run(scenario())
    finally:
        d.close()
    assert SlowTool.observed_tokens[0].cancelled


def test_blocking_tools_run_concurrently(host, registry, config):
    BarrierTool.barrier = threading.Barrier(2)
    registry.register(BarrierTool.descriptor(), host)
    d = Dispatcher(registry, config)

    async def scenario():
        return await asyncio.gather(
            d.handle(call_request("barrier", {}, 1)),
            d.handle(call_request("barrier", {}, 2)),
        )

    try:
        first, second = run(scenario())
    finally:
        d.close()
    assert first["result"] == {"ok": True}
    assert second["result"] == {"ok": True}


def test_timed_out_blocking_tool_keeps_its_slot(host, registry):
    release = threading.Event()

    class StuckTool(ToolHandler):
        name = "stuck"
        description = "Blocks until released, ignoring its cancel token"

        def execute(self, arguments, cancel_token):
            release.wait(5)
            return {"released": True}

    register_builtin_tools(registry, host)
    registry.register(StuckTool.descriptor(), host)
    d = Dispatcher(registry, ServerConfig(call_timeout=0.1, max_concurrent_calls=1, worker_threads=2))

    async def scenario():
        stuck = await d.handle(call_request("stuck", {}, 1))
        assert "timed out" in stuck["error"]["message"]

        waiting = asyncio.ensure_future(
            d.handle(call_request("calculator", {"operation": "add", "a": 1, "b": 2}, 2))
        )
        await asyncio.sleep(0.3)
        still_waiting = not waiting.done()
        release.set()
        return still_waiting, await waiting

    try:
        still_waiting, response = run(scenario())
    finally:
        release.set()
        d.close()
    assert still_waiting
    assert response["result"]["result"] == 3


# ----------------------------------------------------------------------
# Batches and audit
# ----------------------------------------------------------------------


def test_batch_returns_responses_for_requests_only(host, registry, config):
    d = builtin_dispatcher(host, registry, config)
    batch = [
        call_request("calculator", {"operation": "multiply", "a": 4, "b": 2.5}, "a"),
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
        {"jsonrpc": "2.0", "method": "frobnicate", "id": "b"},
    ]
    try:
        responses = run(d.handle_text(json.dumps(batch)))
    finally:
        d.close()

    by_id = {r["id"]: r for r in responses}
    assert set(by_id) == {"a", "b"}
    assert by_id["a"]["result"]["result"] == 10.0
    assert by_id["b"]["error"]["code"] == METHOD_NOT_FOUND


def test_empty_batch_is_invalid(dispatcher):
    response = run(dispatcher.handle([]))
    assert response["error"]["code"] == INVALID_REQUEST


def test_audit_log_records_outcomes(host, registry, config, tmp_path):
    register_builtin_tools(registry, host)
    audit_path = tmp_path / "audit" / "calls.log"
    d = Dispatcher(registry, config, AuditLogger(audit_path))
    try:
        run(d.handle(call_request("calculator", {"operation": "add", "a": 1, "b": 2})))
        run(d.handle(call_request("calculator", {"operation": "divide", "a": 1, "b": 0})))
        run(d.handle(call_request("calculator", {"operation": "add"})))
        run(d.handle(call_request("ghost", {}), caller="10.0.0.5"))
    finally:
        d.close()

    lines = audit_path.read_text().splitlines()
    assert len(lines) == 4
    assert "ACTION=CALL_OK TOOL=calculator" in lines[0]
    assert "ACTION=CALL_FAILED TOOL=calculator DETAILS=Division by zero" in lines[1]
    assert "ACTION=CALL_REJECTED TOOL=calculator" in lines[2]
    assert "USER=10.0.0.5 ACTION=CALL_REJECTED TOOL=ghost" in lines[3]
