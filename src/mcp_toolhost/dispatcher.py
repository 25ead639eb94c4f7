"""JSON-RPC dispatcher: parses requests, routes methods and runs tool calls."""

import asyncio
import inspect
import json
import logging
import math
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Union

from mcp.types import (
    LATEST_PROTOCOL_VERSION,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    ToolsCapability,
)

from .audit import AuditLogger
from .cancellation import CancelToken
from .config import ServerConfig
from .errors import (
    ExecutionFailed,
    InvalidParameter,
    InvalidRequest,
    MethodNotFound,
    MissingParameter,
    NotAvailable,
    ParseError,
    ToolCancelled,
    ToolHostError,
)
from .registry import RegisteredTool, ToolRegistry
from .results import to_json_value

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

Response = Dict[str, Any]


class Dispatcher:
    """
    Protocol state machine for initialize, tools/list and tools/call.

    Stateless between calls: the only state consulted is the registry, which
    is read-only while serving. Every handle() may run concurrently with
    others on the same event loop. Coroutine tools are awaited directly;
    blocking tools run on a bounded thread pool so they never stall other
    dispatches.

    max_concurrent_calls counts tools that are still running, including a
    blocking tool that has passed its deadline but not yet returned. The
    deadline starts once a slot is acquired.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        config: Optional[ServerConfig] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.registry = registry
        self.config = config or ServerConfig()
        self.audit_logger = audit_logger
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.worker_threads,
            thread_name_prefix="toolhost-worker",
        )
        self._slots: Optional[asyncio.Semaphore] = None
        self._slots_loop = None
        self._methods = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_text(
        self, text: Union[str, bytes], caller: str = "mcp-client"
    ) -> Optional[Union[Response, List[Response]]]:
        """
        Handle one raw JSON payload (single request or batch).

        Malformed JSON yields a ParseError response with a null id. That
        includes NaN/Infinity literals and nesting too deep to decode.
        """
        try:
            message = json.loads(text, parse_constant=_reject_constant)
        except RecursionError:
            return _error_response(None, ParseError("Invalid JSON: nesting too deep"))
        except (TypeError, ValueError) as e:
            return _error_response(None, ParseError(f"Invalid JSON: {e}"))
        return await self.handle(message, caller=caller)

    async def handle(
        self, message: Any, caller: str = "mcp-client"
    ) -> Optional[Union[Response, List[Response]]]:
        """
        Handle one decoded JSON-RPC message.

        Args:
            message: A request object, or a list of them (batch)
            caller: Identity recorded in the audit log

        Returns:
            The response, a list of responses for a batch, or None when no
            response is due (notifications)
        """
        if isinstance(message, list):
            if not message:
                return _error_response(None, InvalidRequest("Empty batch"))
            responses = await asyncio.gather(
                *(self._handle_one(item, caller) for item in message)
            )
            return [response for response in responses if response is not None] or None
        return await self._handle_one(message, caller)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def _handle_one(self, message: Any, caller: str) -> Optional[Response]:
        request_id = _request_id(message)

        try:
            method, params = _parse_request(message)
        except ParseError as e:
            logger.debug("Rejected request: %s", e)
            return _error_response(request_id, e)

        notification = "id" not in message

        try:
            result = await self._route(method, params, caller)
        except ToolHostError as e:
            if notification:
                logger.info("Notification %s failed: %s", method, e)
                return None
            return _error_response(request_id, e)
        except Exception:
            logger.exception("Unhandled error while dispatching %s", method)
            if notification:
                return None
            return _error_response(request_id, ToolHostError("Internal error"))

        if notification:
            return None
        return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}

    async def _route(self, method: str, params: Dict[str, Any], caller: str) -> Any:
        if method.startswith("notifications/"):
            return {}

        handler = self._methods.get(method)
        if handler is None:
            raise MethodNotFound(method)
        return await handler(params, caller)

    async def _initialize(self, params: Dict[str, Any], caller: str) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        version = requested if isinstance(requested, str) and requested else LATEST_PROTOCOL_VERSION

        result = InitializeResult(
            protocolVersion=version,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
            serverInfo=Implementation(
                name=self.config.server_name,
                version=self.config.server_version,
            ),
        )
        return result.model_dump(by_alias=True, exclude_none=True)

    async def _ping(self, params: Dict[str, Any], caller: str) -> Dict[str, Any]:
        return {}

    async def _list_tools(self, params: Dict[str, Any], caller: str) -> Dict[str, Any]:
        return {
            "tools": [
                descriptor.get_tool_description().model_dump(by_alias=True, exclude_none=True)
                for descriptor in self.registry.list()
            ]
        }

    async def _call_tool(self, params: Dict[str, Any], caller: str) -> Any:
        name = params.get("name")
        if name is None:
            raise MissingParameter("name")
        if not isinstance(name, str):
            raise InvalidParameter("name", "a string")

        arguments = params.get("arguments")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, Mapping):
            raise InvalidParameter("arguments", "an object")

        entry = self.registry.lookup(name)
        if entry is None:
            self._audit("CALL_REJECTED", name, "tool not available", caller)
            raise NotAvailable(name, self.registry.registered_names())

        try:
            entry.descriptor.schema.validate(arguments)
        except (MissingParameter, InvalidParameter) as e:
            self._audit("CALL_REJECTED", name, e.message, caller)
            raise

        try:
            result = await self._execute(entry, dict(arguments))
        except ExecutionFailed as e:
            self._audit("CALL_FAILED", name, e.message, caller)
            raise

        self._audit("CALL_OK", name, f"arguments={sorted(arguments)}", caller)
        return result

    # ------------------------------------------------------------------
    # Tool execution
    # ------------------------------------------------------------------

    async def _execute(self, entry: RegisteredTool, arguments: Dict[str, Any]) -> Any:
        name = entry.descriptor.name
        timeout = self.config.call_timeout
        token = CancelToken()

        slots = self._call_slots()
        await slots.acquire()
        lease = _SlotLease(slots, asyncio.get_running_loop())
        task = asyncio.ensure_future(self._invoke(entry, arguments, token, lease))
        task.add_done_callback(_consume_result)
        task.add_done_callback(lease.task_done)
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            token.cancel("caller disconnected")
            task.cancel()
            raise

        if not done:
            token.cancel("timeout")
            task.cancel()
            if not entry.instance.supports_cancellation:
                logger.warning(
                    "Tool %s timed out after %ss; it cannot be cancelled and will finish in the background",
                    name,
                    timeout,
                )
            raise ExecutionFailed(
                f"Tool '{name}' timed out after {timeout:g}s",
                {"tool": name, "timeout": timeout},
            )

        if task.cancelled():
            raise ToolCancelled(f"Tool '{name}' was cancelled", {"tool": name})

        try:
            return to_json_value(task.result())
        except ExecutionFailed as e:
            e.details.setdefault("tool", name)
            raise
        except ToolHostError as e:
            raise ExecutionFailed(e.message, {"tool": name, "cause": e.kind}) from e
        except Exception as e:
            logger.exception("Tool %s raised", name)
            raise ExecutionFailed(
                f"Tool '{name}' failed: {type(e).__name__}: {e}",
                {"tool": name},
            ) from e

    async def _invoke(
        self, entry: RegisteredTool, arguments: Dict[str, Any], token: CancelToken, lease: "_SlotLease"
    ) -> Any:
        execute = entry.instance.execute
        if inspect.iscoroutinefunction(execute):
            return await execute(arguments, token)

        worker = self._executor.submit(execute, arguments, token)
        lease.attach_worker(worker)
        result = await asyncio.wrap_future(worker)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _call_slots(self) -> asyncio.Semaphore:
        # asyncio primitives belong to one loop; rebuild if the loop changed.
        loop = asyncio.get_running_loop()
        if self._slots is None or self._slots_loop is not loop:
            self._slots = asyncio.Semaphore(self.config.max_concurrent_calls)
            self._slots_loop = loop
        return self._slots

    def _audit(self, action: str, tool: str, details: str, caller: str) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log(action, tool, details, user=caller)


def _parse_request(message: Any):
    if not isinstance(message, dict):
        raise InvalidRequest("Request must be a JSON object")

    version = message.get("jsonrpc")
    if version is not None and version != JSONRPC_VERSION:
        raise InvalidRequest(f"Unsupported jsonrpc version: {version!r}")

    if "id" in message and _request_id(message) is None and message["id"] is not None:
        raise InvalidRequest("Request id must be a string, a number or null")

    method = message.get("method")
    if not isinstance(method, str) or not method:
        raise InvalidRequest("Request method must be a non-empty string")

    params = message.get("params")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise InvalidRequest("Request params must be an object")

    return method, params


def _request_id(message: Any) -> Any:
    """The request id if it is usable in a response, otherwise None."""
    if not isinstance(message, dict):
        return None
    request_id = message.get("id")
    if isinstance(request_id, bool):
        return None
    if isinstance(request_id, float) and not math.isfinite(request_id):
        return None
    if isinstance(request_id, (str, int, float)):
        return request_id
    return None


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON number")


def _error_response(request_id: Any, error: ToolHostError) -> Response:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "error": error.to_error_data().model_dump(exclude_none=True),
    }


def _consume_result(task: "asyncio.Future") -> None:
    # Abandoned tasks (timeouts, disconnects) would otherwise log
    # "exception was never retrieved".
    if not task.cancelled():
        task.exception()


class _SlotLease:
    """
    One concurrency slot held by a tool call.

    The slot is returned when the tool's work has stopped, not when the
    caller stops waiting: a blocking tool that outlives its deadline keeps
    its slot until the worker thread returns.
    """

    def __init__(self, slots: asyncio.Semaphore, loop: asyncio.AbstractEventLoop):
        self._slots = slots
        self._loop = loop
        self._worker = None
        self._released = False

    def attach_worker(self, worker) -> None:
        self._worker = worker

    def task_done(self, task: "asyncio.Future") -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.add_done_callback(self._worker_done)
        else:
            self._release()

    def _worker_done(self, worker) -> None:
        # Runs on the worker thread.
        if self._loop.is_closed():
            return
        try:
            self._loop.call_soon_threadsafe(self._release)
        except RuntimeError:
            # Loop closed in between; its semaphore went with it.
            pass

    def _release(self) -> None:
        if not self._released:
            self._released = True
            self._slots.release()
