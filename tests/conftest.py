import asyncio
import threading
from typing import Any, Dict, List, Optional

import pytest

from mcp_toolhost.config import ServerConfig
from mcp_toolhost.context import LogEntry
from mcp_toolhost.dispatcher import Dispatcher
from mcp_toolhost.errors import ExecutionFailed
from mcp_toolhost.registry import ToolRegistry


class FakeHostContext:
    """
    In-memory stand-in for the host application.

    Records every call so tests can assert what tools asked of the host.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.logs: List[LogEntry] = []
        self.status: Optional[Dict[str, Any]] = {"mode": "edit", "running": False}
        self.script_results: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def execute_script(self, script: str) -> Any:
        self._record("execute_script", script)
        if script.startswith("error"):
            raise ExecutionFailed(f"Script error: {script}")
        return self.script_results.get(script, len(script))

    def get_status(self) -> Optional[Dict[str, Any]]:
        self._record("get_status")
        return self.status

    def trigger_autoplay(self) -> None:
        self._record("trigger_autoplay")
        if self.status is not None:
            self.status["running"] = True

    def get_logs(self) -> List[LogEntry]:
        self._record("get_logs")
        return list(self.logs)

    def clear_logs(self) -> None:
        self._record("clear_logs")
        self.logs.clear()

    def log(self, message: str) -> None:
        self._record("log", message)
        self.logs.append(LogEntry(message=message))


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


def call_request(name: str, arguments: Optional[Dict[str, Any]] = None, request_id: Any = 1) -> Dict[str, Any]:
    params: Dict[str, Any] = {"name": name}
    if arguments is not None:
        params["arguments"] = arguments
    return {"jsonrpc": "2.0", "method": "tools/call", "params": params, "id": request_id}


@pytest.fixture
def host():
    return FakeHostContext()


@pytest.fixture
def registry():
    return ToolRegistry()


@pytest.fixture
def config():
    return ServerConfig(call_timeout=2.0, max_concurrent_calls=4, worker_threads=4)


@pytest.fixture
def dispatcher(registry, config):
    d = Dispatcher(registry, config)
    yield d
    d.close()
