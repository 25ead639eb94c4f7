"""Server wiring and transports (HTTP via FastAPI, line-delimited stdio)."""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional, TextIO

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .audit import AuditLogger
from .builtin import register_builtin_tools
from .config import ServerConfig
from .context import HostContext
from .dispatcher import Dispatcher
from .host_client import HostClient, HttpHostContext
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

DISCONNECT_POLL_INTERVAL = 0.1


def build_dispatcher(config: ServerConfig, context: Optional[HostContext] = None) -> Dispatcher:
    """
    Create the registry, register built-in tools and return a ready dispatcher.

    Args:
        config: Server configuration
        context: Host capability context; defaults to the HTTP host bridge at config.host_url

    Returns:
        Dispatcher serving the built-in tool set
    """
    if context is None:
        context = HttpHostContext(HostClient(config.host_url, timeout=config.host_timeout))

    registry = ToolRegistry()
    skipped = register_builtin_tools(registry, context, config.registration_policy)
    if skipped:
        logger.warning("Started without tools: %s", ", ".join(skipped))
    logger.info("Registered %d tools: %s", len(registry), ", ".join(registry.registered_names()))

    audit_logger = AuditLogger(config.audit_log_path) if config.audit_log_path else None
    return Dispatcher(registry, config, audit_logger)


def create_app(dispatcher: Dispatcher) -> FastAPI:
    """Build the HTTP transport: JSON-RPC over POST /mcp."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        dispatcher.close()

    app = FastAPI(title=dispatcher.config.server_name, lifespan=lifespan)

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "server": dispatcher.config.server_name,
            "tools": dispatcher.registry.registered_names(),
        }

    @app.post("/mcp")
    async def mcp_endpoint(request: Request):
        body = await request.body()
        caller = request.client.host if request.client else "mcp-client"

        call = asyncio.ensure_future(dispatcher.handle_text(body, caller=caller))
        watcher = asyncio.ensure_future(_wait_for_disconnect(request))
        try:
            await asyncio.wait({call, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            watcher.cancel()

        if not call.done():
            # Client went away; cancel the dispatch so tools see their token fire.
            call.cancel()
            logger.info("Client %s disconnected; cancelled in-flight request", caller)
            return Response(status_code=499)

        result = call.result()
        if result is None:
            return Response(status_code=202)
        return JSONResponse(result)

    return app


async def _wait_for_disconnect(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL)


async def serve_stdio(
    dispatcher: Dispatcher,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> None:
    """
    Serve line-delimited JSON-RPC: one message per input line, one response per output line.

    Requests are dispatched concurrently, so responses may come back out of
    order; callers match them by id. Returns at end of input once every
    in-flight request has been answered.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    loop = asyncio.get_running_loop()
    pending = set()

    async def process(line: str) -> None:
        response = await dispatcher.handle_text(line, caller="stdio")
        if response is not None:
            stdout.write(json.dumps(response) + "\n")
            stdout.flush()

    while True:
        line = await loop.run_in_executor(None, stdin.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        task = asyncio.ensure_future(process(line))
        pending.add(task)
        task.add_done_callback(pending.discard)

    if pending:
        await asyncio.gather(*pending)
