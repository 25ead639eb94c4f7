"""Host tools: thin wrappers over the capability context.

All of these block on the host, so they run on worker threads. None of them
honour cancellation; a host request already sent cannot be recalled, so on
timeout the call finishes in the background and its result is discarded.
"""

from typing import Any, Dict

from ..schema import PropertyKind, PropertySpec, Schema
from . import ToolHandler


class ExecuteScriptTool(ToolHandler):
    """Run a script inside the host application."""

    name = "execute_script"
    description = (
        "Execute a script inside the host application and return its value.\n\n"
        "The script runs with the host's own permissions. Errors raised by the "
        "script are reported as tool execution failures."
    )
    schema = Schema(
        properties={
            "script": PropertySpec(PropertyKind.STRING, "Source code of the script to run"),
        },
        required=("script",),
    )

    def execute(self, arguments: Dict[str, Any], cancel_token) -> Dict[str, Any]:
        value = self.context.execute_script(arguments["script"])
        return {"result": value}


class GetStatusTool(ToolHandler):
    name = "get_status"
    description = "Read the host's current status. Returns null fields if the host reports no status."

    def execute(self, arguments, cancel_token):
        status = self.context.get_status()
        return {"available": status is not None, "status": status}


class TriggerAutoplayTool(ToolHandler):
    name = "trigger_autoplay"
    description = "Start the host's autoplay mode."

    def execute(self, arguments, cancel_token):
        self.context.trigger_autoplay()
        return {"status": "ok"}


class GetLogsTool(ToolHandler):
    """Return host log entries, newest last."""

    name = "get_logs"
    description = (
        "Read log entries collected by the host.\n"
        "- Without limit: returns every entry\n"
        "- With limit: returns only the most recent entries\n"
        "- With level: returns only entries of that level"
    )
    schema = Schema(
        properties={
            "limit": PropertySpec(PropertyKind.INTEGER, "Optional maximum number of entries"),
            "level": PropertySpec(PropertyKind.STRING, "Optional level filter (e.g. 'error')"),
        },
    )

    def execute(self, arguments: Dict[str, Any], cancel_token) -> Dict[str, Any]:
        entries = self.context.get_logs()

        level = arguments.get("level")
        if level:
            entries = [entry for entry in entries if entry.level == level]

        limit = arguments.get("limit")
        if limit is not None:
            limit = max(0, int(limit))
            entries = entries[-limit:] if limit else []

        return {"count": len(entries), "entries": entries}


class ClearLogsTool(ToolHandler):
    name = "clear_logs"
    description = "Discard all log entries collected by the host."

    def execute(self, arguments, cancel_token):
        self.context.clear_logs()
        return {"status": "ok"}


class LogMessageTool(ToolHandler):
    name = "log_message"
    description = "Write a message to the host's log."
    schema = Schema(
        properties={"message": PropertySpec(PropertyKind.STRING, "Text to log")},
        required=("message",),
    )

    def execute(self, arguments, cancel_token):
        self.context.log(arguments["message"])
        return {"status": "ok"}
