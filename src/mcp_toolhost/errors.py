"""Error taxonomy for the tool host and its mapping onto JSON-RPC error objects."""

from typing import Any, Dict, Optional

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ErrorData,
)


class ToolHostError(Exception):
    """
    Base class for every error the dispatcher reports to a caller.

    Subclasses set ``code`` to the JSON-RPC error code they map to and
    ``kind`` to the taxonomy name reported to callers in ``data.kind``.
    """

    code: int = INTERNAL_ERROR
    kind: str = "InternalError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        safe_message = message.strip() if isinstance(message, str) else ""
        super().__init__(safe_message or "Unknown error")
        self.message = safe_message or "Unknown error"
        self.details = details or {}

    def to_error_data(self) -> ErrorData:
        """
        Build the JSON-RPC error object for this error.

        Returns:
            ErrorData with ``data.kind`` naming the error variant
        """
        data = {"kind": self.kind}
        data.update(self.details)
        return ErrorData(code=self.code, message=self.message, data=data)


class ParseError(ToolHostError):
    """Malformed JSON, or a body that is not a JSON-RPC request."""

    code = PARSE_ERROR
    kind = "ParseError"


class InvalidRequest(ParseError):
    """Well-formed JSON that does not conform to the JSON-RPC request shape."""

    code = INVALID_REQUEST


class MethodNotFound(ToolHostError):
    code = METHOD_NOT_FOUND
    kind = "MethodNotFound"

    def __init__(self, method: str):
        super().__init__(f"Unknown method: {method}", {"method": method})
        self.method = method


class NotAvailable(ToolHostError):
    """The requested tool is not registered."""

    code = METHOD_NOT_FOUND
    kind = "NotAvailable"

    def __init__(self, name: str, available: Optional[list] = None):
        message = f"Tool not available: {name}"
        if available:
            message += f" (available tools: {', '.join(available)})"
        super().__init__(message, {"tool": name})
        self.name = name


class MissingParameter(ToolHostError):
    code = INVALID_PARAMS
    kind = "MissingParameter"

    def __init__(self, name: str):
        super().__init__(f"Missing required parameter: {name}", {"parameter": name})
        self.name = name


class InvalidParameter(ToolHostError):
    """A parameter is present but its value has the wrong kind."""

    code = INVALID_PARAMS
    kind = "InvalidParameter"

    def __init__(self, name: str, expected: str):
        super().__init__(
            f"Invalid parameter '{name}': expected {expected}",
            {"parameter": name, "expected": expected},
        )
        self.name = name
        self.expected = expected


class ExecutionFailed(ToolHostError):
    """Tool logic raised, timed out, or returned a value that cannot be sent back."""

    code = INTERNAL_ERROR
    kind = "ExecutionFailed"


class HostUnavailable(ExecutionFailed):
    """The host capability bridge could not complete a request."""


class ToolCancelled(ExecutionFailed):
    """The call's cancel token fired before the tool finished."""
