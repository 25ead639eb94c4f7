"""Tool descriptors and the base class for tool handlers."""

from dataclasses import dataclass
from typing import Any, Callable, Dict

from mcp.types import Tool

from ..cancellation import CancelToken
from ..context import HostContext
from ..schema import Schema


class ToolHandler:
    """
    Base class for tools.

    Subclasses set ``name``, ``description`` and ``schema`` as class
    attributes and implement ``execute``. ``execute`` may be ``async def``
    (awaited on the event loop) or a plain blocking ``def`` (run on a worker
    thread). It receives arguments that already passed ``schema.validate``.
    """

    name: str = ""
    description: str = ""
    schema: Schema = Schema.empty()
    # Whether execute() honours the cancel token. Tools without support run
    # to completion after a timeout or disconnect and their result is dropped.
    supports_cancellation: bool = False

    def __init__(self, context: HostContext):
        """Bind the handler to the host capability context."""
        self.context = context

    @classmethod
    def descriptor(cls) -> "ToolDescriptor":
        return ToolDescriptor(
            name=cls.name,
            description=cls.description,
            schema=cls.schema,
            factory=cls,
        )

    def get_tool_description(self) -> Tool:
        return type(self).descriptor().get_tool_description()

    def execute(self, arguments: Dict[str, Any], cancel_token: CancelToken) -> Any:
        """
        Execute the tool with validated arguments.

        Must be implemented by subclasses.

        Args:
            arguments: Tool arguments from the caller
            cancel_token: Set when the caller gives up on the result

        Returns:
            A JSON-compatible value (or one results.to_json_value can convert)
        """
        raise NotImplementedError


@dataclass(frozen=True)
class ToolDescriptor:
    """Static identity of a tool plus the rule that binds it to a context."""

    name: str
    description: str
    schema: Schema
    factory: Callable[[HostContext], ToolHandler]

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Tool name must be a non-empty string")

    def create(self, context: HostContext) -> ToolHandler:
        return self.factory(context)

    def get_tool_description(self) -> Tool:
        """
        Get the MCP tool description advertised by tools/list.

        Returns:
            Tool with name, description and JSON-Schema inputSchema
        """
        return Tool(
            name=self.name,
            description=self.description,
            inputSchema=self.schema.to_json_schema(),
        )
