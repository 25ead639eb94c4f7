"""Built-in tool set registered at startup."""

from typing import List

from .context import HostContext
from .registry import RegistrationPolicy, ToolRegistry
from .tools.calculator import CalculatorTool
from .tools.host import (
    ClearLogsTool,
    ExecuteScriptTool,
    GetLogsTool,
    GetStatusTool,
    LogMessageTool,
    TriggerAutoplayTool,
)

BUILTIN_TOOLS = [
    CalculatorTool.descriptor(),
    ExecuteScriptTool.descriptor(),
    GetStatusTool.descriptor(),
    TriggerAutoplayTool.descriptor(),
    GetLogsTool.descriptor(),
    ClearLogsTool.descriptor(),
    LogMessageTool.descriptor(),
]


def register_builtin_tools(
    registry: ToolRegistry,
    context: HostContext,
    policy: RegistrationPolicy = RegistrationPolicy.STRICT,
) -> List[str]:
    """
    Register every built-in tool.

    Returns:
        Names skipped because their construction failed (SKIP policy only)
    """
    return registry.register_all(BUILTIN_TOOLS, context, policy)
