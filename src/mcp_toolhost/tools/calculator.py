"""Reference tool: basic arithmetic on two numbers."""

import operator
from typing import Any, Dict

from ..errors import ExecutionFailed
from ..schema import PropertyKind, PropertySpec, Schema
from . import ToolHandler

OPERATIONS = {
    "add": operator.add,
    "subtract": operator.sub,
    "multiply": operator.mul,
    "divide": operator.truediv,
}


class CalculatorTool(ToolHandler):
    """Add, subtract, multiply or divide two numbers."""

    name = "calculator"
    description = (
        "Perform basic arithmetic on two numbers.\n\n"
        "Example usage:\n"
        '  calculator(operation="add", a=5, b=3)\n'
        '  calculator(operation="divide", a=10, b=4)'
    )
    schema = Schema(
        properties={
            "operation": PropertySpec(
                PropertyKind.STRING,
                "Arithmetic operation to perform",
                enum=tuple(OPERATIONS),
            ),
            "a": PropertySpec(PropertyKind.NUMBER, "First operand"),
            "b": PropertySpec(PropertyKind.NUMBER, "Second operand"),
        },
        required=("operation", "a", "b"),
    )

    async def execute(self, arguments: Dict[str, Any], cancel_token) -> Dict[str, Any]:
        operation = arguments["operation"]
        a = arguments["a"]
        b = arguments["b"]

        if operation == "divide" and b == 0:
            raise ExecutionFailed("Division by zero")

        return {
            "operation": operation,
            "a": a,
            "b": b,
            "result": OPERATIONS[operation](a, b),
        }
