"""Declarative parameter schemas for tools and argument validation against them."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Optional, Tuple

from .errors import InvalidParameter, MissingParameter


class PropertyKind(Enum):
    """JSON value kinds a parameter can declare."""

    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    OBJECT = "object"
    ARRAY = "array"

    @property
    def description(self) -> str:
        return _KIND_DESCRIPTIONS[self]

    def matches(self, value: Any) -> bool:
        """
        Check whether a decoded JSON value has this kind.

        ``bool`` is never accepted as a number, even though Python treats it
        as an ``int``. Integral floats such as ``5.0`` count as integers.
        """
        if self is PropertyKind.STRING:
            return isinstance(value, str)
        if self is PropertyKind.BOOLEAN:
            return isinstance(value, bool)
        if isinstance(value, bool):
            return False
        if self is PropertyKind.INTEGER:
            return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
        if self is PropertyKind.NUMBER:
            return isinstance(value, (int, float))
        if self is PropertyKind.OBJECT:
            return isinstance(value, Mapping)
        return isinstance(value, (list, tuple))


_KIND_DESCRIPTIONS = {
    PropertyKind.STRING: "a string",
    PropertyKind.INTEGER: "an integer",
    PropertyKind.NUMBER: "a number",
    PropertyKind.BOOLEAN: "a boolean",
    PropertyKind.OBJECT: "an object",
    PropertyKind.ARRAY: "an array",
}


@dataclass(frozen=True)
class PropertySpec:
    """One declared parameter: its kind, a human description and optional choices."""

    kind: PropertyKind
    description: str = ""
    enum: Optional[Tuple[Any, ...]] = None

    def expected(self) -> str:
        if self.enum:
            return "{} (one of: {})".format(
                self.kind.description, ", ".join(str(choice) for choice in self.enum)
            )
        return self.kind.description

    def accepts(self, value: Any) -> bool:
        if not self.kind.matches(value):
            return False
        return not self.enum or value in self.enum

    def to_json_schema(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.kind.value}
        if self.description:
            result["description"] = self.description
        if self.enum:
            result["enum"] = list(self.enum)
        return result


@dataclass(frozen=True)
class Schema:
    """
    Accepted parameters of a tool.

    The schema is a floor, not an allow-list: undeclared argument keys are
    ignored. ``required`` keeps declaration order, which decides which
    missing parameter is reported first.
    """

    properties: Mapping = field(default_factory=dict)
    required: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))
        object.__setattr__(self, "required", tuple(self.required))
        unknown = [name for name in self.required if name not in self.properties]
        if unknown:
            raise ValueError(
                "Required parameters not declared in properties: {}".format(", ".join(unknown))
            )

    @classmethod
    def empty(cls) -> "Schema":
        return cls()

    @classmethod
    def of(cls, required: Iterable[str] = (), **properties: PropertySpec) -> "Schema":
        """
        Shorthand constructor.

        Example:
            Schema.of(("a",), a=PropertySpec(PropertyKind.NUMBER, "First operand"))
        """
        return cls(properties=properties, required=tuple(required))

    def validate(self, arguments: Mapping) -> None:
        """
        Validate an argument mapping against this schema.

        Args:
            arguments: Decoded JSON arguments from the caller

        Raises:
            MissingParameter for the first absent required name
            InvalidParameter for the first present value of the wrong kind
        """
        for name in self.required:
            if name not in arguments:
                raise MissingParameter(name)

        for name, spec in self.properties.items():
            if name in arguments and not spec.accepts(arguments[name]):
                raise InvalidParameter(name, spec.expected())

    def to_json_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {name: spec.to_json_schema() for name, spec in self.properties.items()},
            "required": list(self.required),
        }
