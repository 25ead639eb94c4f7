"""Capability interface that tools use to act on and query the host application."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@dataclass
class LogEntry:
    """One structured log line kept by the host."""

    message: str
    level: str = "info"
    timestamp: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        return cls(
            message=str(data.get("message", "")),
            level=str(data.get("level", "info")),
            timestamp=data.get("timestamp"),
        )


@runtime_checkable
class HostContext(Protocol):
    """
    Host capabilities consumed by tools.

    One context object is shared by every tool instance. The dispatcher does
    not serialize calls into it; implementations must be safe to call from
    several worker threads at once. All methods are blocking.
    """

    def execute_script(self, script: str) -> Any:
        """Run a script inside the host and return its value. Raises on failure."""
        ...

    def get_status(self) -> Optional[Dict[str, Any]]:
        """Structured host status, or None when the host reports nothing."""
        ...

    def trigger_autoplay(self) -> None:
        ...

    def get_logs(self) -> List[LogEntry]:
        ...

    def clear_logs(self) -> None:
        ...

    def log(self, message: str) -> None:
        ...
