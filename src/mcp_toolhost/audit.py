"""Audit logging of tool calls."""

import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Union


class AuditLogger:
    """Append-only audit trail, one line per tool call outcome."""

    def __init__(self, log_path: Union[str, Path]):
        """
        Initialize audit logger.

        Args:
            log_path: Path to the audit log file (parent directories are created)
        """
        self.log_path = Path(log_path).expanduser()
        self._lock = threading.Lock()

    def log(self, action: str, tool: str, details: str, user: str = "mcp-client"):
        """
        Write audit log entry.

        Args:
            action: Outcome recorded (CALL_OK, CALL_FAILED, CALL_REJECTED, ...)
            tool: Tool name
            details: Additional details; newlines are flattened
            user: Caller the call came from
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        details = " ".join(str(details).split())
        log_entry = f"[{timestamp}] USER={user} ACTION={action} TOOL={tool} DETAILS={details}\n"

        try:
            with self._lock:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.log_path, "a") as f:
                    f.write(log_entry)
        except OSError as e:
            print(f"Warning: Could not write to audit log: {e}", file=sys.stderr)
