"""Registry mapping tool names to their descriptors and bound instances."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from .context import HostContext
from .tools import ToolDescriptor, ToolHandler

logger = logging.getLogger(__name__)


class RegistrationPolicy(Enum):
    """What register_all does when a tool's constructor raises."""

    STRICT = "strict"  # re-raise, aborting startup
    SKIP = "skip"  # log a warning and continue with the remaining tools


@dataclass(frozen=True)
class RegisteredTool:
    descriptor: ToolDescriptor
    instance: ToolHandler


class ToolRegistry:
    """
    Name -> (descriptor, instance) store shared by all requests.

    Registration is expected once at startup. Each write builds the instance
    first and then replaces the entry with a single assignment under a lock,
    so readers see either the old binding or the new one. Listing order is
    the order in which names were first registered.
    """

    def __init__(self):
        self._entries: Dict[str, RegisteredTool] = {}
        self._lock = threading.Lock()

    def register(self, descriptor: ToolDescriptor, context: HostContext) -> RegisteredTool:
        """
        Bind a descriptor to the context and store it under its name.

        Args:
            descriptor: Tool to register
            context: Host capability context passed to the tool's factory

        Returns:
            The stored entry

        Raises:
            Whatever the tool's constructor raises; nothing is stored then
        """
        instance = descriptor.create(context)
        entry = RegisteredTool(descriptor=descriptor, instance=instance)

        with self._lock:
            replaced = descriptor.name in self._entries
            self._entries[descriptor.name] = entry

        if replaced:
            logger.info("Replaced tool registration: %s", descriptor.name)
        else:
            logger.debug("Registered tool: %s", descriptor.name)
        return entry

    def register_all(
        self,
        descriptors: Iterable[ToolDescriptor],
        context: HostContext,
        policy: RegistrationPolicy = RegistrationPolicy.STRICT,
    ) -> List[str]:
        """
        Register several tools, applying ``policy`` to constructor failures.

        Returns:
            Names of the tools that were skipped (always empty under STRICT)
        """
        skipped = []
        for descriptor in descriptors:
            try:
                self.register(descriptor, context)
            except Exception:
                if policy is RegistrationPolicy.STRICT:
                    raise
                logger.warning("Skipping tool %s: construction failed", descriptor.name, exc_info=True)
                skipped.append(descriptor.name)
        return skipped

    def lookup(self, name: str) -> Optional[RegisteredTool]:
        return self._entries.get(name)

    def list(self) -> List[ToolDescriptor]:
        with self._lock:
            return [entry.descriptor for entry in self._entries.values()]

    def registered_names(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries
