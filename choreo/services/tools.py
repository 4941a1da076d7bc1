"""Registry of externally provided tool handlers, routed by name prefix."""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from choreo.core.models import ToolOutcome, ToolSpec

logger = logging.getLogger(__name__)

ToolHandler = Callable[[str, Dict[str, Any]], Union[ToolOutcome, Awaitable[ToolOutcome]]]


@dataclass
class _Registration:
    prefix: str
    handler: ToolHandler
    tools: Tuple[ToolSpec, ...]


class ToolRegistry:
    """Registry mapping tool-name prefixes to the handlers that serve them."""

    def __init__(self) -> None:
        self._registrations: Dict[str, _Registration] = {}

    def register(self, prefix: str, handler: ToolHandler, tools: Iterable[ToolSpec] = ()) -> None:
        tools = tuple(tools)
        for spec in tools:
            if not spec.name.startswith(prefix):
                raise ValueError(f"Tool '{spec.name}' does not match prefix '{prefix}'")
        self._registrations[prefix] = _Registration(prefix=prefix, handler=handler, tools=tools)

    def match(self, tool_name: str) -> Optional[ToolHandler]:
        """Return the handler with the longest prefix matching ``tool_name``."""
        best: Optional[_Registration] = None
        for registration in self._registrations.values():
            if tool_name.startswith(registration.prefix):
                if best is None or len(registration.prefix) > len(best.prefix):
                    best = registration
        return best.handler if best else None

    def spec(self, tool_name: str) -> Optional[ToolSpec]:
        for registration in self._registrations.values():
            for spec in registration.tools:
                if spec.name == tool_name:
                    return spec
        return None

    def catalog(self, *, allow_side_effects: bool) -> List[ToolSpec]:
        """Declared tools, omitting side-effecting ones unless allowed."""
        return [
            spec
            for registration in self._registrations.values()
            for spec in registration.tools
            if allow_side_effects or not spec.side_effecting
        ]

    async def dispatch(self, tool_name: str, tool_input: Dict[str, Any]) -> ToolOutcome:
        """Run the matching handler; failures come back as error outcomes."""
        handler = self.match(tool_name)
        if handler is None:
            return ToolOutcome(result=f"Unknown tool: {tool_name}", is_error=True)
        try:
            outcome = handler(tool_name, tool_input)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as exc:  # noqa: BLE001
            logger.warning("Tool handler for %s failed: %s", tool_name, exc)
            return ToolOutcome(result=f"Tool {tool_name} failed: {exc}", is_error=True)
        if not isinstance(outcome, ToolOutcome):
            return ToolOutcome(result=str(outcome))
        return outcome
