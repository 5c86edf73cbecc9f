"""Function-call dispatch table.

The agent may ask the bridge to run named functions. The deployment supplies
a mapping of function name to handler; VoiceRelay freezes it at startup and
never resolves handlers any other way.

A handler takes the decoded arguments dict and returns a JSON-serialisable
result. Handlers may be plain functions or coroutines.
"""

from __future__ import annotations

import importlib
import inspect
import json
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger

from voicerelay.core.events import FunctionCall, FunctionCallResponse

FunctionHandler = Callable[[dict[str, Any]], Any | Awaitable[Any]]


class FunctionRegistry:
    """Immutable name -> handler mapping.

    Usage:
        registry = FunctionRegistry({"get_weather": get_weather})
        response = await registry.dispatch(call)
    """

    def __init__(self, handlers: Mapping[str, FunctionHandler] | None = None) -> None:
        handlers = dict(handlers or {})
        for name, handler in handlers.items():
            if not callable(handler):
                raise TypeError(f"Handler for function '{name}' is not callable")
        self._handlers: Mapping[str, FunctionHandler] = MappingProxyType(handlers)

    @classmethod
    def from_import_path(cls, path: str) -> FunctionRegistry:
        """Load a mapping from ``"package.module:ATTRIBUTE"``."""
        module_name, _, attr = path.partition(":")
        if not module_name or not attr:
            raise ValueError(f"Function map path must look like 'module:attribute', got {path!r}")
        module = importlib.import_module(module_name)
        mapping = getattr(module, attr)
        if not isinstance(mapping, Mapping):
            raise TypeError(f"{path} is not a mapping of function names to handlers")
        logger.info(f"Loaded {len(mapping)} functions from {path}")
        return cls(mapping)

    @property
    def handlers(self) -> Mapping[str, FunctionHandler]:
        return self._handlers

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    async def invoke(self, name: str, arguments: dict[str, Any]) -> Any:
        """Run one handler. Unknown names produce an error result, not an exception."""
        handler = self._handlers.get(name)
        if handler is None:
            return {"error": f"Unknown function: {name}"}
        result = handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def dispatch(self, call: FunctionCall) -> FunctionCallResponse:
        """Run a function call and always produce a response for it."""
        try:
            arguments = json.loads(call.arguments) if call.arguments else {}
            logger.info(f"Function call: {call.name} (ID: {call.id}), arguments: {arguments}")
            result = await self.invoke(call.name, arguments)
            content = json.dumps(result)
        except Exception as e:
            logger.error(f"Error calling function {call.name}: {e}")
            content = json.dumps({"error": f"Function call failed with: {e}"})

        logger.debug(f"Function call result for {call.name}: {content}")
        return FunctionCallResponse(id=call.id, name=call.name, content=content)


def error_response(
    error: Exception | str, call_id: str = "unknown", name: str = "unknown"
) -> FunctionCallResponse:
    """Best-effort response for a call (or whole request) that could not be processed."""
    return FunctionCallResponse(
        id=call_id,
        name=name,
        content=json.dumps({"error": f"Function call failed with: {error}"}),
    )
