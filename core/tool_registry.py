"""
Tool registry: the engine's window onto external tools.

A tool is any callable ``fn(parameters: dict, sandbox: Sandbox)``, sync or
async.  Sync tools run on the default thread pool so a slow tool never blocks
the event loop; async tools are awaited directly.  :meth:`ToolRegistry.execute`
never raises: unknown tools, exceptions and timeouts all come back as a failed
:class:`ToolExecutionResult`.

A tool signals failure by raising.  Its return value becomes the result
payload; a returned dict may carry ``cost`` and ``resources_used`` keys, which
are lifted into the result record.  Returning a ready-made
:class:`ToolExecutionResult` is also accepted.

Usage::

    registry = ToolRegistry()

    @registry.tool("echo", description="Echo parameters back")
    def echo(params, sandbox):
        return params
"""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import ToolNotFoundError
from core.logging_utils import log_json
from core.types import ResourceUsage, ToolExecutionResult

ToolFn = Callable[..., Any]


@dataclass
class Tool:
    id: str
    fn: ToolFn
    description: str = ""
    timeout_s: Optional[float] = None
    default_resources: Optional[ResourceUsage] = None

    @property
    def is_async(self) -> bool:
        return (inspect.iscoroutinefunction(self.fn)
                or inspect.iscoroutinefunction(getattr(self.fn, "__call__", None)))


class ToolRegistry:
    def __init__(self, default_timeout_s: Optional[float] = None):
        self.default_timeout_s = default_timeout_s
        self._tools: Dict[str, Tool] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, tool_id: str, fn: ToolFn, description: str = "",
                 timeout_s: Optional[float] = None,
                 resources: Optional[ResourceUsage] = None) -> Tool:
        """Register (or replace) a tool under *tool_id*."""
        tool = Tool(id=tool_id, fn=fn, description=description or (fn.__doc__ or "").strip(),
                    timeout_s=timeout_s, default_resources=resources)
        self._tools[tool_id] = tool
        log_json("DEBUG", "tool_registered", details={"tool_id": tool_id, "async": tool.is_async})
        return tool

    def tool(self, tool_id: str, **kwargs) -> Callable[[ToolFn], ToolFn]:
        """Decorator form of :meth:`register`."""
        def _decorator(fn: ToolFn) -> ToolFn:
            self.register(tool_id, fn, **kwargs)
            return fn
        return _decorator

    def get(self, tool_id: str) -> Tool:
        try:
            return self._tools[tool_id]
        except KeyError:
            raise ToolNotFoundError(f"Tool '{tool_id}' is not registered.") from None

    def has(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def list_tools(self) -> List[Dict[str, Any]]:
        return [
            {"id": t.id, "description": t.description, "async": t.is_async, "timeout_s": t.timeout_s}
            for t in self._tools.values()
        ]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, tool_id: str, parameters: Dict[str, Any], sandbox=None,
                      estimated: Optional[ResourceUsage] = None) -> ToolExecutionResult:
        """Run a tool and return its :class:`ToolExecutionResult`.  Never raises."""
        usage = estimated or ResourceUsage()
        t0 = time.monotonic()
        try:
            tool = self.get(tool_id)
        except ToolNotFoundError as exc:
            log_json("WARN", "tool_not_found", details={"tool_id": tool_id})
            return ToolExecutionResult(tool_id=tool_id, success=False, error=str(exc),
                                       resources_used=usage)

        timeout = tool.timeout_s if tool.timeout_s is not None else self.default_timeout_s
        try:
            call = self._invoke(tool, parameters, sandbox)
            raw = await asyncio.wait_for(call, timeout=timeout) if timeout else await call
        except asyncio.TimeoutError:
            elapsed = (time.monotonic() - t0) * 1000
            log_json("WARN", "tool_timeout", details={"tool_id": tool_id, "timeout_s": timeout})
            return ToolExecutionResult(tool_id=tool_id, success=False,
                                       error=f"Tool '{tool_id}' timed out after {timeout}s",
                                       execution_time_ms=elapsed, resources_used=usage)
        except Exception as exc:
            elapsed = (time.monotonic() - t0) * 1000
            log_json("WARN", "tool_failed", details={"tool_id": tool_id, "error": str(exc)})
            return ToolExecutionResult(tool_id=tool_id, success=False,
                                       error=f"{type(exc).__name__}: {exc}",
                                       execution_time_ms=elapsed, resources_used=usage)

        elapsed = (time.monotonic() - t0) * 1000
        try:
            return self._normalise(tool_id, raw, elapsed, usage)
        except (TypeError, ValueError) as exc:
            log_json("WARN", "tool_result_invalid", details={"tool_id": tool_id, "error": str(exc)})
            return ToolExecutionResult(tool_id=tool_id, success=False,
                                       error=f"Invalid tool result: {exc}",
                                       execution_time_ms=elapsed, resources_used=usage)

    @staticmethod
    async def _invoke(tool: Tool, parameters: Dict[str, Any], sandbox) -> Any:
        if tool.is_async:
            raw = tool.fn(parameters, sandbox)
        else:
            raw = await asyncio.to_thread(tool.fn, parameters, sandbox)
        # Sync callables may still hand back a coroutine or future.
        if inspect.isawaitable(raw):
            raw = await raw
        return raw

    @staticmethod
    def _normalise(tool_id: str, raw: Any, elapsed_ms: float, usage: ResourceUsage) -> ToolExecutionResult:
        if isinstance(raw, ToolExecutionResult):
            if not raw.execution_time_ms:
                raw = replace(raw, execution_time_ms=elapsed_ms)
            return raw
        cost = None
        if isinstance(raw, dict) and ("cost" in raw or "resources_used" in raw):
            raw = dict(raw)
            cost = raw.pop("cost", None)
            measured = raw.pop("resources_used", None)
            if isinstance(measured, ResourceUsage):
                usage = measured
            elif isinstance(measured, dict):
                usage = ResourceUsage.from_dict(measured)
            elif measured is not None:
                raise ValueError(f"resources_used must be a mapping, got {type(measured).__name__}")
        return ToolExecutionResult(tool_id=tool_id, success=True, result=raw,
                                   execution_time_ms=elapsed_ms, resources_used=usage,
                                   cost=float(cost) if cost is not None else None)
