"""Detect, confirm, and execute tool calls found in a model response."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from hearth.core.config import Settings
from hearth.core.logging import get_logger, log_context
from hearth.core.metrics import TOOL_CALLS
from hearth.tools.definitions import (
    ToolCall,
    ToolResult,
    generate_tool_descriptions,
    get_tool,
    is_destructive_tool,
)
from hearth.tools.executor import ToolExecutor
from hearth.tools.parser import parse_tool_calls, remove_tool_blocks
from hearth.utils.ids import new_id
from hearth.utils.time import now_ms

logger = get_logger(__name__)

SUCCESS_GLYPH = "✅"
FAILURE_GLYPH = "❌"
CANCELLED_GLYPH = "⏹️"


@dataclass(slots=True)
class PendingConfirmation:
    id: str
    call: ToolCall
    destructive: bool
    created_at: int
    future: asyncio.Future = field(repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool": self.call.name,
            "arguments": self.call.arguments,
            "destructive": self.destructive,
            "created_at": self.created_at,
        }


class ConfirmationBroker:
    """Parks a tool call until someone answers yes or no.

    Each request waits on a future that the HTTP layer (or a test)
    resolves by id. A dismissal or timeout counts as "no".
    """

    def __init__(self, timeout_s: float = 300.0) -> None:
        self.timeout_s = timeout_s
        self._pending: dict[str, PendingConfirmation] = {}

    def pending(self) -> list[PendingConfirmation]:
        return list(self._pending.values())

    async def request(self, call: ToolCall) -> bool:
        future = asyncio.get_running_loop().create_future()
        entry = PendingConfirmation(
            id=new_id("confirm"),
            call=call,
            destructive=is_destructive_tool(call.name),
            created_at=now_ms(),
            future=future,
        )
        self._pending[entry.id] = entry
        logger.info("Awaiting confirmation for %s", call.name, extra=log_context(confirmation=entry.id))
        try:
            return bool(await asyncio.wait_for(future, timeout=self.timeout_s))
        except asyncio.TimeoutError:
            logger.info("Confirmation %s timed out", entry.id)
            return False
        finally:
            self._pending.pop(entry.id, None)

    def resolve(self, confirmation_id: str, approved: bool) -> bool:
        entry = self._pending.get(confirmation_id)
        if entry is None or entry.future.done():
            return False
        entry.future.set_result(approved)
        return True

    def dismiss(self, confirmation_id: str) -> bool:
        return self.resolve(confirmation_id, False)

    def dismiss_all(self) -> None:
        for confirmation_id in list(self._pending):
            self.dismiss(confirmation_id)


@dataclass(slots=True)
class ProcessedResponse:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    has_tool_calls: bool = False
    tool_summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "tool_calls": [call.to_dict() for call in self.tool_calls],
            "tool_results": [result.to_dict() for result in self.tool_results],
            "has_tool_calls": self.has_tool_calls,
            "tool_summary": self.tool_summary,
        }


class ToolManager:
    """Bridge between raw model output and the tool executor."""

    def __init__(
        self,
        settings: Settings,
        executor: ToolExecutor,
        broker: ConfirmationBroker | None = None,
    ) -> None:
        self.settings = settings
        self.executor = executor
        self.broker = broker or ConfirmationBroker(settings.confirmation_timeout_s)

    @property
    def enabled(self) -> bool:
        return self.settings.enable_tool_calling

    def update_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.broker.timeout_s = settings.confirmation_timeout_s

    def tool_descriptions(self) -> str:
        return generate_tool_descriptions()

    async def execute_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        return await self.executor.execute(ToolCall(name=name, arguments=arguments))

    async def process_response(self, response: str) -> ProcessedResponse:
        calls = parse_tool_calls(response)
        if not calls or not self.enabled:
            return ProcessedResponse(content=response)
        limit = self.settings.max_tool_calls_per_response
        if len(calls) > limit:
            logger.warning("Too many tool calls (%s), limiting to %s", len(calls), limit)
            calls = calls[:limit]
        results: list[ToolResult] = []
        summary: list[str] = []
        for call in calls:
            result, line, outcome = await self._run(call)
            results.append(result)
            summary.append(line)
            TOOL_CALLS.labels(tool=call.name, outcome=outcome).inc()
        return ProcessedResponse(
            content=remove_tool_blocks(response),
            tool_calls=calls,
            tool_results=results,
            has_tool_calls=True,
            tool_summary="\n".join(summary),
        )

    # Internal helpers -------------------------------------------------

    async def _run(self, call: ToolCall) -> tuple[ToolResult, str, str]:
        if get_tool(call.name) is None:
            return ToolResult(False, f"Unknown tool: {call.name}"), f"{FAILURE_GLYPH} {call.name}: Unknown tool", "unknown"
        if self.settings.require_tool_confirmation and is_destructive_tool(call.name):
            if not await self.broker.request(call):
                cancelled = f"{call.name}: Cancelled by user"
                return ToolResult(False, cancelled), f"{CANCELLED_GLYPH} {cancelled}", "cancelled"
        result = await self.executor.execute(call)
        if result.success:
            logger.info("Tool %s: %s", call.name, result.message)
            return result, f"{SUCCESS_GLYPH} {result.message}", "success"
        logger.warning("Tool %s failed: %s", call.name, result.message)
        return result, f"{FAILURE_GLYPH} {result.message}", "failure"


__all__ = ["ToolManager", "ConfirmationBroker", "PendingConfirmation", "ProcessedResponse"]
