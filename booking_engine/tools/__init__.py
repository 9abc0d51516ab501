"""LLM-callable tools for the scheduling assistant."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from booking_engine.errors import InputError

from .base import BaseTool
from .booking import (
    BookMeetingTool,
    CheckExistingBookingTool,
    ProcessBookingRequestTool,
    ShowBookingConfirmationTool,
)
from .calendar import GetAvailabilityTool, ShowBookingModalTool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name -> tool lookup used by the HTTP tool endpoint."""

    def __init__(self, tools: Iterable[BaseTool] = ()) -> None:
        self._tools: dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    @property
    def names(self) -> list[str]:
        return sorted(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        return [self._tools[n].to_schema() for n in self.names]

    async def execute(self, name: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            raise InputError(f"unknown tool {name!r}", errors=[f"unknown tool: {name}"])
        logger.info("Executing tool %s", name)
        return await tool.execute(**(params or {}))


__all__ = [
    "BaseTool",
    "BookMeetingTool",
    "CheckExistingBookingTool",
    "GetAvailabilityTool",
    "ProcessBookingRequestTool",
    "ShowBookingConfirmationTool",
    "ShowBookingModalTool",
    "ToolRegistry",
]
