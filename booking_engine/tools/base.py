"""Base class for LLM-callable tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseTool(ABC):
    """A tool the conversational front-end can call.

    Subclasses expose a name, a description and a JSON schema for their
    parameters, and return a JSON-serialisable dict from :meth:`execute`.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters_schema(self) -> dict: ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> dict[str, Any]: ...

    def to_schema(self) -> dict[str, Any]:
        """Tool definition in the shape LLM tool-use APIs expect."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters_schema,
        }
