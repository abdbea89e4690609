"""The contract every callable tool implements."""

from abc import ABC, abstractmethod

from chatloop.types import ToolResult


def normalize_schema(schema: dict) -> dict:
    """Close an object schema: unknown argument keys are rejected unless allowed."""
    s = dict(schema or {})
    s.setdefault("type", "object")
    s.setdefault("properties", {})
    s.setdefault("additionalProperties", False)
    return s


class Tool(ABC):
    """
    A function the model may call by name.

    ``parameters`` is a JSON schema for the keyword arguments passed to
    ``execute``. ``execute`` may raise; the orchestrator turns exceptions and
    timeouts into failed results.
    """

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict: ...

    @property
    def parameter_names(self) -> list[str]:
        return list(self.parameters.get("properties", {}))

    @abstractmethod
    async def execute(self, **kwargs) -> ToolResult: ...

    def to_openai_schema(self) -> dict:
        """The ``tools`` entry sent with each chat request."""
        function = {
            "name": self.name,
            "description": self.description,
            "parameters": normalize_schema(self.parameters),
        }
        return {"type": "function", "function": function}
