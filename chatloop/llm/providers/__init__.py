from chatloop.llm.providers.base import CompletionError, Provider
from chatloop.llm.providers.copilot import CopilotProvider

__all__ = ["CompletionError", "CopilotProvider", "Provider"]
