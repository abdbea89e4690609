"""The bounded tool-calling loop and the events it reports."""

from chatloop.orchestrator.core import Orchestrator, TurnCancelled, TurnState
from chatloop.orchestrator.events import TurnEvent

__all__ = ["Orchestrator", "TurnCancelled", "TurnEvent", "TurnState"]
