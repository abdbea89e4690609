"""In-memory conversation state."""

from chatloop.session.transcript import Transcript

__all__ = ["Transcript"]
