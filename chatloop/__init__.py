"""chatloop - a terminal chat client for GitHub Copilot with tool calling."""

__version__ = "0.1.0"
