"""Claude Code and Codex quota windows, per-window usage pricing and Claude hook management."""

__version__ = "0.1.0"