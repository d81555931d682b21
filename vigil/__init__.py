"""Vigil: chat-driven agent orchestrator with heartbeat checks and cron directives."""

__version__ = "0.1.0"
