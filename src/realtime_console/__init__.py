"""Realtime voice console.

This package provides the session orchestrator, turn-taking, interruption,
event logging and usage accounting for a realtime voice conversation with a
remote speech-to-speech service.
"""

__version__ = "0.1.0"
