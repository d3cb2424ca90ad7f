"""
API routes module initialization.
"""
from . import approvals, chat, health, sessions

__all__ = ["approvals", "chat", "health", "sessions"]
