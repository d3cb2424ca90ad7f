"""
API module for the support orchestrator.
"""
from .routes import approvals, chat, health, sessions

__all__ = ["approvals", "chat", "health", "sessions"]
