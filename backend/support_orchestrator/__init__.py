"""
Support orchestration engine.
Multi-tenant conversational support with ticket resolution, approvals and tools.
"""

__version__ = "1.0.0"
