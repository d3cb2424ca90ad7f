"""
Human approval workflow for sensitive actions.

Version: 1.0.0
"""
from .models import ApprovalRequest, ApprovalStatus
from .approval_store import ApprovalStore, InMemoryApprovalStore
from .redis_approval_store import RedisApprovalStore
from .notifier import ApprovalNotifier

__all__ = [
    'ApprovalRequest',
    'ApprovalStatus',
    'ApprovalStore',
    'InMemoryApprovalStore',
    'RedisApprovalStore',
    'ApprovalNotifier'
]
