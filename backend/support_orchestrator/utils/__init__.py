"""
HTTP middleware and Prometheus telemetry shared by the API layer.
"""
from .middleware import ErrorHandlingMiddleware, RequestIDMiddleware, TimingMiddleware
from .telemetry import setup_telemetry

__all__ = [
    'ErrorHandlingMiddleware',
    'RequestIDMiddleware',
    'TimingMiddleware',
    'setup_telemetry'
]
