"""
Type definitions for the webhook dispatcher.
Contains input/output type definitions for all functions, grouped by module.
"""

from hookrelay.types.api import (
    EnqueueRequest,
    EnqueueResponse,
    ErrorResponse,
    HealthResponse,
    JobResponse,
    QueueListResponse,
    QueueResponse,
)
from hookrelay.types.job import (
    AttemptResult,
    DeliverySuccess,
    ErrorCallbackPayload,
    JobContext,
    TimeoutFailure,
    TransportFailure,
)

__all__ = [
    # API types
    "EnqueueRequest",
    "EnqueueResponse",
    "JobResponse",
    "QueueResponse",
    "QueueListResponse",
    "HealthResponse",
    "ErrorResponse",
    # Job types
    "JobContext",
    "AttemptResult",
    "DeliverySuccess",
    "TimeoutFailure",
    "TransportFailure",
    "ErrorCallbackPayload",
]
