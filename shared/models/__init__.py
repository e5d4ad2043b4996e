"""
Shared Models
=============

Pydantic models shared across Normwatch services.
"""

from shared.models.common import (
    BaseResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    "BaseResponse",
    "ErrorResponse",
    "HealthResponse",
]
