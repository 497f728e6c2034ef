"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .delivery import (
    FailedItemDetail,
    DeliveryJobSnapshot,
    DeliveryStatusResponse,
    ErrorResponse,
)

__all__ = [
    "FailedItemDetail",
    "DeliveryJobSnapshot",
    "DeliveryStatusResponse",
    "ErrorResponse",
]
