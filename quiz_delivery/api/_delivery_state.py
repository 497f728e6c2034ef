"""
Delivery service state management for API integration.

Provides singleton access to the DeliveryService instance.
Initialized during FastAPI lifespan.

Usage:
    from ._delivery_state import get_delivery_service, init_delivery_service

    # In lifespan:
    init_delivery_service(db_path, attempts_dir)

    # In routers:
    service = get_delivery_service()
"""

from pathlib import Path
from typing import Optional

from quiz_delivery.delivery.dispatcher import DEFAULT_MAX_WORKERS
from quiz_delivery.delivery.service import DeliveryService


# Global delivery service instance
_delivery_service: Optional[DeliveryService] = None


def init_delivery_service(
    db_path: str | Path,
    attempts_dir: str | Path,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> DeliveryService:
    """
    Initialize the delivery service singleton.

    Returns the existing instance if already initialized.
    """
    global _delivery_service

    if _delivery_service is not None:
        return _delivery_service

    _delivery_service = DeliveryService.create(
        db_path=db_path,
        attempts_dir=attempts_dir,
        max_workers=max_workers,
    )

    return _delivery_service


def get_delivery_service() -> DeliveryService:
    """
    Get the delivery service singleton.

    Raises:
        RuntimeError: If delivery service not initialized
    """
    if _delivery_service is None:
        raise RuntimeError(
            "Delivery service not initialized. "
            "Ensure init_delivery_service() is called during startup."
        )

    return _delivery_service


def shutdown_delivery_service() -> None:
    """
    Shutdown the delivery service.

    Waits for in-flight jobs to finish.
    """
    global _delivery_service

    if _delivery_service is not None:
        _delivery_service.shutdown(wait=True)
        _delivery_service = None
