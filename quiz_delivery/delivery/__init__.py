"""
Notion Delivery Core Module.

Delivers the graded items of a quiz attempt to a Notion database as a
tracked background job. DeliveryService lives in .service and is imported
from there by the API layer.
"""

from .entities import (
    DeliveryJobStatus,
    PublicDeliveryStatus,
    DeliveryJob,
    DeliveryItem,
    AttemptSummary,
    DeliveryInput,
    FailureRecord,
    JobProgress,
    JobOutcome,
)
from .errors import (
    DeliveryError,
    DeliveryRequestError,
    JobNotFoundError,
    InvalidTransitionError,
    InvalidProgressError,
    JobStoreUnavailableError,
    AttemptSourceError,
    AttemptNotFoundError,
    AttemptForbiddenError,
    AttemptNotDeliverableError,
)
from .config import NotionConfig
from .client import NotionClient
from .retry_policy import ItemRetryPolicy
from .engine import DedupSyncEngine
from .persistence import JobStore
from .runner import JobRunner
from .dispatcher import JobDispatcher
from .recovery import RecoveryManager

__all__ = [
    # Entities
    "DeliveryJobStatus",
    "PublicDeliveryStatus",
    "DeliveryJob",
    "DeliveryItem",
    "AttemptSummary",
    "DeliveryInput",
    "FailureRecord",
    "JobProgress",
    "JobOutcome",
    # Errors
    "DeliveryError",
    "DeliveryRequestError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "InvalidProgressError",
    "JobStoreUnavailableError",
    "AttemptSourceError",
    "AttemptNotFoundError",
    "AttemptForbiddenError",
    "AttemptNotDeliverableError",
    # Client
    "NotionConfig",
    "NotionClient",
    "ItemRetryPolicy",
    # Engine
    "DedupSyncEngine",
    # Persistence
    "JobStore",
    # Execution
    "JobRunner",
    "JobDispatcher",
    # Recovery
    "RecoveryManager",
]
