"""Result of processing one event."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    REJECTED = "rejected"  # terminal: retrying cannot fix the payload
    FAILED = "failed"  # transient: left for broker redelivery


class ProcessOutcome(BaseModel):
    """What the processor did with an event."""

    status: OutcomeStatus
    event_type: Optional[str] = None
    customer_id: Optional[str] = None
    event_id: Optional[str] = None
    purchase_id: Optional[str] = None
    work_order_id: Optional[str] = None
    knowledge_id: Optional[str] = None
    duplicate: bool = False
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def retryable(self) -> bool:
        return self.status == OutcomeStatus.FAILED
