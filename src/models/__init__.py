"""Pydantic models for events, outcomes and customer context."""

from models.customer import (  # noqa: F401
    CustomerContext,
    CustomerRecord,
    CustomerStatus,
    Importance,
    KnowledgeNote,
    PurchaseRecord,
    PurchaseStats,
    TimelineEvent,
    WorkOrderRecord,
    WorkOrderStatus,
)
from models.envelope import EventEnvelope, EventType  # noqa: F401
from models.knowledge import KBQuery, KBResult  # noqa: F401
from models.outcome import OutcomeStatus, ProcessOutcome  # noqa: F401
