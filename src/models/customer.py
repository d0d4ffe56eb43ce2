"""Customer profile models read from and written to the derived store."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.knowledge import KBResult


class CustomerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    VIP = "vip"
    AT_RISK = "at-risk"


class Importance(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WorkOrderStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Sort ranks shared by the context builder queries.
IMPORTANCE_RANK = {"critical": 1, "high": 2, "medium": 3, "low": 4}
PRIORITY_RANK = {"urgent": 1, "critical": 1, "high": 2, "medium": 3, "low": 4}
CLOSED_WORK_ORDER_STATUSES = (WorkOrderStatus.COMPLETED.value, WorkOrderStatus.CANCELLED.value)


class CustomerRecord(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    status: str = CustomerStatus.ACTIVE.value
    customer_since: float
    lifetime_value: float = 0.0
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    created_at: float
    updated_at: float


class TimelineEvent(BaseModel):
    id: str
    seq: int
    customer_id: str
    event_type: str
    event_date: float
    title: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[float] = None
    status: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    agent_notes: Optional[str] = None
    source_service: Optional[str] = None
    subject: Optional[str] = None


class PurchaseRecord(BaseModel):
    id: str
    customer_id: str
    product_name: str
    product_sku: Optional[str] = None
    quantity: int = 1
    price: float = 0.0
    total: float = 0.0
    purchase_date: float
    warranty_expires: Optional[float] = None


class WorkOrderRecord(BaseModel):
    id: str
    customer_id: str
    order_type: str
    product_id: Optional[str] = None
    issue_description: Optional[str] = None
    resolution: Optional[str] = None
    status: str = WorkOrderStatus.OPEN.value
    priority: str = "medium"
    assigned_to: Optional[str] = None
    cost: Optional[float] = None
    created_date: float
    completed_date: Optional[float] = None


class KnowledgeNote(BaseModel):
    id: str
    customer_id: str
    content: str
    category: Optional[str] = None
    importance: str = Importance.MEDIUM.value
    tags: List[str] = Field(default_factory=list)
    source: Optional[str] = None
    related_event_id: Optional[str] = None
    created_at: float


class Relationship(BaseModel):
    duration_days: int
    status: str
    lifetime_value: float
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)


class PurchaseStats(BaseModel):
    """Recomputed from purchase rows, independent of the stored lifetime_value."""

    total_purchases: int = 0
    total_spent: float = 0.0
    avg_purchase: float = 0.0
    last_purchase_date: Optional[float] = None
    lifetime_value_drift: float = 0.0


class PurchaseSection(BaseModel):
    recent: List[PurchaseRecord] = Field(default_factory=list)
    stats: PurchaseStats = Field(default_factory=PurchaseStats)


class WorkOrderSection(BaseModel):
    recent: List[WorkOrderRecord] = Field(default_factory=list)
    open: List[WorkOrderRecord] = Field(default_factory=list)


class KnowledgeSection(BaseModel):
    all: List[KnowledgeNote] = Field(default_factory=list)
    critical: List[KnowledgeNote] = Field(default_factory=list)


class CustomerContext(BaseModel):
    """Consolidated customer view for downstream AI callers."""

    customer: CustomerRecord
    relationship: Relationship
    recent_activity: Optional[List[TimelineEvent]] = None
    last_interaction: Optional[TimelineEvent] = None
    purchases: Optional[PurchaseSection] = None
    work_orders: Optional[WorkOrderSection] = None
    knowledge: Optional[KnowledgeSection] = None
    related_knowledge: List[KBResult] = Field(default_factory=list)
    summary: str = ""
