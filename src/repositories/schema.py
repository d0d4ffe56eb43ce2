"""Derived store tables, declared with SQLAlchemy Core."""

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()

customers = Table(
    "customers",
    metadata,
    Column("id", String(128), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("email", String(320)),  # stored lower-cased
    Column("phone", String(64)),
    Column("company", String(255)),
    Column("status", String(32), nullable=False, server_default="active"),
    Column("customer_since", Float, nullable=False),
    Column("lifetime_value", Float, nullable=False, server_default="0"),
    Column("tags", JSON),
    Column("custom_fields", JSON),
    Column("created_at", Float, nullable=False),
    Column("updated_at", Float, nullable=False),
    Index("idx_customers_email", "email"),
    Index("idx_customers_status", "status"),
)

# Append-only timeline. seq is the arrival order and only breaks event_date ties.
customer_events = Table(
    "customer_events",
    metadata,
    Column("seq", Integer, primary_key=True, autoincrement=True),
    Column("id", String(64), nullable=False, unique=True),
    Column(
        "customer_id",
        String(128),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("event_type", String(64), nullable=False),
    Column("event_date", Float, nullable=False),
    Column("title", String(512)),
    Column("description", Text),
    Column("amount", Float),
    Column("status", String(64)),
    Column("metadata", JSON),
    Column("agent_notes", Text),
    Column("source_service", String(128)),
    Column("subject", String(512)),
    Column("raw_payload", JSON),
    Column("created_at", Float, nullable=False),
    Index("idx_customer_events_customer_id", "customer_id"),
    Index("idx_customer_events_date", "customer_id", "event_date"),
    Index("idx_customer_events_type", "event_type"),
)

purchases = Table(
    "purchases",
    metadata,
    Column("id", String(128), primary_key=True),
    Column(
        "customer_id",
        String(128),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("product_name", String(255), nullable=False),
    Column("product_sku", String(128)),
    Column("quantity", Integer, nullable=False, server_default="1"),
    Column("price", Float),
    Column("total", Float, nullable=False, server_default="0"),
    Column("purchase_date", Float, nullable=False),
    Column("warranty_expires", Float),
    Column("metadata", JSON),
    Column("created_at", Float, nullable=False),
    Index("idx_purchases_customer_id", "customer_id"),
    Index("idx_purchases_date", "purchase_date"),
)

work_orders = Table(
    "work_orders",
    metadata,
    Column("id", String(128), primary_key=True),
    Column(
        "customer_id",
        String(128),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("order_type", String(64), nullable=False),
    Column("product_id", String(128)),
    Column("issue_description", Text),
    Column("resolution", Text),
    Column("status", String(32), nullable=False, server_default="open"),
    Column("priority", String(32), nullable=False, server_default="medium"),
    Column("assigned_to", String(255)),
    Column("cost", Float),
    Column("created_date", Float, nullable=False),
    Column("completed_date", Float),
    Column("last_event_date", Float, nullable=False),
    Column("metadata", JSON),
    Column("updated_at", Float, nullable=False),
    Index("idx_work_orders_customer_id", "customer_id"),
    Index("idx_work_orders_status", "status"),
)

customer_knowledge = Table(
    "customer_knowledge",
    metadata,
    Column("id", String(64), primary_key=True),
    Column(
        "customer_id",
        String(128),
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("content", Text, nullable=False),
    Column("category", String(64)),
    Column("importance", String(16), nullable=False, server_default="medium"),
    Column("tags", JSON),
    Column("source", String(128)),
    Column("related_event_id", String(64)),
    Column("created_at", Float, nullable=False),
    Column("updated_at", Float, nullable=False),
    Index("idx_customer_knowledge_customer_id", "customer_id"),
    Index("idx_customer_knowledge_importance", "importance"),
)
