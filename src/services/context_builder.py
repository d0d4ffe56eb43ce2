"""
Customer Context Builder.

Read-only assembler that turns the derived store into one consolidated
customer view for downstream AI callers. Purchase statistics are
recomputed from purchase rows instead of trusting the stored
lifetime_value, so drift between the running total and the real sum is
visible. The prose summary comes from fixed templates.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel
from sqlalchemy import case, func, select
from sqlalchemy.engine import Connection

from models.customer import (
    CLOSED_WORK_ORDER_STATUSES,
    IMPORTANCE_RANK,
    PRIORITY_RANK,
    CustomerContext,
    CustomerRecord,
    Importance,
    KnowledgeNote,
    KnowledgeSection,
    PurchaseRecord,
    PurchaseSection,
    PurchaseStats,
    Relationship,
    TimelineEvent,
    WorkOrderRecord,
    WorkOrderSection,
)
from models.knowledge import KBResult
from repositories.schema import customer_events, customer_knowledge, purchases, work_orders
from repositories.store import DerivedStore
from services.identity_resolver import IdentityResolver
from services.knowledge_search import KnowledgeSearchService
from utils.error_handling import NotFoundError
from utils.logging_config import get_logger
from utils.validators import is_email_like

logger = get_logger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24


class ContextOptions(BaseModel):
    """Which sections to include and how many rows each may hold."""

    include_events: bool = True
    include_purchases: bool = True
    include_work_orders: bool = True
    include_knowledge: bool = True
    events_limit: int = 20
    purchases_limit: int = 10
    work_orders_limit: int = 10
    knowledge_limit: int = 10
    critical_limit: int = 5
    knowledge_query: Optional[str] = None
    knowledge_scope: Optional[str] = None
    related_knowledge_limit: int = 3


def _event_from_row(row: Mapping[str, Any]) -> TimelineEvent:
    data = dict(row)
    data["metadata"] = data.get("metadata") or {}
    return TimelineEvent(**{k: v for k, v in data.items() if k in TimelineEvent.model_fields})


def _purchase_from_row(row: Mapping[str, Any]) -> PurchaseRecord:
    return PurchaseRecord(
        **{k: v for k, v in dict(row).items() if k in PurchaseRecord.model_fields}
    )


def _work_order_from_row(row: Mapping[str, Any]) -> WorkOrderRecord:
    return WorkOrderRecord(
        **{k: v for k, v in dict(row).items() if k in WorkOrderRecord.model_fields}
    )


def _note_from_row(row: Mapping[str, Any]) -> KnowledgeNote:
    data = {k: v for k, v in dict(row).items() if k in KnowledgeNote.model_fields}
    data["tags"] = data.get("tags") or []
    return KnowledgeNote(**data)


def format_date(timestamp: Optional[float]) -> str:
    if not timestamp:
        return "N/A"
    try:
        moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning("Unrenderable timestamp in context", extra={"timestamp": repr(timestamp)})
        return "N/A"
    return moment.strftime("%b %d, %Y %H:%M UTC")


class ContextBuilder:
    """Build customer context from the derived store. Never writes."""

    def __init__(
        self,
        store: DerivedStore,
        knowledge_search: Optional[KnowledgeSearchService] = None,
    ):
        self.store = store
        self.knowledge_search = knowledge_search
        self._lookup = IdentityResolver(auto_create=False)

    def build_context(
        self, identifier: str, options: Optional[ContextOptions] = None
    ) -> CustomerContext:
        """Assemble the consolidated view for a customer id or email."""
        options = options or ContextOptions()

        with self.store.connect() as conn:
            customer = self._find_customer(conn, identifier)
            if customer is None:
                raise NotFoundError(f"Customer not found: {identifier}")

            duration_days = max(0, int((time.time() - customer.customer_since) // SECONDS_PER_DAY))
            context = CustomerContext(
                customer=customer,
                relationship=Relationship(
                    duration_days=duration_days,
                    status=customer.status,
                    lifetime_value=customer.lifetime_value,
                    tags=customer.tags,
                    custom_fields=customer.custom_fields,
                ),
            )

            if options.include_events:
                events = self._recent_events(conn, customer.id, options.events_limit)
                context.recent_activity = events
                context.last_interaction = events[0] if events else None

            if options.include_purchases:
                context.purchases = PurchaseSection(
                    recent=self._recent_purchases(conn, customer.id, options.purchases_limit),
                    stats=self._purchase_stats(conn, customer),
                )

            if options.include_work_orders:
                context.work_orders = self._work_orders(
                    conn, customer.id, options.work_orders_limit
                )

            if options.include_knowledge:
                context.knowledge = self._knowledge(
                    conn, customer.id, options.knowledge_limit, options.critical_limit
                )

        if options.knowledge_query:
            context.related_knowledge = self._related_knowledge(customer, options)

        context.summary = self.build_summary(context)
        logger.info(
            "Customer context built",
            extra={
                "customer_id": customer.id,
                "status": customer.status,
                "lifetime_value_drift": (
                    context.purchases.stats.lifetime_value_drift if context.purchases else None
                ),
            },
        )
        return context

    def get_customer_timeline(
        self,
        customer_id: str,
        limit: int = 50,
        event_types: Optional[List[str]] = None,
    ) -> List[TimelineEvent]:
        """Events newest first by event_date, arrival order breaking ties."""
        with self.store.connect() as conn:
            return self._recent_events(conn, customer_id, limit, event_types)

    def _find_customer(self, conn: Connection, identifier: str) -> Optional[CustomerRecord]:
        if is_email_like(identifier):
            return self._lookup.find_by_email(conn, identifier)
        return self._lookup.find_by_id(conn, identifier)

    def _recent_events(
        self,
        conn: Connection,
        customer_id: str,
        limit: int,
        event_types: Optional[List[str]] = None,
    ) -> List[TimelineEvent]:
        stmt = select(customer_events).where(customer_events.c.customer_id == customer_id)
        if event_types:
            stmt = stmt.where(customer_events.c.event_type.in_(event_types))
        stmt = stmt.order_by(
            customer_events.c.event_date.desc(), customer_events.c.seq.desc()
        ).limit(limit)
        return [_event_from_row(row._mapping) for row in conn.execute(stmt)]

    def _recent_purchases(
        self, conn: Connection, customer_id: str, limit: int
    ) -> List[PurchaseRecord]:
        stmt = (
            select(purchases)
            .where(purchases.c.customer_id == customer_id)
            .order_by(purchases.c.purchase_date.desc(), purchases.c.created_at.desc())
            .limit(limit)
        )
        return [_purchase_from_row(row._mapping) for row in conn.execute(stmt)]

    def _purchase_stats(self, conn: Connection, customer: CustomerRecord) -> PurchaseStats:
        row = conn.execute(
            select(
                func.count(purchases.c.id).label("total_purchases"),
                func.coalesce(func.sum(purchases.c.total), 0).label("total_spent"),
                func.max(purchases.c.purchase_date).label("last_purchase_date"),
            ).where(purchases.c.customer_id == customer.id)
        ).fetchone()
        count = int(row.total_purchases or 0)
        total = float(row.total_spent or 0)
        return PurchaseStats(
            total_purchases=count,
            total_spent=total,
            avg_purchase=total / count if count else 0.0,
            last_purchase_date=row.last_purchase_date,
            lifetime_value_drift=round(customer.lifetime_value - total, 6),
        )

    def _work_orders(self, conn: Connection, customer_id: str, limit: int) -> WorkOrderSection:
        recent_stmt = (
            select(work_orders)
            .where(work_orders.c.customer_id == customer_id)
            .order_by(work_orders.c.created_date.desc())
            .limit(limit)
        )
        open_stmt = (
            select(work_orders)
            .where(
                work_orders.c.customer_id == customer_id,
                work_orders.c.status.not_in(CLOSED_WORK_ORDER_STATUSES),
            )
            .order_by(
                case(PRIORITY_RANK, value=work_orders.c.priority, else_=5),
                work_orders.c.created_date.asc(),
            )
        )
        return WorkOrderSection(
            recent=[_work_order_from_row(row._mapping) for row in conn.execute(recent_stmt)],
            open=[_work_order_from_row(row._mapping) for row in conn.execute(open_stmt)],
        )

    def _knowledge(
        self, conn: Connection, customer_id: str, limit: int, critical_limit: int
    ) -> KnowledgeSection:
        all_stmt = (
            select(customer_knowledge)
            .where(customer_knowledge.c.customer_id == customer_id)
            .order_by(
                case(IMPORTANCE_RANK, value=customer_knowledge.c.importance, else_=5),
                customer_knowledge.c.created_at.desc(),
            )
            .limit(limit)
        )
        critical_stmt = (
            select(customer_knowledge)
            .where(
                customer_knowledge.c.customer_id == customer_id,
                customer_knowledge.c.importance == Importance.CRITICAL.value,
            )
            .order_by(customer_knowledge.c.created_at.desc())
            .limit(critical_limit)
        )
        return KnowledgeSection(
            all=[_note_from_row(row._mapping) for row in conn.execute(all_stmt)],
            critical=[_note_from_row(row._mapping) for row in conn.execute(critical_stmt)],
        )

    def _related_knowledge(
        self, customer: CustomerRecord, options: ContextOptions
    ) -> List[KBResult]:
        if self.knowledge_search is None:
            logger.info("Knowledge query ignored; no search client configured")
            return []
        scope = options.knowledge_scope or f"customer:{customer.id}"
        return self.knowledge_search.search_knowledge(
            scope, options.knowledge_query, options.related_knowledge_limit
        )

    def build_summary(self, context: CustomerContext) -> str:
        """Render the Markdown summary handed to AI callers."""
        customer = context.customer
        lines = [
            "### Customer Profile",
            f"Name: {customer.name}",
            f"Email: {customer.email or 'N/A'}",
            f"Phone: {customer.phone or 'N/A'}",
            f"Company: {customer.company or 'N/A'}",
            f"Status: {customer.status}",
            f"Customer Since: {format_date(customer.customer_since)}",
            f"Relationship Duration: {context.relationship.duration_days} days",
            f"Lifetime Value: ${customer.lifetime_value:.2f}",
        ]
        if customer.tags:
            lines.append(f"Tags: {', '.join(customer.tags)}")

        if context.recent_activity:
            lines += ["", "### Recent Activity"]
            for event in context.recent_activity[:5]:
                lines.append(
                    f"- {format_date(event.event_date)}: [{event.event_type}] {event.title}"
                )
                if event.description:
                    snippet = event.description[:100]
                    ellipsis = "..." if len(event.description) > 100 else ""
                    lines.append(f"  {snippet}{ellipsis}")

        if context.purchases:
            stats = context.purchases.stats
            lines += [
                "",
                "### Purchase History",
                f"Total Purchases: {stats.total_purchases}",
                f"Total Spent: ${stats.total_spent:.2f}",
                f"Average Purchase: ${stats.avg_purchase:.2f}",
            ]
            if stats.last_purchase_date:
                lines.append(f"Last Purchase: {format_date(stats.last_purchase_date)}")
            if context.purchases.recent:
                lines += ["", "Recent Products:"]
                for purchase in context.purchases.recent[:3]:
                    lines.append(
                        f"- {purchase.product_name} (${purchase.total:.2f}) - "
                        f"{format_date(purchase.purchase_date)}"
                    )

        if context.work_orders and context.work_orders.open:
            lines += ["", f"### Open Work Orders ({len(context.work_orders.open)})"]
            for order in context.work_orders.open:
                lines.append(
                    f"- [{order.priority.upper()}] {order.order_type}: "
                    f"{order.issue_description or 'No description'}"
                )
                lines.append(
                    f"  Status: {order.status}, Created: {format_date(order.created_date)}"
                )

        if context.knowledge:
            notes = context.knowledge.critical or context.knowledge.all[:3]
            if notes:
                lines += ["", "### Important Notes"]
                for note in notes:
                    lines.append(
                        f"- [{note.importance.upper()}] "
                        f"{note.category or 'General'}: {note.content}"
                    )

        return "\n".join(lines)
