"""
Event Processor.

Turns one inbound event into derived-store rows: identity resolution,
the type-specific row (purchase, work order, knowledge note, profile
change), the timeline entry and aggregate updates all commit in a single
transaction. Delivery is at-least-once, so every handler tolerates
redelivery of the same event.
"""

from __future__ import annotations

import hashlib
import json
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from config.settings import Settings
from models.customer import CustomerRecord, CustomerStatus, Importance, WorkOrderStatus
from models.envelope import EventEnvelope, EventType
from models.outcome import OutcomeStatus, ProcessOutcome
from repositories.schema import (
    customer_events,
    customer_knowledge,
    customers,
    purchases,
    work_orders,
)
from repositories.store import DerivedStore
from services.identity_resolver import IdentityResolver
from utils.error_handling import TransientStoreError, UnresolvedIdentityError
from utils.logging_config import get_logger
from utils.validators import as_float, is_truthy, normalize_email, optional_text

logger = get_logger(__name__)

Handler = Callable[[Connection, CustomerRecord, EventEnvelope, Optional[str]], ProcessOutcome]

PROFILE_TEXT_FIELDS = ("name", "phone", "company")


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class EventProcessor:
    """Validate, dispatch by event type and persist one event at a time."""

    def __init__(
        self,
        store: DerivedStore,
        settings: Optional[Settings] = None,
        resolver: Optional[IdentityResolver] = None,
    ):
        self.store = store
        self.settings = settings or Settings()
        self.resolver = resolver or IdentityResolver(
            auto_create=self.settings.auto_create_customer
        )
        self._handlers: Dict[EventType, Handler] = {
            EventType.PURCHASE: self._process_purchase,
            EventType.SUPPORT_TICKET: self._process_support_ticket,
            EventType.REPAIR: self._process_work_order,
            EventType.WORK_ORDER: self._process_work_order,
            EventType.CONTACT: self._process_generic,
            EventType.PROFILE_UPDATE: self._process_profile_update,
            EventType.NOTE: self._process_note,
            EventType.OBSERVATION: self._process_note,
        }
        missing = set(EventType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler registered for: {sorted(m.value for m in missing)}")

    def process_event(
        self,
        envelope: Union[EventEnvelope, Dict[str, Any]],
        subject: Optional[str] = None,
    ) -> ProcessOutcome:
        """Process one event and report success, rejection or transient failure."""
        try:
            event = (
                envelope
                if isinstance(envelope, EventEnvelope)
                else EventEnvelope.model_validate(envelope)
            )
        except PydanticValidationError as exc:
            return self._rejected(None, f"Invalid envelope: {exc.error_count()} validation errors")

        if not event.has_identity():
            return self._rejected(event, str(UnresolvedIdentityError()))

        handler = self._handlers.get(event.kind, self._process_generic)
        try:
            with self.store.begin() as conn:
                customer = self.resolver.resolve(
                    conn,
                    customer_id=event.identity_customer_id(),
                    email=event.identity_email(),
                    profile=event.data,
                )
                if customer is None:
                    raise UnresolvedIdentityError(
                        "Customer not found and auto-create disabled: "
                        f"{event.identity_customer_id() or event.identity_email()}"
                    )
                outcome = handler(conn, customer, event, subject)
        except UnresolvedIdentityError as exc:
            return self._rejected(event, str(exc))
        except SQLAlchemyError as exc:
            error = TransientStoreError(f"Store error while processing {event.event_type}: {exc}")
            logger.error(
                "Event processing failed",
                extra={
                    "event_type": event.event_type,
                    "customer_id": event.identity_customer_id(),
                    "source_service": event.source_service,
                    "error": str(exc),
                },
            )
            return ProcessOutcome(
                status=OutcomeStatus.FAILED,
                event_type=event.event_type,
                customer_id=event.identity_customer_id(),
                reason=str(error),
            )

        logger.info(
            "Event processed",
            extra={
                "event_type": event.event_type,
                "customer_id": outcome.customer_id,
                "event_id": outcome.event_id,
                "duplicate": outcome.duplicate,
                "source_service": event.source_service,
            },
        )
        return outcome

    def _rejected(self, event: Optional[EventEnvelope], reason: str) -> ProcessOutcome:
        logger.warning(
            "Event rejected",
            extra={
                "event_type": event.event_type if event else None,
                "source_service": event.source_service if event else None,
                "reason": reason,
            },
        )
        return ProcessOutcome(
            status=OutcomeStatus.REJECTED,
            event_type=event.event_type if event else None,
            customer_id=event.identity_customer_id() if event else None,
            reason=reason,
        )

    # Handlers

    def _process_purchase(
        self,
        conn: Connection,
        customer: CustomerRecord,
        event: EventEnvelope,
        subject: Optional[str],
    ) -> ProcessOutcome:
        data = event.data
        purchase_id = optional_text(data.get("purchase_id")) or self._purchase_key(customer, event)

        existing = conn.execute(
            select(purchases.c.id, purchases.c.customer_id).where(purchases.c.id == purchase_id)
        ).fetchone()
        if existing:
            reason = None
            if existing.customer_id != customer.id:
                reason = f"purchase id already recorded for customer {existing.customer_id}"
                logger.warning(
                    "Purchase id already recorded for another customer",
                    extra={
                        "purchase_id": purchase_id,
                        "customer_id": customer.id,
                        "owner_customer_id": existing.customer_id,
                    },
                )
            logger.info(
                "Duplicate purchase ignored",
                extra={"purchase_id": purchase_id, "customer_id": customer.id},
            )
            return ProcessOutcome(
                status=OutcomeStatus.SUCCESS,
                event_type=event.event_type,
                customer_id=customer.id,
                purchase_id=purchase_id,
                duplicate=True,
                reason=reason,
            )

        now = time.time()
        product_name = (
            optional_text(data.get("product_name") or data.get("product")) or "Unknown Product"
        )
        quantity = int(as_float(data.get("quantity"), 1) or 1)
        price = as_float(data.get("price"), as_float(data.get("unit_price"), 0.0))
        total = as_float(data.get("total"), as_float(data.get("amount")))
        if total is None:
            total = price * quantity

        conn.execute(
            insert(purchases).values(
                id=purchase_id,
                customer_id=customer.id,
                product_name=product_name,
                product_sku=optional_text(data.get("product_sku") or data.get("sku")),
                quantity=quantity,
                price=price,
                total=total,
                purchase_date=event.timestamp,
                warranty_expires=as_float(data.get("warranty_expires")),
                metadata=data,
                created_at=now,
            )
        )

        event_id = self._append_event(
            conn,
            customer,
            event,
            subject,
            title=optional_text(data.get("title")) or f"Purchase: {product_name}",
            description=self._timeline_description(event),
            amount=total,
            status=optional_text(data.get("status")) or "completed",
        )

        if total < 0:
            logger.warning(
                "Negative purchase total not applied to lifetime value",
                extra={"purchase_id": purchase_id, "total": total},
            )
        else:
            # Commutative increment so concurrent or reordered purchases never overwrite.
            conn.execute(
                update(customers)
                .where(customers.c.id == customer.id)
                .values(lifetime_value=customers.c.lifetime_value + total, updated_at=now)
            )

        return ProcessOutcome(
            status=OutcomeStatus.SUCCESS,
            event_type=event.event_type,
            customer_id=customer.id,
            event_id=event_id,
            purchase_id=purchase_id,
        )

    def _process_support_ticket(
        self,
        conn: Connection,
        customer: CustomerRecord,
        event: EventEnvelope,
        subject: Optional[str],
    ) -> ProcessOutcome:
        data = event.data
        title = (
            optional_text(data.get("title") or data.get("subject")) or "Support Ticket"
        )
        full_text = self._format_description(event)
        description = self._timeline_description(event)

        event_id = self._append_event(
            conn,
            customer,
            event,
            subject,
            title=title,
            description=description,
            status=optional_text(data.get("status")) or "open",
            agent_notes=optional_text(data.get("agent_notes")),
        )

        knowledge_id = None
        flagged = self._is_flagged(event)
        if flagged or len(full_text) > self.settings.summarize_threshold:
            knowledge_id = self._create_knowledge(
                conn,
                customer,
                event,
                content=self._summarize(full_text) or title,
                related_event_id=event_id,
                flagged=flagged,
            )

        return ProcessOutcome(
            status=OutcomeStatus.SUCCESS,
            event_type=event.event_type,
            customer_id=customer.id,
            event_id=event_id,
            knowledge_id=knowledge_id,
        )

    def _process_note(
        self,
        conn: Connection,
        customer: CustomerRecord,
        event: EventEnvelope,
        subject: Optional[str],
    ) -> ProcessOutcome:
        data = event.data
        content = (
            optional_text(data.get("content") or data.get("note") or data.get("message"))
            or self._format_description(event)
        )

        event_id = self._append_event(
            conn,
            customer,
            event,
            subject,
            title=optional_text(data.get("title")) or event.event_type.capitalize(),
            description=(
                self._summarize(content) if self._should_summarize(event, content) else content
            ),
            status="completed",
        )
        knowledge_id = self._create_knowledge(
            conn,
            customer,
            event,
            content=content,
            related_event_id=event_id,
            flagged=self._is_flagged(event),
        )

        return ProcessOutcome(
            status=OutcomeStatus.SUCCESS,
            event_type=event.event_type,
            customer_id=customer.id,
            event_id=event_id,
            knowledge_id=knowledge_id,
        )

    def _process_work_order(
        self,
        conn: Connection,
        customer: CustomerRecord,
        event: EventEnvelope,
        subject: Optional[str],
    ) -> ProcessOutcome:
        data = event.data
        now = time.time()
        work_order_id = (
            optional_text(data.get("work_order_id") or data.get("ticket_id")) or _new_id("wo")
        )
        status = self._work_order_status(data.get("status"))
        completed_date = as_float(data.get("completed_date"))
        if status == WorkOrderStatus.COMPLETED.value and completed_date is None:
            completed_date = event.timestamp

        existing = conn.execute(
            select(work_orders).where(work_orders.c.id == work_order_id).with_for_update()
        ).fetchone()

        if existing is None:
            order_type = (
                "repair"
                if event.kind == EventType.REPAIR
                else optional_text(data.get("order_type")) or "service"
            )
            conn.execute(
                insert(work_orders).values(
                    id=work_order_id,
                    customer_id=customer.id,
                    order_type=order_type,
                    product_id=optional_text(data.get("product_id")),
                    issue_description=optional_text(
                        data.get("issue_description") or data.get("description")
                    ),
                    resolution=optional_text(data.get("resolution")),
                    status=status or WorkOrderStatus.OPEN.value,
                    priority=optional_text(data.get("priority")) or "medium",
                    assigned_to=optional_text(data.get("assigned_to")),
                    cost=as_float(data.get("cost")),
                    created_date=event.timestamp,
                    completed_date=completed_date,
                    last_event_date=event.timestamp,
                    metadata=data,
                    updated_at=now,
                )
            )
            current_status = status or WorkOrderStatus.OPEN.value
        elif event.timestamp >= existing.last_event_date:
            values: Dict[str, Any] = {
                "last_event_date": event.timestamp,
                "metadata": data,
                "updated_at": now,
            }
            if status:
                values["status"] = status
            for field in ("resolution", "assigned_to", "priority"):
                text = optional_text(data.get(field))
                if text:
                    values[field] = text
            cost = as_float(data.get("cost"))
            if cost is not None:
                values["cost"] = cost
            if completed_date is not None and existing.completed_date is None:
                values["completed_date"] = completed_date
            conn.execute(
                update(work_orders).where(work_orders.c.id == work_order_id).values(**values)
            )
            current_status = values.get("status", existing.status)
        else:
            # Older than the last applied update: keep it on the timeline only.
            logger.info(
                "Stale work order update not applied",
                extra={"work_order_id": work_order_id, "event_date": event.timestamp},
            )
            current_status = existing.status

        event_id = self._append_event(
            conn,
            customer,
            event,
            subject,
            title=optional_text(data.get("title")) or f"Work Order: {work_order_id}",
            description=self._timeline_description(event),
            amount=as_float(data.get("cost")),
            status=status or current_status,
            agent_notes=optional_text(data.get("agent_notes")),
        )

        return ProcessOutcome(
            status=OutcomeStatus.SUCCESS,
            event_type=event.event_type,
            customer_id=customer.id,
            event_id=event_id,
            work_order_id=work_order_id,
        )

    def _process_profile_update(
        self,
        conn: Connection,
        customer: CustomerRecord,
        event: EventEnvelope,
        subject: Optional[str],
    ) -> ProcessOutcome:
        data = event.data
        updates = data.get("updates") if isinstance(data.get("updates"), dict) else data
        values = self._profile_changes(conn, customer, updates)
        changed = sorted(values)

        if values:
            values["updated_at"] = time.time()
            conn.execute(update(customers).where(customers.c.id == customer.id).values(**values))

        description = (
            f"Customer profile updated: {', '.join(changed)}"
            if changed
            else "Customer profile update contained no applicable changes"
        )
        event_id = self._append_event(
            conn,
            customer,
            event,
            subject,
            title="Profile Updated",
            description=description,
            status="completed",
            agent_notes=optional_text(data.get("notes")),
        )

        return ProcessOutcome(
            status=OutcomeStatus.SUCCESS,
            event_type=event.event_type,
            customer_id=customer.id,
            event_id=event_id,
        )

    def _process_generic(
        self,
        conn: Connection,
        customer: CustomerRecord,
        event: EventEnvelope,
        subject: Optional[str],
    ) -> ProcessOutcome:
        """Contact events and any unknown type: timeline entry only."""
        data = event.data
        if event.kind == EventType.CONTACT:
            default_title = "Customer Contact"
        else:
            default_title = f"Event: {event.event_type}"
            logger.info(
                "Unknown event type stored as generic event",
                extra={"event_type": event.event_type},
            )

        event_id = self._append_event(
            conn,
            customer,
            event,
            subject,
            title=optional_text(data.get("title") or data.get("subject")) or default_title,
            description=self._timeline_description(event),
            amount=as_float(data.get("amount")),
            status=optional_text(data.get("status")) or "completed",
            agent_notes=optional_text(data.get("agent_notes")),
        )

        return ProcessOutcome(
            status=OutcomeStatus.SUCCESS,
            event_type=event.event_type,
            customer_id=customer.id,
            event_id=event_id,
        )

    # Writes shared by handlers

    def _append_event(
        self,
        conn: Connection,
        customer: CustomerRecord,
        event: EventEnvelope,
        subject: Optional[str],
        *,
        title: str,
        description: str,
        status: str,
        amount: Optional[float] = None,
        agent_notes: Optional[str] = None,
    ) -> str:
        event_id = _new_id("evt")
        conn.execute(
            insert(customer_events).values(
                id=event_id,
                customer_id=customer.id,
                event_type=event.event_type,
                event_date=event.timestamp,
                title=title,
                description=description,
                amount=amount,
                status=status,
                metadata=event.metadata,
                agent_notes=agent_notes,
                source_service=event.source_service,
                subject=subject,
                raw_payload=event.model_dump(mode="json"),
                created_at=time.time(),
            )
        )
        return event_id

    def _create_knowledge(
        self,
        conn: Connection,
        customer: CustomerRecord,
        event: EventEnvelope,
        *,
        content: str,
        related_event_id: str,
        flagged: bool,
    ) -> str:
        data = event.data
        now = time.time()
        knowledge_id = _new_id("kn")
        tags = data.get("tags") if isinstance(data.get("tags"), list) else []
        conn.execute(
            insert(customer_knowledge).values(
                id=knowledge_id,
                customer_id=customer.id,
                content=content,
                category=optional_text(data.get("category")) or self._infer_category(event),
                importance=self._importance(data.get("importance"), flagged),
                tags=[str(tag) for tag in tags],
                source=event.source_service,
                related_event_id=related_event_id,
                created_at=now,
                updated_at=now,
            )
        )
        return knowledge_id

    def _profile_changes(
        self, conn: Connection, customer: CustomerRecord, updates: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Collect only the mutable fields present in the update."""
        values: Dict[str, Any] = {}
        for field in PROFILE_TEXT_FIELDS:
            if field in updates:
                text = optional_text(updates.get(field))
                if text is not None or field != "name":
                    values[field] = text

        if "email" in updates:
            email = normalize_email(updates.get("email"))
            if email:
                values["email"] = email
            else:
                logger.warning(
                    "Ignoring invalid email in profile update",
                    extra={"customer_id": customer.id},
                )

        if "status" in updates:
            status = optional_text(updates.get("status"))
            if status in {member.value for member in CustomerStatus}:
                values["status"] = status
            else:
                logger.warning(
                    "Ignoring invalid status in profile update",
                    extra={"customer_id": customer.id, "status": status},
                )

        if isinstance(updates.get("tags"), (list, tuple, set)):
            values["tags"] = sorted({str(tag) for tag in updates["tags"]})

        if isinstance(updates.get("custom_fields"), dict):
            # Merge per key against the row as it is now, not as it was resolved.
            row = conn.execute(
                select(customers.c.custom_fields)
                .where(customers.c.id == customer.id)
                .with_for_update()
            ).fetchone()
            merged = dict((row.custom_fields if row else None) or {})
            merged.update(updates["custom_fields"])
            values["custom_fields"] = merged

        if "lifetime_value" in updates:
            logger.warning(
                "lifetime_value is only changed by purchases; ignoring profile update field",
                extra={"customer_id": customer.id},
            )
        return values

    # Description and summarization

    def _format_description(self, event: EventEnvelope) -> str:
        data = event.data
        for key in ("description", "message", "content"):
            text = optional_text(data.get(key))
            if text:
                return text

        parts: List[str] = []
        if data.get("product_name"):
            parts.append(f"Product: {data['product_name']}")
        if data.get("issue_description"):
            parts.append(f"Issue: {data['issue_description']}")
        if data.get("resolution"):
            parts.append(f"Resolution: {data['resolution']}")
        if data.get("amount"):
            parts.append(f"Amount: ${data['amount']}")
        if parts:
            return "\n".join(parts)
        return json.dumps(data, indent=2, sort_keys=True, default=str)

    def _should_summarize(self, event: EventEnvelope, text: str) -> bool:
        flag = event.data.get("summarize")
        if flag is True:
            return True
        if flag is False:
            return False
        return len(text) > self.settings.summarize_threshold

    def _summarize(self, text: str) -> str:
        """Template truncation; the full text stays in raw_payload."""
        limit = self.settings.summary_max_chars
        if len(text) <= limit:
            return text
        return text[: limit - 3].rstrip() + "..."

    def _timeline_description(self, event: EventEnvelope) -> str:
        text = self._format_description(event)
        return self._summarize(text) if self._should_summarize(event, text) else text

    # Small derivations

    def _purchase_key(self, customer: CustomerRecord, event: EventEnvelope) -> str:
        """Deterministic key so a redelivered purchase without an id is still deduplicated."""
        if not self.settings.derive_purchase_keys:
            return _new_id("pur")
        fingerprint = json.dumps(
            {
                "customer_id": customer.id,
                "source_service": event.source_service,
                "timestamp": event.timestamp,
                "data": event.data,
            },
            sort_keys=True,
            default=str,
        )
        return "pur_" + hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:32]

    @staticmethod
    def _is_flagged(event: EventEnvelope) -> bool:
        return is_truthy(event.data.get("important")) or is_truthy(event.data.get("save_as_memory"))

    @staticmethod
    def _importance(value: Any, flagged: bool) -> str:
        text = (optional_text(value) or "").lower()
        if text in {member.value for member in Importance}:
            return text
        return Importance.HIGH.value if flagged else Importance.MEDIUM.value

    @staticmethod
    def _work_order_status(value: Any) -> Optional[str]:
        text = (optional_text(value) or "").lower().replace("_", "-").replace(" ", "-")
        if not text:
            return None
        if text in {member.value for member in WorkOrderStatus}:
            return text
        logger.warning("Ignoring unknown work order status", extra={"status": value})
        return None

    @staticmethod
    def _infer_category(event: EventEnvelope) -> str:
        event_type = event.event_type
        if "purchase" in event_type:
            return "purchase_history"
        if "support" in event_type or "ticket" in event_type:
            return "support"
        if "repair" in event_type or "work_order" in event_type:
            return "technical"
        if "contact" in event_type:
            return "communication"
        if "note" in event_type or "observation" in event_type:
            return "observation"
        return "general"
