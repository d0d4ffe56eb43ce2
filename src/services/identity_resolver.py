"""
Identity resolution.

Maps an event to an existing or newly created customer row. customer_id is
authoritative; email is only a fallback lookup key and two records are never
merged automatically.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import func, insert, select
from sqlalchemy.engine import Connection

from models.customer import CustomerRecord, CustomerStatus
from repositories.schema import customers
from utils.logging_config import get_logger
from utils.validators import normalize_email, optional_text

logger = get_logger(__name__)


def customer_from_row(row: Mapping[str, Any]) -> CustomerRecord:
    data = dict(row)
    data["tags"] = data.get("tags") or []
    data["custom_fields"] = data.get("custom_fields") or {}
    data["lifetime_value"] = float(data.get("lifetime_value") or 0)
    return CustomerRecord(**data)


def generate_customer_id() -> str:
    return f"cust_{uuid.uuid4().hex[:16]}"


class IdentityResolver:
    """Resolve (customer_id, email) to a customer inside the caller's transaction."""

    def __init__(self, auto_create: bool = True):
        self.auto_create = auto_create

    def find_by_id(self, conn: Connection, customer_id: str) -> Optional[CustomerRecord]:
        row = conn.execute(select(customers).where(customers.c.id == customer_id)).fetchone()
        return customer_from_row(row._mapping) if row else None

    def find_by_email(self, conn: Connection, email: str) -> Optional[CustomerRecord]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        # Email is only best-effort unique; the oldest record wins.
        stmt = (
            select(customers)
            .where(func.lower(customers.c.email) == normalized)
            .order_by(customers.c.created_at, customers.c.id)
            .limit(1)
        )
        row = conn.execute(stmt).fetchone()
        return customer_from_row(row._mapping) if row else None

    def resolve(
        self,
        conn: Connection,
        customer_id: Optional[str] = None,
        email: Optional[str] = None,
        profile: Optional[Dict[str, Any]] = None,
    ) -> Optional[CustomerRecord]:
        """Return the matching customer, a newly created one, or None."""
        if customer_id:
            customer = self.find_by_id(conn, customer_id)
            if customer:
                return customer

        if email:
            customer = self.find_by_email(conn, email)
            if customer:
                if customer_id:
                    logger.info(
                        "Customer id not found, matched by email",
                        extra={"customer_id": customer_id, "matched_id": customer.id},
                    )
                return customer

        if not self.auto_create or not (customer_id or email):
            return None

        return self._create(conn, customer_id, email, profile or {})

    def _create(
        self,
        conn: Connection,
        customer_id: Optional[str],
        email: Optional[str],
        profile: Dict[str, Any],
    ) -> CustomerRecord:
        now = time.time()
        new_id = customer_id or generate_customer_id()
        values = {
            "id": new_id,
            "name": optional_text(profile.get("customer_name") or profile.get("name")) or "Unknown",
            "email": normalize_email(email),
            "phone": optional_text(profile.get("phone")),
            "company": optional_text(profile.get("company")),
            "status": CustomerStatus.ACTIVE.value,
            "customer_since": now,
            "lifetime_value": 0.0,
            "tags": [],
            "custom_fields": {},
            "created_at": now,
            "updated_at": now,
        }
        conn.execute(insert(customers).values(**values))
        logger.info("Auto-created customer", extra={"customer_id": new_id})
        return CustomerRecord(**values)
