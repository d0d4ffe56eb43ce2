"""Inbound event envelope and the closed set of event types."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.validators import normalize_email

SUBJECT_PREFIX = "customer.events"

# 9999-12-31T23:59:59Z; millisecond timestamps land above this.
MAX_TIMESTAMP = 253402300799.0


class EventType(str, Enum):
    """Event types with a dedicated handler; anything else takes the fallback."""

    PURCHASE = "purchase"
    SUPPORT_TICKET = "support_ticket"
    REPAIR = "repair"
    WORK_ORDER = "work_order"
    CONTACT = "contact"
    PROFILE_UPDATE = "profile_update"
    NOTE = "note"
    OBSERVATION = "observation"

    @classmethod
    def parse(cls, value: str) -> Optional["EventType"]:
        """Return the matching member, or None for unknown types."""
        try:
            return cls(value)
        except ValueError:
            return None


class EventEnvelope(BaseModel):
    """One message as published by a producer."""

    model_config = ConfigDict(extra="allow")

    event_type: str
    timestamp: float
    source_service: str
    customer_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("event_type", "source_service")
    @classmethod
    def validate_required(cls, value: str) -> str:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValueError("event_type and source_service must be provided")
        return cleaned

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp(cls, value: float) -> float:
        if not math.isfinite(value) or not 0 <= value <= MAX_TIMESTAMP:
            raise ValueError("timestamp must be epoch seconds between 1970 and 9999")
        return value

    @field_validator("customer_id", mode="before")
    @classmethod
    def coerce_customer_id(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("data", "metadata", mode="before")
    @classmethod
    def default_maps(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def kind(self) -> Optional[EventType]:
        return EventType.parse(self.event_type)

    def identity_customer_id(self) -> Optional[str]:
        """customer_id from the envelope, falling back to data.customer_id."""
        if self.customer_id:
            return self.customer_id
        fallback = self.data.get("customer_id")
        if fallback is None:
            return None
        return str(fallback).strip() or None

    def identity_email(self) -> Optional[str]:
        """Normalized email hint, or None when no email-like value is present."""
        return normalize_email(self.data.get("email")) or normalize_email(
            self.data.get("customer_email")
        )

    def has_identity(self) -> bool:
        return bool(self.identity_customer_id() or self.identity_email())

    def subject(self) -> str:
        """Addressing convention: customer.events.{customer_id}.{event_type}."""
        customer = self.identity_customer_id() or "unknown"
        return f"{SUBJECT_PREFIX}.{customer}.{self.event_type}"
