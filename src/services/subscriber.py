"""
NATS subscriber for customer events.

Every instance subscribes under the same queue group, so the broker hands
each message to exactly one member; scaling out means starting more
processes. Within an instance messages are processed one at a time: decode,
process, commit, then the next message.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from nats.aio.client import Client as NATS
from nats.aio.msg import Msg
from nats.errors import BadSubjectError
from nats.errors import Error as NatsError
from pydantic import ValidationError as PydanticValidationError

from config.settings import Settings
from models.envelope import EventEnvelope
from models.outcome import OutcomeStatus, ProcessOutcome
from services.event_processor import EventProcessor
from utils.error_handling import ConfigurationError, DecodeError
from utils.logging_config import get_logger

logger = get_logger(__name__)


def decode_envelope(payload: bytes) -> EventEnvelope:
    """Decode a message body into an envelope or raise DecodeError."""
    try:
        raw = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"Payload is not UTF-8 JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise DecodeError("Payload must be a JSON object")
    try:
        return EventEnvelope.model_validate(raw)
    except PydanticValidationError as exc:
        raise DecodeError(f"Envelope failed validation: {exc.error_count()} errors") from exc


class EventSubscriber:
    """Owns one broker connection and feeds one EventProcessor."""

    def __init__(
        self, processor: EventProcessor, settings: Settings, client: Optional[NATS] = None
    ):
        self.processor = processor
        self.settings = settings
        self.nc: NATS = client or NATS()
        self.subscriptions: List[Any] = []
        self.is_connected = False
        self._lock = asyncio.Lock()
        self.stats: Dict[str, Any] = {
            "received": 0,
            "processed": 0,
            "rejected": 0,
            "failed": 0,
            "decode_errors": 0,
            "errors": 0,
            "reconnects": 0,
            "last_event": None,
        }

    async def start(self) -> None:
        """Connect, retrying transient failures, then subscribe."""
        self.settings.validate()
        await self._connect_with_backoff()
        await self.subscribe()

    async def _connect_with_backoff(self) -> None:
        delay = self.settings.nats_reconnect_wait_seconds
        attempt = 0
        while True:
            attempt += 1
            try:
                logger.info(
                    "Connecting to NATS",
                    extra={"servers": self.settings.nats_servers, "attempt": attempt},
                )
                await self.nc.connect(
                    servers=self.settings.nats_servers,
                    name=self.settings.nats_client_name,
                    allow_reconnect=True,
                    dont_randomize=True,
                    max_reconnect_attempts=self.settings.nats_max_reconnect_attempts,
                    reconnect_time_wait=self.settings.nats_reconnect_wait_seconds,
                    ping_interval=60,
                    max_outstanding_pings=3,
                    error_cb=self._on_error,
                    disconnected_cb=self._on_disconnected,
                    reconnected_cb=self._on_reconnected,
                    closed_cb=self._on_closed,
                )
                self.is_connected = True
                logger.info("Connected to NATS", extra={"server": str(self.nc.connected_url)})
                return
            except (NatsError, OSError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "NATS connection failed, retrying",
                    extra={"error": str(exc), "retry_in_seconds": delay},
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.settings.nats_max_backoff_seconds)

    async def subscribe(self) -> None:
        """Subscribe every configured subject under the shared queue group."""
        group = self.settings.nats_queue_group
        js = self.nc.jetstream() if self.settings.nats_jetstream else None
        for subject in self.settings.nats_subjects:
            try:
                if js is not None:
                    subscription = await js.subscribe(
                        subject,
                        queue=group,
                        durable=group,
                        stream=self.settings.nats_stream,
                        cb=self.handle_message,
                        manual_ack=True,
                    )
                else:
                    subscription = await self.nc.subscribe(
                        subject, queue=group, cb=self.handle_message
                    )
            except BadSubjectError as exc:
                raise ConfigurationError(f"Invalid subject pattern {subject!r}: {exc}") from exc
            self.subscriptions.append(subscription)
            logger.info("Subscribed", extra={"subject": subject, "queue_group": group})

    async def handle_message(self, msg: Msg) -> None:
        """Decode and process one message. Never raises into the client loop."""
        self.stats["received"] += 1

        try:
            envelope = decode_envelope(msg.data)
        except DecodeError as exc:
            self.stats["decode_errors"] += 1
            self.stats["errors"] += 1
            logger.warning(
                "Dropping undecodable message",
                extra={"subject": msg.subject, "error": str(exc), "size": len(msg.data or b"")},
            )
            await self._settle(msg, None)
            return

        async with self._lock:
            try:
                outcome = await asyncio.to_thread(
                    self.processor.process_event, envelope, msg.subject
                )
            except Exception:
                self.stats["errors"] += 1
                self.stats["failed"] += 1
                logger.exception(
                    "Unexpected error while processing event",
                    extra={"subject": msg.subject, "event_type": envelope.event_type},
                )
                outcome = ProcessOutcome(
                    status=OutcomeStatus.FAILED,
                    event_type=envelope.event_type,
                    reason="unexpected processing error",
                )
            else:
                self._count(outcome)
            await self._settle(msg, outcome)

        self.stats["last_event"] = datetime.now(timezone.utc).isoformat()
        await self._reply(msg, outcome)

    def _count(self, outcome: ProcessOutcome) -> None:
        if outcome.status == OutcomeStatus.SUCCESS:
            self.stats["processed"] += 1
        elif outcome.status == OutcomeStatus.REJECTED:
            self.stats["rejected"] += 1
        else:
            self.stats["failed"] += 1
            self.stats["errors"] += 1

    async def _settle(self, msg: Msg, outcome: Optional[ProcessOutcome]) -> None:
        """JetStream only: ack success, terminate terminal errors, nak transient ones."""
        if not self.settings.nats_jetstream:
            return
        try:
            if outcome is None or outcome.status == OutcomeStatus.REJECTED:
                await msg.term()
            elif outcome.retryable:
                await msg.nak()
            else:
                await msg.ack()
        except Exception as exc:
            # The broker redelivers unacknowledged messages after its ack wait.
            logger.warning(
                "Failed to settle message", extra={"subject": msg.subject, "error": str(exc)}
            )

    async def _reply(self, msg: Msg, outcome: ProcessOutcome) -> None:
        if not msg.reply or self.settings.nats_jetstream:
            return
        body = {
            "success": outcome.ok,
            "result": outcome.model_dump(mode="json", exclude_none=True),
        }
        try:
            await self.nc.publish(msg.reply, json.dumps(body).encode("utf-8"))
        except Exception as exc:
            logger.warning("Failed to send reply", extra={"reply": msg.reply, "error": str(exc)})

    async def publish_event(self, envelope: EventEnvelope) -> str:
        """Publish an event using the customer.events.{id}.{type} convention."""
        if not self.is_connected:
            raise ConnectionError("Not connected to NATS")
        subject = envelope.subject()
        await self.nc.publish(subject, envelope.model_dump_json().encode("utf-8"))
        logger.info("Published event", extra={"subject": subject})
        return subject

    async def stop(self) -> None:
        """Drain subscriptions and close the connection."""
        logger.info("Stopping subscriber", extra={"subscriptions": len(self.subscriptions)})
        if self.nc.is_connected:
            try:
                await self.nc.drain()
            except Exception as exc:
                logger.warning("Drain failed, closing", extra={"error": str(exc)})
                await self.nc.close()
        self.subscriptions = []
        self.is_connected = False

    def get_stats(self) -> Dict[str, Any]:
        return {
            "connected": self.is_connected,
            "subjects": list(self.settings.nats_subjects),
            "queue_group": self.settings.nats_queue_group,
            "subscriptions": len(self.subscriptions),
            "stats": dict(self.stats),
        }

    def is_healthy(self) -> bool:
        return self.is_connected and bool(self.subscriptions)

    # Connection callbacks

    async def _on_error(self, exc: Exception) -> None:
        logger.error("NATS connection error", extra={"error": str(exc)})

    async def _on_disconnected(self) -> None:
        self.is_connected = False
        logger.warning("Disconnected from NATS")

    async def _on_reconnected(self) -> None:
        # The client replays our SUB commands, same queue group included.
        self.is_connected = True
        self.stats["reconnects"] += 1
        logger.info("Reconnected to NATS", extra={"server": str(self.nc.connected_url)})

    async def _on_closed(self) -> None:
        self.is_connected = False
        logger.info("NATS connection closed")
