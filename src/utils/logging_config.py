"""Structured logger setup shared by the subscriber and the adapters."""

import logging
import os
import socket

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "customer-events"


class EventLogFormatter(jsonlogger.JsonFormatter):
    """JSON lines tagged with the service, environment and host instance."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record.setdefault("service", SERVICE_NAME)
        log_record.setdefault("environment", os.environ.get("ENVIRONMENT", "dev"))
        # Several subscriber instances share a queue group; tell them apart.
        log_record.setdefault("instance", socket.gethostname())


def get_logger(name: str) -> logging.Logger:
    """
    Configure a JSON logger once and reuse it.

    Every record is one JSON line so rejected and failed events can be
    counted without parsing free text.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(EventLogFormatter("%(message)s %(asctime)s"))
    logger.addHandler(handler)
    logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
    logger.propagate = False
    return logger
