"""Invocation entry point for the RDS reconciliation engine.

STATELESS INVOCATIONS:
Each call to handle_event() is one bounded invocation. Nothing survives in
process memory between invocations:
- Resume state travels in the callback context returned to the caller
- The caller (a scheduler, a queue consumer, or `rdsr run`) waits the
  returned delay and invokes again with that context
- A terminal result (SUCCESS / FAILED) ends the logical operation
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from .client import ServiceClient, create_rds_client
from .config import Config, ConfigurationError
from .db_cluster import DBClusterHandler
from .engine_version import CustomEngineVersionHandler
from .handler import Action, BaseHandler, ResourceHandlerRequest
from .parameter_group import ClusterParameterGroupHandler

logger = logging.getLogger(__name__)

RESOURCE_TYPES: dict[str, type[BaseHandler[Any]]] = {
    ClusterParameterGroupHandler.resource_type: ClusterParameterGroupHandler,
    CustomEngineVersionHandler.resource_type: CustomEngineVersionHandler,
    DBClusterHandler.resource_type: DBClusterHandler,
}

# LogRecord attributes that are not structured "extra" fields
_RESERVED_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stderr.

    stdout is reserved for invocation results.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if isinstance(existing.formatter, JsonFormatter):
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from the AWS SDK
    for name in ("botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def create_handler(
    resource_type: str,
    client: ServiceClient,
    config: Config | None = None,
) -> BaseHandler[Any]:
    """Instantiate the handler registered for a resource type.

    Raises:
        ValueError: If the resource type is not supported.
        ConfigurationError: If the configured overrides do not fit the type.
    """
    handler_class = RESOURCE_TYPES.get(resource_type)
    if handler_class is None:
        raise ValueError(
            f"Unknown resource type '{resource_type}'. Valid types: {sorted(RESOURCE_TYPES)}"
        )
    if config is None:
        return handler_class(client)
    return handler_class(client, config.handler_config(handler_class.default_config))


def handle_event(
    event: dict[str, Any],
    client: ServiceClient | None = None,
    config: Config | None = None,
) -> dict[str, Any]:
    """Run one invocation described by a caller event.

    Args:
        event: {"resourceType", "action", "request", "callbackContext"}.
        client: Service client; built from config when omitted.
        config: Process configuration; loaded from the environment when omitted.

    Returns:
        The invocation result as a JSON-compatible dict. Malformed events are
        reported as FAILED with InvalidRequest rather than raised.
    """
    config = config or Config.from_env()

    resource_type = event.get("resourceType", "")
    try:
        action = Action(event.get("action"))
        request = ResourceHandlerRequest.model_validate(event.get("request") or {})
    except (ValueError, ValidationError) as e:
        logger.error("Malformed event", extra={"resource_type": resource_type, "error": str(e)})
        return {"status": "FAILED", "errorCode": "InvalidRequest", "message": str(e)}

    try:
        handler = create_handler(
            resource_type, client or create_rds_client(config.region), config
        )
    except (ValueError, ConfigurationError) as e:
        logger.error(
            "Cannot create handler", extra={"resource_type": resource_type, "error": str(e)}
        )
        return {"status": "FAILED", "errorCode": "InvalidRequest", "message": str(e)}

    result = handler.handle(action, request, event.get("callbackContext"))
    return result.to_dict()
