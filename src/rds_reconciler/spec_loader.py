"""Handler request and callback context loading with validation.

SECURITY: All file operations enforce size limits so a runaway or hostile
file cannot exhaust memory. Input validation is performed at the boundary.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_CONTEXT_FILE_SIZE_BYTES, MAX_REQUEST_FILE_SIZE_BYTES
from .handler import ResourceHandlerRequest
from .progress import CallbackContext

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when a request or context file cannot be loaded or validated."""

    pass


def _read_limited(path: Path, max_size: int, kind: str) -> str:
    if not path.exists():
        raise SpecLoadError(f"{kind} file not found: {path}")

    # SECURITY: Check file size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat {kind.lower()} file {path}: {e}") from e

    if file_size > max_size:
        raise SpecLoadError(f"{kind} file exceeds maximum size of {max_size} bytes: {path}")

    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read {kind.lower()} file {path}: {e}") from e


def load_request(path: Path) -> ResourceHandlerRequest:
    """Load and validate a handler request from YAML (or JSON, a YAML subset).

    Args:
        path: Request file.

    Returns:
        Validated request.

    Raises:
        SpecLoadError: If the file cannot be read, parsed or validated.
    """
    content = _read_limited(path, MAX_REQUEST_FILE_SIZE_BYTES, "Request")

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Request file must contain a mapping: {path}")

    try:
        request = ResourceHandlerRequest.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded request from %s", path)
    return request


def load_callback_context(path: Path) -> CallbackContext:
    """Load a callback context saved by a previous invocation.

    A missing or empty file yields an empty context (first invocation).
    """
    if not path.exists():
        return CallbackContext()

    content = _read_limited(path, MAX_CONTEXT_FILE_SIZE_BYTES, "Context")
    if not content.strip():
        return CallbackContext()

    try:
        data: Any = json.loads(content)
    except json.JSONDecodeError as e:
        raise SpecLoadError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise SpecLoadError(f"Context file must contain a JSON object: {path}")

    try:
        return CallbackContext.from_dict(data)
    except ValueError as e:
        raise SpecLoadError(f"Invalid callback context in {path}: {e}") from e


def save_callback_context(path: Path, context: CallbackContext) -> None:
    try:
        path.write_text(json.dumps(context.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to write context file {path}: {e}") from e
