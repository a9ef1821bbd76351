"""Reconciliation orchestrator and invocation boundary.

Each call to BaseHandler.handle() is one invocation of a logical operation.
The caller passes the callback context returned by the previous invocation
(none on the first) and keeps re-invoking after the returned delay until the
result is SUCCESS or FAILED.

Resource handlers describe each lifecycle operation as a Pipeline of stages.
The pipeline always starts from the top: completed gated stages are skipped
via the context, so execution effectively resumes at the first incomplete
stage.
"""

from __future__ import annotations

import hashlib
import logging
import re
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError

from .client import ServiceClient
from .config import HandlerConfig
from .errors import (
    DEFAULT_ERROR_RULE_SET,
    ErrorRuleSet,
    HandlerError,
    HandlerErrorCode,
    handle_exception,
)
from .execution import StepExecutor
from .models import ResourceModel
from .progress import CallbackContext, ProgressEvent
from .stabilization import PollKind, StatusModel, is_stabilized
from .tagging import TagSet

logger = logging.getLogger(__name__)

# Generated identifiers: <stack>-<logical id>-<suffix>
IDENTIFIER_SUFFIX_LENGTH = 12

# Context key holding the name generated on the first invocation
GENERATED_IDENTIFIER_KEY = "generated-identifier"

R = TypeVar("R", bound=ResourceModel)


class Action(str, Enum):
    """Lifecycle operations."""

    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ResourceHandlerRequest(BaseModel):
    """Invocation input supplied by the caller.

    Resource state is kept as raw mappings here; each handler parses it into
    its own model. Tag layers mirror TagSet: system tags, stack-level
    ("resource") tags, and the tags on the model itself.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    desired_resource_state: dict[str, Any] | None = Field(None, alias="desiredResourceState")
    previous_resource_state: dict[str, Any] | None = Field(None, alias="previousResourceState")

    system_tags: dict[str, str] = Field(default_factory=dict, alias="systemTags")
    previous_system_tags: dict[str, str] = Field(default_factory=dict, alias="previousSystemTags")
    desired_resource_tags: dict[str, str] = Field(
        default_factory=dict, alias="desiredResourceTags"
    )
    previous_resource_tags: dict[str, str] = Field(
        default_factory=dict, alias="previousResourceTags"
    )

    logical_resource_identifier: str | None = Field(None, alias="logicalResourceIdentifier")
    stack_name: str | None = Field(None, alias="stackName")
    client_request_token: str = Field(
        default_factory=lambda: str(uuid.uuid4()), alias="clientRequestToken"
    )
    # Set when the caller is reverting a failed update to previous_resource_state
    rollback: bool = False


def generate_resource_identifier(
    stack_name: str | None,
    logical_id: str | None,
    client_request_token: str,
    max_length: int,
) -> str:
    """Generate a physical name for a resource the caller did not name.

    The suffix is derived from the client request token, so every invocation
    of the same logical operation produces the same name.

    Args:
        stack_name: Deployment (stack) name, may be None.
        logical_id: Caller's logical name for the resource, may be None.
        client_request_token: Token identifying the logical operation.
        max_length: Maximum identifier length accepted by the service.

    Returns:
        A lowercase identifier starting with a letter, without consecutive
        or trailing hyphens.
    """
    suffix = hashlib.sha256(client_request_token.encode()).hexdigest()[:IDENTIFIER_SUFFIX_LENGTH]
    prefix = "-".join(part for part in (stack_name, logical_id) if part)
    prefix = re.sub(r"[^a-z0-9]+", "-", prefix.lower()).strip("-")
    if not prefix or not prefix[0].isalpha():
        prefix = f"rds-{prefix}".rstrip("-")

    max_prefix_length = max_length - IDENTIFIER_SUFFIX_LENGTH - 1
    prefix = prefix[:max_prefix_length].rstrip("-")
    return f"{prefix}-{suffix}"


class BaseHandler(ABC, Generic[R]):
    """Orchestrates lifecycle operations for one resource type.

    Subclasses set the class attributes and implement the four operations.
    Each operation receives the parsed request and a progress seeded with the
    desired model and the caller's context, and returns the progress of this
    invocation.
    """

    resource_type: ClassVar[str]
    model_class: ClassVar[type[Any]]
    rule_set: ClassVar[ErrorRuleSet] = DEFAULT_ERROR_RULE_SET
    status_model: ClassVar[StatusModel | None] = None
    default_config: ClassVar[HandlerConfig] = HandlerConfig()

    # Fields that must be present in the desired state on create
    required_on_create: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        client: ServiceClient,
        config: HandlerConfig | None = None,
        clock: Any | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            client: Provisioning-service client.
            config: Overrides the resource type's default handler config.
            clock: Callable returning the current aware datetime (tests).
        """
        self._client = client
        self._config = config or self.default_config
        self._executor = StepExecutor(client, self._config, self.rule_set, clock=clock)

    @property
    def config(self) -> HandlerConfig:
        return self._config

    @property
    def delay_seconds(self) -> int:
        return self._config.backoff.delay_seconds

    def handle(
        self,
        action: Action | str,
        request: ResourceHandlerRequest,
        callback_context: CallbackContext | dict[str, Any] | None = None,
    ) -> ProgressEvent[R]:
        """Run one invocation of a logical operation.

        Args:
            action: Lifecycle operation.
            request: Caller's request; identical on every invocation of the
                same logical operation.
            callback_context: Context returned by the previous invocation,
                absent on the first.

        Returns:
            SUCCESS or FAILED when the operation is over, IN_PROGRESS with a
            callback delay and context when the caller must re-invoke.
        """
        action = Action(action)
        context = CallbackContext()
        desired: R | None = None
        try:
            context = self._parse_context(callback_context)
            logger.info(
                "Handling request",
                extra={
                    "action": action.value,
                    "resource_type": self.resource_type,
                    "logical_resource_id": request.logical_resource_identifier,
                    "resumed": bool(context.completed or context.data),
                },
            )

            desired, previous = self._parse_models(action, request)
            progress: ProgressEvent[R] = ProgressEvent.progress(desired, context)

            match action:
                case Action.CREATE:
                    self._check_required(desired)
                    result = self.create(request, progress)
                case Action.READ:
                    result = self.read(progress)
                case Action.UPDATE:
                    result = self.update(request, previous, progress)
                case Action.DELETE:
                    result = self.delete(request, progress)
        except Exception as e:
            result = handle_exception(
                ProgressEvent.progress(desired, context), e, self.rule_set, self.delay_seconds
            )

        if result.can_continue:
            # Every stage ran in this invocation
            result = ProgressEvent.success(result.resource_model, result.callback_context)

        logger.info(
            "Request handled",
            extra={
                "action": action.value,
                "resource_type": self.resource_type,
                "status": result.status.value,
                "error_code": result.error_code.value if result.error_code else None,
                "callback_delay_seconds": result.callback_delay_seconds,
            },
        )
        return result

    @abstractmethod
    def create(
        self, request: ResourceHandlerRequest, progress: ProgressEvent[R]
    ) -> ProgressEvent[R]:
        """Create the resource."""

    @abstractmethod
    def read(self, progress: ProgressEvent[R]) -> ProgressEvent[R]:
        """Return SUCCESS with the observed model, or fail with NotFound."""

    @abstractmethod
    def update(
        self,
        request: ResourceHandlerRequest,
        previous: R,
        progress: ProgressEvent[R],
    ) -> ProgressEvent[R]:
        """Move the resource from previous to desired state."""

    @abstractmethod
    def delete(
        self, request: ResourceHandlerRequest, progress: ProgressEvent[R]
    ) -> ProgressEvent[R]:
        """Delete the resource."""

    def tag_sets(
        self, request: ResourceHandlerRequest, previous: R | None, desired: R
    ) -> tuple[TagSet, TagSet]:
        """Build the previous and desired tag layers of a request."""
        previous_tags = TagSet(
            system_tags=dict(request.previous_system_tags),
            stack_tags=dict(request.previous_resource_tags),
            resource_tags=previous.tag_map() if previous is not None else {},
        )
        desired_tags = TagSet(
            system_tags=dict(request.system_tags),
            stack_tags=dict(request.desired_resource_tags),
            resource_tags=desired.tag_map(),
        )
        return previous_tags, desired_tags

    def assign_identifier(
        self,
        request: ResourceHandlerRequest,
        progress: ProgressEvent[R],
        field: str,
        max_length: int,
    ) -> ProgressEvent[R]:
        """Fill in a generated physical name when the caller gave none.

        The name chosen on the first invocation is kept in the callback
        context and reused by every later invocation of the operation.
        """
        model = progress.resource_model
        if getattr(model, field):
            return progress

        context = progress.callback_context
        name = context.data.get(GENERATED_IDENTIFIER_KEY)
        if name is None:
            name = generate_resource_identifier(
                request.stack_name,
                request.logical_resource_identifier,
                request.client_request_token,
                max_length,
            )
            context.data[GENERATED_IDENTIFIER_KEY] = name
            logger.info(
                "Generated resource identifier",
                extra={"resource_type": self.resource_type, "identifier": name},
            )
        return ProgressEvent.progress(model.model_copy(update={field: name}), context)

    def stabilizer(
        self, kind: PollKind, fetch_status: Callable[[Any, R], str | None]
    ) -> Callable[[Any, R], bool]:
        """Build a single stabilization check from the type's status model.

        Args:
            kind: Operation being stabilized.
            fetch_status: (client, model) -> current status, None if not found.
        """
        status_model = self.status_model
        if status_model is None:
            raise TypeError(f"{self.resource_type} does not define a status model")

        def stabilize(client: Any, model: R) -> bool:
            return is_stabilized(
                model.primary_identifier or "",
                lambda: fetch_status(client, model),
                status_model,
                kind,
            )

        return stabilize

    @staticmethod
    def _parse_context(
        callback_context: CallbackContext | dict[str, Any] | None,
    ) -> CallbackContext:
        if isinstance(callback_context, CallbackContext):
            return callback_context
        try:
            return CallbackContext.from_dict(callback_context)
        except ValueError as e:
            raise HandlerError(
                HandlerErrorCode.INVALID_REQUEST, f"Invalid callback context: {e}"
            ) from e

    def _parse_models(
        self, action: Action, request: ResourceHandlerRequest
    ) -> tuple[R, R | None]:
        if request.desired_resource_state is None:
            raise HandlerError(
                HandlerErrorCode.INVALID_REQUEST, "Desired resource state is required"
            )

        try:
            desired = self.model_class.model_validate(request.desired_resource_state)
            previous = (
                self.model_class.model_validate(request.previous_resource_state)
                if request.previous_resource_state is not None
                else None
            )
        except ValidationError as e:
            raise HandlerError(HandlerErrorCode.INVALID_REQUEST, str(e)) from e

        if action == Action.UPDATE:
            if previous is None:
                raise HandlerError(
                    HandlerErrorCode.INVALID_REQUEST,
                    "Previous resource state is required for update",
                )
            desired = self._carry_identity(previous, desired)

        needs_identifier = action in (Action.READ, Action.DELETE, Action.UPDATE)
        if needs_identifier and desired.primary_identifier is None:
            raise HandlerError(
                HandlerErrorCode.INVALID_REQUEST,
                f"Primary identifier is required for {action.value.lower()}",
            )

        return desired, previous

    def _carry_identity(self, previous: R, desired: R) -> R:
        """Keep the primary identifier across an update; changing it is refused."""
        updates: dict[str, Any] = {}
        for name in desired.identity_fields:
            before = getattr(previous, name)
            after = getattr(desired, name)
            if after is None:
                updates[name] = before
            elif before is not None and before != after:
                raise HandlerError(
                    HandlerErrorCode.INVALID_REQUEST,
                    f"{name} cannot be changed from {before!r} to {after!r}",
                )
        if updates:
            return desired.model_copy(update=updates)
        return desired

    def _check_required(self, desired: R) -> None:
        missing = [name for name in self.required_on_create if getattr(desired, name) is None]
        if missing:
            raise HandlerError(
                HandlerErrorCode.INVALID_REQUEST,
                f"Missing required properties: {', '.join(missing)}",
            )
