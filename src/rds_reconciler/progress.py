"""Progress token and per-invocation result.

A logical operation (create/update/delete/read of one resource) spans one or
more invocations. Everything the engine needs to resume lives in the
CallbackContext, which the caller echoes back unchanged on every re-invoke.
Nothing is kept in process memory between invocations.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .models import ResourceModel

if TYPE_CHECKING:
    from .errors import HandlerErrorCode

M = TypeVar("M", bound=ResourceModel)


class OperationStatus(str, Enum):
    """Status reported to the caller after each invocation."""

    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class CallbackContext:
    """Resumable progress of one logical operation.

    Attributes:
        completed: Step name -> completion flag, written by the idempotency gate.
        data: Step-specific carried data (stabilization bookkeeping, snapshots).
    """

    completed: dict[str, bool] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    def is_complete(self, step: str) -> bool:
        return self.completed.get(step, False)

    def mark_complete(self, step: str) -> None:
        self.completed[step] = True

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {"completed": dict(self.completed), "data": dict(self.data)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CallbackContext:
        """Deserialize from a dict produced by to_dict(); None yields an empty context.

        Raises:
            ValueError: If data is not a mapping of the shape to_dict() produces.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")

        completed = data.get("completed", {})
        carried = data.get("data", {})
        for key, value in (("completed", completed), ("data", carried)):
            if not isinstance(value, dict):
                raise ValueError(f"'{key}' must be an object, got {type(value).__name__}")
        return cls(
            completed={str(k): bool(v) for k, v in completed.items()},
            data=dict(carried),
        )


@dataclass
class ProgressEvent(Generic[M]):
    """Result of running (part of) a pipeline.

    An IN_PROGRESS event with no callback delay means "keep going": the next
    stage of the pipeline may run in this same invocation. A positive delay
    suspends the operation until the caller re-invokes.
    """

    status: OperationStatus
    resource_model: M | None
    callback_context: CallbackContext = field(default_factory=CallbackContext)
    error_code: HandlerErrorCode | None = None
    message: str = ""
    callback_delay_seconds: int = 0

    @classmethod
    def progress(cls, model: M | None, context: CallbackContext) -> ProgressEvent[M]:
        return cls(OperationStatus.IN_PROGRESS, model, context)

    @classmethod
    def in_progress(
        cls, model: M | None, context: CallbackContext, delay_seconds: int
    ) -> ProgressEvent[M]:
        return cls(
            OperationStatus.IN_PROGRESS,
            model,
            context,
            callback_delay_seconds=delay_seconds,
        )

    @classmethod
    def success(cls, model: M | None, context: CallbackContext) -> ProgressEvent[M]:
        return cls(OperationStatus.SUCCESS, model, context)

    @classmethod
    def failed(
        cls,
        model: M | None,
        context: CallbackContext,
        error_code: HandlerErrorCode,
        message: str,
    ) -> ProgressEvent[M]:
        return cls(OperationStatus.FAILED, model, context, error_code=error_code, message=message)

    @property
    def is_in_progress(self) -> bool:
        return self.status == OperationStatus.IN_PROGRESS

    @property
    def is_success(self) -> bool:
        return self.status == OperationStatus.SUCCESS

    @property
    def is_failed(self) -> bool:
        return self.status == OperationStatus.FAILED

    @property
    def can_continue(self) -> bool:
        """True when the next pipeline stage may run in this invocation."""
        return self.is_in_progress and self.callback_delay_seconds == 0

    def then(self, func: Callable[[ProgressEvent[M]], ProgressEvent[M]]) -> ProgressEvent[M]:
        """Apply func only if this event can continue; otherwise pass it through."""
        if not self.can_continue:
            return self
        return func(self)

    def to_dict(self) -> dict[str, Any]:
        """Render the invocation result handed back to the caller."""
        result: dict[str, Any] = {
            "status": self.status.value,
            "resourceModel": (
                self.resource_model.to_state() if self.resource_model is not None else None
            ),
        }
        # The context is discarded once the operation is terminal
        if self.is_in_progress:
            result["callbackContext"] = self.callback_context.to_dict()
            result["callbackDelaySeconds"] = self.callback_delay_seconds
        if self.error_code is not None:
            result["errorCode"] = self.error_code.value
        if self.message:
            result["message"] = self.message
        return result
