"""Provider error classification.

Every exception raised by a provider call is mapped to exactly one Outcome by
walking an ordered ErrorRuleSet: the first matching rule wins. Resource
handlers derive their own rule sets from DEFAULT_ERROR_RULE_SET, with their
specific rules consulted before the inherited defaults.

Classification happens once, at the point the exception is raised. An
exception nobody registered maps to a terminal InternalError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from botocore.exceptions import (
    ConnectTimeoutError,
    EndpointConnectionError,
    ParamValidationError,
    ReadTimeoutError,
)

if TYPE_CHECKING:
    from .progress import ProgressEvent

logger = logging.getLogger(__name__)


class HandlerErrorCode(str, Enum):
    """Caller-facing error codes."""

    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    INVALID_REQUEST = "InvalidRequest"
    ACCESS_DENIED = "AccessDenied"
    SERVICE_LIMIT_EXCEEDED = "ServiceLimitExceeded"
    RESOURCE_CONFLICT = "ResourceConflict"
    THROTTLING = "Throttling"
    NOT_STABILIZED = "NotStabilized"
    INTERNAL_ERROR = "InternalError"


class EngineError(Exception):
    """Base class for errors raised by the engine itself."""

    pass


class HandlerError(EngineError):
    """An error that already carries its caller-facing code.

    Raised where the engine itself decides the outcome (presence checks,
    immutable identifier changes). Never re-classified.
    """

    def __init__(self, error_code: HandlerErrorCode, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code


class NotStabilizedError(EngineError):
    """Raised when polling observes a terminal failure status."""

    def __init__(self, identifier: str, status: str) -> None:
        super().__init__(f"Resource {identifier} is in state: {status}")
        self.identifier = identifier
        self.status = status


class OutcomeKind(str, Enum):
    """What a classified error does to the operation."""

    SUCCESS = "success"  # Swallowed, the operation proceeds
    IN_PROGRESS = "in_progress"  # Not an error yet, re-invoke later
    RETRY = "retry"  # Transient failure, re-invoke later
    FAIL = "fail"  # Terminal failure


@dataclass(frozen=True)
class Outcome:
    """Result of classifying one exception."""

    kind: OutcomeKind
    error_code: HandlerErrorCode | None = None
    delay_seconds: int | None = None

    @classmethod
    def success(cls) -> Outcome:
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def in_progress(cls, delay_seconds: int | None = None) -> Outcome:
        return cls(OutcomeKind.IN_PROGRESS, delay_seconds=delay_seconds)

    @classmethod
    def retry(cls, error_code: HandlerErrorCode) -> Outcome:
        return cls(OutcomeKind.RETRY, error_code)

    @classmethod
    def fail(cls, error_code: HandlerErrorCode) -> Outcome:
        return cls(OutcomeKind.FAIL, error_code)


def error_code_of(exception: BaseException) -> str | None:
    """Extract the provider error code from an exception.

    botocore ClientError carries it in response["Error"]["Code"]; other
    exceptions may expose an ``error_code`` attribute.
    """
    response = getattr(exception, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code")
        if code:
            return str(code)
    code = getattr(exception, "error_code", None)
    if isinstance(code, HandlerErrorCode):
        return code.value
    return str(code) if code else None


def error_message_of(exception: BaseException) -> str:
    response = getattr(exception, "response", None)
    if isinstance(response, dict):
        message = response.get("Error", {}).get("Message")
        if message:
            return str(message)
    return str(exception) or type(exception).__name__


@dataclass(frozen=True)
class ErrorRule:
    """Maps exceptions matching a predicate to an outcome.

    Attributes:
        outcome: Outcome produced when the rule matches.
        error_codes: Provider error codes to match (e.g. "DBParameterGroupNotFound").
        exception_types: Exception classes to match with isinstance.

    A rule with neither codes nor types matches every exception.
    """

    outcome: Outcome
    error_codes: frozenset[str] = frozenset()
    exception_types: tuple[type[BaseException], ...] = ()

    def matches(self, exception: BaseException) -> bool:
        if not self.error_codes and not self.exception_types:
            return True
        if self.exception_types and isinstance(exception, self.exception_types):
            return True
        if self.error_codes:
            return error_code_of(exception) in self.error_codes
        return False


@dataclass(frozen=True)
class ErrorRuleSet:
    """Ordered, immutable classification policy. First match wins."""

    rules: tuple[ErrorRule, ...] = ()

    @classmethod
    def extend(cls, base: ErrorRuleSet) -> ErrorRuleSetBuilder:
        """Start a derived rule set whose own rules are consulted before base's."""
        return ErrorRuleSetBuilder(base)

    def extend_with(self, specific: ErrorRuleSet) -> ErrorRuleSet:
        """Return a new set consulting ``specific`` first, then this set."""
        return ErrorRuleSet(specific.rules + self.rules)

    def find(self, exception: BaseException) -> ErrorRule | None:
        for rule in self.rules:
            if rule.matches(exception):
                return rule
        return None

    def classify(self, exception: BaseException) -> Outcome:
        """Map an exception to an outcome; unmatched exceptions are InternalError."""
        if isinstance(exception, HandlerError):
            return Outcome.fail(exception.error_code)
        rule = self.find(exception)
        if rule is None:
            return Outcome.fail(HandlerErrorCode.INTERNAL_ERROR)
        return rule.outcome

    def __len__(self) -> int:
        return len(self.rules)


class ErrorRuleSetBuilder:
    """Collects specific rules to prepend to a base rule set."""

    def __init__(self, base: ErrorRuleSet) -> None:
        self._base = base
        self._rules: list[ErrorRule] = []

    def with_error_codes(self, outcome: Outcome, *codes: str) -> ErrorRuleSetBuilder:
        if not codes:
            raise ValueError("with_error_codes requires at least one error code")
        self._rules.append(ErrorRule(outcome=outcome, error_codes=frozenset(codes)))
        return self

    def with_error_classes(
        self, outcome: Outcome, *exception_types: type[BaseException]
    ) -> ErrorRuleSetBuilder:
        if not exception_types:
            raise ValueError("with_error_classes requires at least one exception type")
        self._rules.append(ErrorRule(outcome=outcome, exception_types=tuple(exception_types)))
        return self

    def build(self) -> ErrorRuleSet:
        return ErrorRuleSet(tuple(self._rules) + self._base.rules)


# Generic AWS error codes shared by every RDS resource type
NOT_FOUND_ERROR_CODES = ("NotFound", "ResourceNotFoundFault", "ResourceNotFoundException")
THROTTLING_ERROR_CODES = (
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
)
CONFLICT_ERROR_CODES = (
    "ResourceInUse",
    "ResourceInUseException",
    "ConcurrentModificationException",
    "OperationAbortedException",
)
ACCESS_DENIED_ERROR_CODES = (
    "AccessDenied",
    "AccessDeniedException",
    "NotAuthorized",
    "UnauthorizedOperation",
)
QUOTA_ERROR_CODES = (
    "LimitExceededException",
    "ServiceQuotaExceededException",
    "QuotaExceeded",
)
INVALID_REQUEST_ERROR_CODES = (
    "InvalidParameterValue",
    "InvalidParameterCombination",
    "MissingParameter",
    "ValidationError",
    "ValidationException",
)
TRANSIENT_ERROR_CODES = ("InternalFailure", "ServiceUnavailable", "RequestTimeout")

DEFAULT_ERROR_RULE_SET: ErrorRuleSet = (
    ErrorRuleSet.extend(ErrorRuleSet())
    .with_error_classes(Outcome.fail(HandlerErrorCode.NOT_STABILIZED), NotStabilizedError)
    .with_error_classes(Outcome.fail(HandlerErrorCode.INVALID_REQUEST), ParamValidationError)
    .with_error_classes(
        Outcome.retry(HandlerErrorCode.INTERNAL_ERROR),
        EndpointConnectionError,
        ConnectTimeoutError,
        ReadTimeoutError,
    )
    .with_error_codes(Outcome.fail(HandlerErrorCode.NOT_FOUND), *NOT_FOUND_ERROR_CODES)
    .with_error_codes(Outcome.retry(HandlerErrorCode.THROTTLING), *THROTTLING_ERROR_CODES)
    .with_error_codes(Outcome.retry(HandlerErrorCode.RESOURCE_CONFLICT), *CONFLICT_ERROR_CODES)
    .with_error_codes(Outcome.fail(HandlerErrorCode.ACCESS_DENIED), *ACCESS_DENIED_ERROR_CODES)
    .with_error_codes(Outcome.fail(HandlerErrorCode.SERVICE_LIMIT_EXCEEDED), *QUOTA_ERROR_CODES)
    .with_error_codes(
        Outcome.fail(HandlerErrorCode.INVALID_REQUEST), *INVALID_REQUEST_ERROR_CODES
    )
    .with_error_codes(Outcome.retry(HandlerErrorCode.INTERNAL_ERROR), *TRANSIENT_ERROR_CODES)
    .build()
)


def handle_exception(
    progress: ProgressEvent[Any],
    exception: BaseException,
    rule_set: ErrorRuleSet,
    delay_seconds: int,
) -> ProgressEvent[Any]:
    """Classify an exception once and convert it into a progress event.

    Args:
        progress: The progress the failing step started from.
        exception: The raised exception.
        rule_set: Active classification policy.
        delay_seconds: Re-invoke delay for retryable outcomes.

    Returns:
        SUCCESS outcomes continue the pipeline (soft fail), IN_PROGRESS and
        RETRY suspend it with a delay, FAIL terminates it.
    """
    from .progress import ProgressEvent

    outcome = rule_set.classify(exception)
    message = error_message_of(exception)
    log_extra = {
        "outcome": outcome.kind.value,
        "error_code": outcome.error_code.value if outcome.error_code else None,
        "provider_error_code": error_code_of(exception),
        "error": message,
    }

    match outcome.kind:
        case OutcomeKind.SUCCESS:
            logger.warning("Ignoring provider error", extra=log_extra)
            result = ProgressEvent.progress(progress.resource_model, progress.callback_context)
            result.message = message
            return result
        case OutcomeKind.IN_PROGRESS:
            logger.info("Provider not ready, re-invoking later", extra=log_extra)
            return ProgressEvent.in_progress(
                progress.resource_model,
                progress.callback_context,
                outcome.delay_seconds or delay_seconds,
            )
        case OutcomeKind.RETRY:
            logger.warning("Retryable provider error", extra=log_extra)
            result = ProgressEvent.in_progress(
                progress.resource_model, progress.callback_context, delay_seconds
            )
            result.error_code = outcome.error_code
            result.message = message
            return result
        case _:
            if outcome.error_code == HandlerErrorCode.INTERNAL_ERROR and rule_set.find(
                exception
            ) is None:
                logger.error(
                    "Unclassified error",
                    exc_info=exception,
                    extra={**log_extra, "exception_type": type(exception).__name__},
                )
            else:
                logger.error("Provider error", extra=log_extra)
            # SAFETY: FAIL outcomes always carry an error code
            error_code = outcome.error_code or HandlerErrorCode.INTERNAL_ERROR
            return ProgressEvent.failed(
                progress.resource_model, progress.callback_context, error_code, message
            )
