"""Stabilization checks for long-running provider mutations.

A check performs exactly one status fetch and returns immediately. Waiting
between checks is the caller's job: the step executor turns a "not yet
stable" answer into an IN_PROGRESS result with a re-invoke delay.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from .errors import NotStabilizedError

logger = logging.getLogger(__name__)

# Returns the current status, or None when the resource does not exist
StatusFetcher = Callable[[], "str | None"]


class PollKind(str, Enum):
    """Operation type driving the not-found interpretation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def _normalize(statuses: Iterable[str]) -> frozenset[str]:
    return frozenset(s.lower() for s in statuses)


@dataclass(frozen=True)
class StatusModel:
    """Status vocabulary of one resource type.

    Attributes:
        stable: Statuses in which the resource is settled and usable.
        transient: Statuses the resource passes through while mutating.
        terminal: Failure statuses the resource will not recover from.
    """

    stable: frozenset[str]
    transient: frozenset[str] = frozenset()
    terminal: frozenset[str] = frozenset()

    @classmethod
    def of(
        cls,
        stable: Iterable[str],
        transient: Iterable[str] = (),
        terminal: Iterable[str] = (),
    ) -> StatusModel:
        model = cls(_normalize(stable), _normalize(transient), _normalize(terminal))
        overlap = (model.stable & model.terminal) | (model.transient & model.terminal)
        if overlap:
            raise ValueError(
                f"Statuses cannot be both terminal and non-terminal: {sorted(overlap)}"
            )
        return model

    def is_stable(self, status: str) -> bool:
        return status.lower() in self.stable

    def is_transient(self, status: str) -> bool:
        return status.lower() in self.transient

    def is_terminal(self, status: str) -> bool:
        return status.lower() in self.terminal


def is_stabilized(
    identifier: str,
    fetch_status: StatusFetcher,
    status_model: StatusModel,
    kind: PollKind,
) -> bool:
    """Check once whether a resource has reached a steady state.

    Args:
        identifier: Resource identifier, for logging and errors.
        fetch_status: Single status lookup; None means "not found".
        status_model: Status vocabulary of the resource type.
        kind: Operation type. A missing resource is stable for DELETE
            and not yet stable for everything else.

    Returns:
        True when stable, False while still settling.

    Raises:
        NotStabilizedError: If the resource reached a terminal failure status.
    """
    status = fetch_status()

    if status is None:
        stabilized = kind == PollKind.DELETE
        logger.debug(
            "Resource not found while polling",
            extra={"identifier": identifier, "poll_kind": kind.value, "stabilized": stabilized},
        )
        return stabilized

    if status_model.is_terminal(status):
        raise NotStabilizedError(identifier, status)

    if kind == PollKind.DELETE:
        # Still exists, whatever the status
        return False

    if status_model.is_stable(status):
        return True

    if not status_model.is_transient(status):
        logger.warning(
            "Unknown resource status, treating as not stabilized",
            extra={"identifier": identifier, "status": status},
        )
    return False
