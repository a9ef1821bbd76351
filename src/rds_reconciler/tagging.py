"""Tag reconciliation between previous and desired tag layers.

Tags come in three layers: system tags injected by the platform, stack tags
scoped to the deployment, and resource tags set on the resource itself.
Layers are merged system -> stack -> resource, so a later layer overrides an
earlier one on key collision, and the merged previous/desired sets are
compared.

Tagging is best effort: if the resource is busy with a conflicting mutation
the tag failure is swallowed so it cannot block the primary change.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from .errors import (
    CONFLICT_ERROR_CODES,
    ErrorRuleSet,
    Outcome,
    handle_exception,
)
from .progress import M, ProgressEvent

logger = logging.getLogger(__name__)

# Provider error codes reporting that the resource is mid-mutation
IN_PROGRESS_TAGGING_ERROR_CODES = (
    *CONFLICT_ERROR_CODES,
    "InvalidDBClusterStateFault",
    "InvalidDBInstanceState",
    "InvalidDBParameterGroupState",
    "InvalidCustomDBEngineVersionStateFault",
)

SOFT_FAIL_IN_PROGRESS_TAGGING_ERROR_RULE_SET = (
    ErrorRuleSet.extend(ErrorRuleSet())
    .with_error_codes(Outcome.success(), *IN_PROGRESS_TAGGING_ERROR_CODES)
    .build()
)


@dataclass(frozen=True)
class TagSet:
    """Tag layers of one resource at one point in time."""

    system_tags: dict[str, str] = field(default_factory=dict)
    stack_tags: dict[str, str] = field(default_factory=dict)
    resource_tags: dict[str, str] = field(default_factory=dict)

    def merged(self) -> dict[str, str]:
        """Flatten layers; later layers override earlier ones."""
        return {**self.system_tags, **self.stack_tags, **self.resource_tags}

    def is_empty(self) -> bool:
        return not (self.system_tags or self.stack_tags or self.resource_tags)

    def to_sdk(self) -> list[dict[str, str]]:
        return translate_tags_to_sdk(self.merged())


def exclude(left: Mapping[str, str], right: Mapping[str, str]) -> dict[str, str]:
    """Entries of left that are absent, by key and value, from right."""
    return {key: value for key, value in left.items() if key not in right or right[key] != value}


def reconcile(previous: TagSet, desired: TagSet) -> tuple[dict[str, str], dict[str, str]]:
    """Compute the tag changes turning previous into desired.

    Returns:
        (to_add, to_remove). A key whose value changed appears in both, so it
        is removed and then re-added with the new value.
    """
    previous_tags = previous.merged()
    desired_tags = desired.merged()
    return exclude(desired_tags, previous_tags), exclude(previous_tags, desired_tags)


def translate_tags_to_sdk(tags: Mapping[str, str] | None) -> list[dict[str, str]]:
    if not tags:
        return []
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def translate_tags_from_sdk(tags: Iterable[Mapping[str, Any]] | None) -> dict[str, str]:
    if not tags:
        return {}
    return {str(tag["Key"]): str(tag.get("Value", "")) for tag in tags}


def update_tags(
    client: Any,
    arn: str,
    progress: ProgressEvent[M],
    previous: TagSet,
    desired: TagSet,
    rule_set: ErrorRuleSet,
    delay_seconds: int,
) -> ProgressEvent[M]:
    """Bring the resource's tags from previous to desired.

    Removal is issued before addition. Failures are classified with the
    resource's rule set, with conflicting-mutation errors softened to a
    logged, non-blocking failure.

    Args:
        client: ServiceClient exposing add_tags/remove_tags.
        arn: Resource ARN.
        progress: Current progress.
        previous: Tag layers before the operation.
        desired: Tag layers requested by the caller.
        rule_set: The resource handler's rule set.
        delay_seconds: Re-invoke delay for retryable tagging errors.
    """
    to_add, to_remove = reconcile(previous, desired)

    if not to_add and not to_remove:
        return progress

    logger.info(
        "Updating tags",
        extra={"arn": arn, "tags_to_add": sorted(to_add), "tags_to_remove": sorted(to_remove)},
    )

    try:
        if to_remove:
            client.remove_tags(arn, sorted(to_remove))
        if to_add:
            client.add_tags(arn, translate_tags_to_sdk(to_add))
    except Exception as e:
        result = handle_exception(
            progress,
            e,
            rule_set.extend_with(SOFT_FAIL_IN_PROGRESS_TAGGING_ERROR_RULE_SET),
            delay_seconds,
        )
        if result.can_continue:
            result.message = f"Tags not updated: {result.message}"
        return result

    return progress
