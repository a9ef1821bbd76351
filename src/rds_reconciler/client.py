"""Provisioning-service client boundary.

Wraps a boto3 RDS client so every provider call made by a handler goes
through one place for logging. Provider exceptions (botocore ClientError and
friends) propagate unchanged: classification is the step executor's job.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import boto3
from botocore.config import Config as BotoConfig

logger = logging.getLogger(__name__)

# The engine retries through the caller; keep SDK-level retries short
SDK_MAX_ATTEMPTS = 3
SDK_CONNECT_TIMEOUT_SECONDS = 10
SDK_READ_TIMEOUT_SECONDS = 60


class ServiceClient:
    """Thin logging proxy over a boto3 service client."""

    def __init__(self, client: Any) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    def invoke(self, operation: str, request: dict[str, Any]) -> dict[str, Any]:
        """Call a client operation by its snake_case name.

        Args:
            operation: boto3 method name (e.g. "modify_db_cluster_parameter_group").
            request: Keyword arguments for the call.

        Returns:
            The response dict.
        """
        logger.debug(
            "Provider call",
            extra={"operation": operation, "request_keys": sorted(request)},
        )
        method = getattr(self._client, operation)
        response: dict[str, Any] = method(**request)
        return response

    def add_tags(self, arn: str, tags: Sequence[dict[str, str]]) -> None:
        if not tags:
            return
        self.invoke("add_tags_to_resource", {"ResourceName": arn, "Tags": list(tags)})

    def remove_tags(self, arn: str, keys: Sequence[str]) -> None:
        if not keys:
            return
        self.invoke("remove_tags_from_resource", {"ResourceName": arn, "TagKeys": list(keys)})

    def list_tags(self, arn: str) -> list[dict[str, str]]:
        response = self.invoke("list_tags_for_resource", {"ResourceName": arn})
        return list(response.get("TagList", []))


def create_rds_client(region: str) -> ServiceClient:
    """Build a ServiceClient over a boto3 RDS client for a region.

    Credentials come from the standard boto3 provider chain.
    """
    boto_config = BotoConfig(
        region_name=region,
        retries={"max_attempts": SDK_MAX_ATTEMPTS, "mode": "standard"},
        connect_timeout=SDK_CONNECT_TIMEOUT_SECONDS,
        read_timeout=SDK_READ_TIMEOUT_SECONDS,
    )
    return ServiceClient(boto3.client("rds", config=boto_config))
