"""AWS::RDS::DBCluster handler.

Cluster mutations are asynchronous: the cluster reports "creating" or
"modifying" for minutes after the call returns. Create, modify and delete
each stabilize across invocations against the cluster status.

Update pipeline:
1. tags-updated     (gated)   tag diff applied, remove before add
2. cluster-modified (gated)   ModifyDBCluster with the changed fields only
3. verified         (ungated) read back the final state

On rollback the modify request leaves the engine version alone.
"""

from __future__ import annotations

import logging
from typing import Any

from . import translator
from .config import DB_CLUSTER_HANDLER_CONFIG
from .errors import (
    DEFAULT_ERROR_RULE_SET,
    ErrorRuleSet,
    HandlerError,
    HandlerErrorCode,
    Outcome,
    error_code_of,
    handle_exception,
)
from .execution import MutationStep, Pipeline, Stage
from .handler import BaseHandler, ResourceHandlerRequest
from .models import DBClusterModel
from .progress import ProgressEvent
from .stabilization import PollKind, StatusModel
from .tagging import TagSet, update_tags

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "AWS::RDS::DBCluster"
IDENTIFIER_MAX_LENGTH = 63

STAGE_CLUSTER_CREATED = "cluster-created"
STAGE_TAGS_UPDATED = "tags-updated"
STAGE_CLUSTER_MODIFIED = "cluster-modified"
STAGE_CLUSTER_DELETED = "cluster-deleted"
STAGE_VERIFIED = "verified"

NOT_FOUND_FAULT = "DBClusterNotFoundFault"

STATUS_MODEL = StatusModel.of(
    stable=("available", "stopped"),
    transient=(
        "creating",
        "modifying",
        "backing-up",
        "upgrading",
        "renaming",
        "resetting-master-credentials",
        "maintenance",
        "migrating",
        "starting",
        "stopping",
        "failing-over",
        "promoting",
        "deleting",
    ),
    terminal=(
        "failed",
        "inaccessible-encryption-credentials",
        "incompatible-network",
        "incompatible-restore",
    ),
)

DB_CLUSTER_ERROR_RULE_SET: ErrorRuleSet = (
    ErrorRuleSet.extend(DEFAULT_ERROR_RULE_SET)
    .with_error_codes(Outcome.fail(HandlerErrorCode.NOT_FOUND), NOT_FOUND_FAULT)
    .with_error_codes(Outcome.fail(HandlerErrorCode.ALREADY_EXISTS), "DBClusterAlreadyExistsFault")
    .with_error_codes(
        Outcome.fail(HandlerErrorCode.SERVICE_LIMIT_EXCEEDED),
        "DBClusterQuotaExceededFault",
        "StorageQuotaExceeded",
    )
    .with_error_codes(
        Outcome.fail(HandlerErrorCode.INVALID_REQUEST),
        "DBClusterParameterGroupNotFound",
        "DBSubnetGroupNotFoundFault",
        "DBSubnetGroupDoesNotCoverEnoughAZs",
        "DomainNotFoundFault",
        "InvalidSubnet",
        "InvalidVPCNetworkStateFault",
        "KMSKeyNotAccessibleFault",
    )
    .with_error_codes(
        Outcome.retry(HandlerErrorCode.RESOURCE_CONFLICT), "InvalidDBClusterStateFault"
    )
    .build()
)

Progress = ProgressEvent[DBClusterModel]


def _describe_cluster(client: Any, identifier: str) -> dict[str, Any] | None:
    """Describe one cluster; None when it does not exist."""
    try:
        response = client.invoke(
            "describe_db_clusters", translator.describe_db_clusters_request(identifier)
        )
    except Exception as e:
        if error_code_of(e) == NOT_FOUND_FAULT:
            logger.debug("DB cluster not found", extra={"db_cluster": identifier})
            return None
        raise
    clusters = response.get("DBClusters", [])
    if not clusters:
        return None
    cluster: dict[str, Any] = clusters[0]
    return cluster


def _fetch_status(client: Any, model: DBClusterModel) -> str | None:
    cluster = _describe_cluster(client, model.db_cluster_identifier or "")
    if cluster is None:
        return None
    status = cluster.get("Status")
    return str(status) if status is not None else None


def should_modify(previous: DBClusterModel, desired: DBClusterModel, is_rollback: bool) -> bool:
    """Whether ModifyDBCluster would change anything."""
    request = translator.modify_db_cluster_request(previous, desired, is_rollback)
    return bool(set(request) - translator.MODIFY_DB_CLUSTER_BASE_FIELDS)


class DBClusterHandler(BaseHandler[DBClusterModel]):
    """Reconciles Aurora DB clusters."""

    resource_type = RESOURCE_TYPE
    model_class = DBClusterModel
    rule_set = DB_CLUSTER_ERROR_RULE_SET
    status_model = STATUS_MODEL
    default_config = DB_CLUSTER_HANDLER_CONFIG
    required_on_create = ("engine",)

    def create(self, request: ResourceHandlerRequest, progress: Progress) -> Progress:
        progress = self.assign_identifier(
            request, progress, "db_cluster_identifier", IDENTIFIER_MAX_LENGTH
        )
        _, desired_tags = self.tag_sets(request, None, progress.resource_model)
        create_step = MutationStep(
            name=STAGE_CLUSTER_CREATED,
            translate=lambda m: translator.create_db_cluster_request(m, desired_tags.to_sdk()),
            invoke=lambda client, req: client.invoke("create_db_cluster", req),
            stabilize=self.stabilizer(PollKind.CREATE, _fetch_status),
        )
        return Pipeline(
            [
                Stage(STAGE_CLUSTER_CREATED, lambda p: self._executor.execute(create_step, p)),
                Stage(STAGE_VERIFIED, self.read, gated=False),
            ]
        ).run(progress)

    def update(
        self,
        request: ResourceHandlerRequest,
        previous: DBClusterModel,
        progress: Progress,
    ) -> Progress:
        desired = progress.resource_model
        previous_tags, desired_tags = self.tag_sets(request, previous, desired)
        modify_step = MutationStep(
            name=STAGE_CLUSTER_MODIFIED,
            translate=lambda m: translator.modify_db_cluster_request(
                previous, m, request.rollback
            ),
            invoke=lambda client, req: client.invoke("modify_db_cluster", req),
            stabilize=self.stabilizer(PollKind.UPDATE, _fetch_status),
        )
        if request.rollback:
            logger.info("Rolling back DB cluster", extra={"db_cluster": desired.primary_identifier})

        return Pipeline(
            [
                Stage(
                    STAGE_TAGS_UPDATED,
                    lambda p: self._update_tags(p, previous_tags, desired_tags),
                ),
                Stage(
                    STAGE_CLUSTER_MODIFIED,
                    lambda p: self._executor.execute(modify_step, p),
                    when=should_modify(previous, desired, request.rollback),
                ),
                Stage(STAGE_VERIFIED, self.read, gated=False),
            ]
        ).run(progress)

    def delete(self, request: ResourceHandlerRequest, progress: Progress) -> Progress:
        delete_step = MutationStep(
            name=STAGE_CLUSTER_DELETED,
            translate=translator.delete_db_cluster_request,
            invoke=lambda client, req: client.invoke("delete_db_cluster", req),
            stabilize=self.stabilizer(PollKind.DELETE, _fetch_status),
        )
        return self._executor.execute(delete_step, progress).then(
            lambda p: ProgressEvent.success(None, p.callback_context)
        )

    def read(self, progress: Progress) -> Progress:
        try:
            cluster = self._require_cluster(progress.resource_model)
        except Exception as e:
            return handle_exception(progress, e, self.rule_set, self.delay_seconds)

        result = ProgressEvent.success(
            translator.translate_db_cluster_from_sdk(cluster), progress.callback_context
        )
        result.message = progress.message
        return result

    def _update_tags(self, progress: Progress, previous: TagSet, desired: TagSet) -> Progress:
        try:
            cluster = self._require_cluster(progress.resource_model)
        except Exception as e:
            return handle_exception(progress, e, self.rule_set, self.delay_seconds)
        return update_tags(
            self._client,
            cluster["DBClusterArn"],
            progress,
            previous,
            desired,
            self.rule_set,
            self.delay_seconds,
        )

    def _require_cluster(self, model: DBClusterModel) -> dict[str, Any]:
        cluster = _describe_cluster(self._client, model.db_cluster_identifier or "")
        if cluster is None:
            raise HandlerError(
                HandlerErrorCode.NOT_FOUND, f"DB cluster {model.primary_identifier} not found"
            )
        return cluster
