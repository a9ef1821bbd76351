"""AWS::RDS::DBClusterParameterGroup handler.

Update pipeline:
1. tags-updated        (gated)   tag diff applied, remove before add
2. parameters-reset    (ungated) reset all parameters, only if parameters changed
3. parameters-applied  (gated)   desired parameters written, only if parameters changed
4. verified            (ungated) read back the final state

The reset stage is not gated: while parameters-applied is incomplete, every
invocation that reaches it resets the group again before parameters are
(re)applied, so a partially applied parameter set is never left behind. Once
parameters-applied has completed the reset is skipped.
"""

from __future__ import annotations

import logging
from typing import Any

from . import translator
from .config import PARAMETER_GROUP_HANDLER_CONFIG
from .diff import has_changes
from .errors import (
    DEFAULT_ERROR_RULE_SET,
    ErrorRuleSet,
    HandlerError,
    HandlerErrorCode,
    Outcome,
    handle_exception,
)
from .execution import MutationStep, Pipeline, Stage
from .handler import BaseHandler, ResourceHandlerRequest
from .models import ClusterParameterGroupModel
from .progress import ProgressEvent
from .tagging import TagSet, update_tags

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "AWS::RDS::DBClusterParameterGroup"
IDENTIFIER_MAX_LENGTH = 255

STAGE_GROUP_CREATED = "group-created"
STAGE_TAGS_UPDATED = "tags-updated"
STAGE_PARAMETERS_RESET = "parameters-reset"
STAGE_PARAMETERS_APPLIED = "parameters-applied"
STAGE_VERIFIED = "verified"

PARAMETER_GROUP_ERROR_RULE_SET: ErrorRuleSet = (
    ErrorRuleSet.extend(DEFAULT_ERROR_RULE_SET)
    .with_error_codes(Outcome.fail(HandlerErrorCode.NOT_FOUND), "DBParameterGroupNotFound")
    .with_error_codes(
        Outcome.fail(HandlerErrorCode.ALREADY_EXISTS), "DBParameterGroupAlreadyExists"
    )
    .with_error_codes(
        Outcome.fail(HandlerErrorCode.SERVICE_LIMIT_EXCEEDED), "DBParameterGroupQuotaExceeded"
    )
    .with_error_codes(
        Outcome.retry(HandlerErrorCode.RESOURCE_CONFLICT), "InvalidDBParameterGroupState"
    )
    .build()
)

Progress = ProgressEvent[ClusterParameterGroupModel]


def _batches(parameters: dict[str, str], size: int) -> list[dict[str, str]]:
    items = sorted(parameters.items())
    return [dict(items[i : i + size]) for i in range(0, len(items), size)]


class ClusterParameterGroupHandler(BaseHandler[ClusterParameterGroupModel]):
    """Reconciles DB cluster parameter groups."""

    resource_type = RESOURCE_TYPE
    model_class = ClusterParameterGroupModel
    rule_set = PARAMETER_GROUP_ERROR_RULE_SET
    default_config = PARAMETER_GROUP_HANDLER_CONFIG
    required_on_create = ("family", "description")

    def create(self, request: ResourceHandlerRequest, progress: Progress) -> Progress:
        progress = self.assign_identifier(
            request, progress, "db_cluster_parameter_group_name", IDENTIFIER_MAX_LENGTH
        )
        model = progress.resource_model

        _, desired_tags = self.tag_sets(request, None, model)
        create_step = MutationStep(
            name=STAGE_GROUP_CREATED,
            translate=lambda m: translator.create_db_cluster_parameter_group_request(
                m, desired_tags.to_sdk()
            ),
            invoke=lambda client, req: client.invoke("create_db_cluster_parameter_group", req),
        )

        return Pipeline(
            [
                Stage(STAGE_GROUP_CREATED, lambda p: self._executor.execute(create_step, p)),
                Stage(
                    STAGE_PARAMETERS_APPLIED,
                    self._apply_parameters,
                    when=bool(model.parameters),
                ),
                Stage(STAGE_VERIFIED, self.read, gated=False),
            ]
        ).run(progress)

    def update(
        self,
        request: ResourceHandlerRequest,
        previous: ClusterParameterGroupModel,
        progress: Progress,
    ) -> Progress:
        desired = progress.resource_model
        previous_tags, desired_tags = self.tag_sets(request, previous, desired)

        # Decided from the request snapshots, identical on every invocation
        should_update_parameters = has_changes(previous.parameters, desired.parameters)

        return Pipeline(
            [
                Stage(
                    STAGE_TAGS_UPDATED,
                    lambda p: self._update_tags(p, previous_tags, desired_tags),
                ),
                Stage(
                    STAGE_PARAMETERS_RESET,
                    self._reset_parameters,
                    gated=False,
                    when=should_update_parameters,
                ),
                Stage(
                    STAGE_PARAMETERS_APPLIED,
                    self._apply_parameters,
                    when=should_update_parameters,
                ),
                Stage(STAGE_VERIFIED, self.read, gated=False),
            ]
        ).run(progress)

    def delete(self, request: ResourceHandlerRequest, progress: Progress) -> Progress:
        delete_step = MutationStep(
            name="group-deleted",
            translate=lambda m: translator.delete_db_cluster_parameter_group_request(
                m.db_cluster_parameter_group_name
            ),
            invoke=lambda client, req: client.invoke("delete_db_cluster_parameter_group", req),
        )
        return self._executor.execute(delete_step, progress).then(
            lambda p: ProgressEvent.success(None, p.callback_context)
        )

    def read(self, progress: Progress) -> Progress:
        model = progress.resource_model
        name = model.db_cluster_parameter_group_name
        try:
            group = self._describe_group(name)
            parameters = self._describe_user_parameters(name)
            tags = self._client.list_tags(group["DBClusterParameterGroupArn"])
        except Exception as e:
            return handle_exception(progress, e, self.rule_set, self.delay_seconds)

        observed = translator.translate_parameter_group_from_sdk(group, parameters, tags)
        result = ProgressEvent.success(observed, progress.callback_context)
        # Keeps a soft-failed tagging message visible to the caller
        result.message = progress.message
        return result

    def _update_tags(self, progress: Progress, previous: TagSet, desired: TagSet) -> Progress:
        try:
            arn = self._describe_group(progress.resource_model.db_cluster_parameter_group_name)[
                "DBClusterParameterGroupArn"
            ]
        except Exception as e:
            return handle_exception(progress, e, self.rule_set, self.delay_seconds)
        return update_tags(
            self._client, arn, progress, previous, desired, self.rule_set, self.delay_seconds
        )

    def _reset_parameters(self, progress: Progress) -> Progress:
        reset_step = MutationStep(
            name=STAGE_PARAMETERS_RESET,
            translate=lambda m: translator.reset_db_cluster_parameter_group_request(
                m.db_cluster_parameter_group_name
            ),
            invoke=lambda client, req: client.invoke("reset_db_cluster_parameter_group", req),
        )
        return self._executor.execute(reset_step, progress)

    def _apply_parameters(self, progress: Progress) -> Progress:
        """Write every desired parameter, batched to the API limit.

        Batches are not individually gated: the whole stage is, and a retry
        re-applies all batches after the (ungated) reset.
        """
        model = progress.resource_model
        parameters = model.parameters or {}
        batches = _batches(parameters, self._config.max_parameters_per_request)

        logger.info(
            "Applying parameters",
            extra={
                "parameter_group": model.db_cluster_parameter_group_name,
                "parameter_count": len(parameters),
                "batch_count": len(batches),
            },
        )

        for index, batch in enumerate(batches):
            step = MutationStep(
                name=f"{STAGE_PARAMETERS_APPLIED}.batch-{index}",
                translate=lambda m, b=batch: translator.modify_db_cluster_parameter_group_request(
                    m.db_cluster_parameter_group_name, b
                ),
                invoke=lambda client, req: client.invoke(
                    "modify_db_cluster_parameter_group", req
                ),
            )
            progress = progress.then(lambda p, s=step: self._executor.execute(s, p))
        return progress

    def _describe_group(self, name: str | None) -> dict[str, Any]:
        response = self._client.invoke(
            "describe_db_cluster_parameter_groups",
            translator.describe_db_cluster_parameter_groups_request(name or ""),
        )
        groups = response.get("DBClusterParameterGroups", [])
        if not groups:
            raise HandlerError(
                HandlerErrorCode.NOT_FOUND, f"DB cluster parameter group {name} not found"
            )
        group: dict[str, Any] = groups[0]
        return group

    def _describe_user_parameters(self, name: str | None) -> list[dict[str, Any]]:
        parameters: list[dict[str, Any]] = []
        marker: str | None = None
        while True:
            response = self._client.invoke(
                "describe_db_cluster_parameters",
                translator.describe_db_cluster_parameters_request(name or "", marker),
            )
            parameters.extend(response.get("Parameters", []))
            marker = response.get("Marker")
            if not marker:
                return parameters
