"""AWS::RDS::CustomDBEngineVersion handler.

Custom engine versions are validated asynchronously by RDS, which can take
hours. Create, modify and delete therefore each stabilize across
invocations: the call is made once, then every invocation polls the version
status once and hands a re-invoke delay back to the caller.
"""

from __future__ import annotations

import logging
from typing import Any

from . import translator
from .config import ENGINE_VERSION_HANDLER_CONFIG
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
from .models import CustomEngineVersionModel
from .progress import ProgressEvent
from .stabilization import PollKind, StatusModel
from .tagging import TagSet, update_tags

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "AWS::RDS::CustomDBEngineVersion"

STAGE_VERSION_CREATED = "version-created"
STAGE_TAGS_UPDATED = "tags-updated"
STAGE_VERSION_MODIFIED = "version-modified"
STAGE_VERSION_DELETED = "version-deleted"
STAGE_VERIFIED = "verified"

NOT_FOUND_FAULT = "CustomDBEngineVersionNotFoundFault"

STATUS_MODEL = StatusModel.of(
    stable=("available", "inactive", "inactive-except-restore"),
    transient=("creating", "pending-validation", "validating", "modifying", "deleting"),
    terminal=("failed", "incompatible-image-configuration"),
)

ENGINE_VERSION_ERROR_RULE_SET: ErrorRuleSet = (
    ErrorRuleSet.extend(DEFAULT_ERROR_RULE_SET)
    .with_error_codes(
        Outcome.fail(HandlerErrorCode.ALREADY_EXISTS), "CustomDBEngineVersionAlreadyExistsFault"
    )
    .with_error_codes(Outcome.fail(HandlerErrorCode.NOT_FOUND), NOT_FOUND_FAULT)
    .with_error_codes(
        Outcome.fail(HandlerErrorCode.INVALID_REQUEST),
        "KMSKeyNotAccessibleFault",
        "InvalidS3BucketFault",
    )
    .with_error_codes(
        Outcome.fail(HandlerErrorCode.SERVICE_LIMIT_EXCEEDED),
        "CustomDBEngineVersionQuotaExceededFault",
    )
    .with_error_codes(
        Outcome.retry(HandlerErrorCode.RESOURCE_CONFLICT),
        "InvalidCustomDBEngineVersionStateFault",
    )
    .build()
)

Progress = ProgressEvent[CustomEngineVersionModel]


def _describe_version(client: Any, model: CustomEngineVersionModel) -> dict[str, Any] | None:
    """Describe one engine version; None when it does not exist."""
    try:
        response = client.invoke(
            "describe_db_engine_versions", translator.describe_db_engine_versions_request(model)
        )
    except Exception as e:
        if error_code_of(e) == NOT_FOUND_FAULT:
            logger.debug(
                "Engine version not found",
                extra={"engine": model.engine, "engine_version": model.engine_version},
            )
            return None
        raise
    versions = response.get("DBEngineVersions", [])
    if not versions:
        return None
    version: dict[str, Any] = versions[0]
    return version


def _fetch_status(client: Any, model: CustomEngineVersionModel) -> str | None:
    version = _describe_version(client, model)
    if version is None:
        return None
    status = version.get("Status")
    return str(status) if status is not None else None


def should_modify(previous: CustomEngineVersionModel, desired: CustomEngineVersionModel) -> bool:
    """Whether ModifyCustomDBEngineVersion is needed (description or status changed)."""
    if previous.description != desired.description:
        return True
    return desired.status is not None and previous.status != desired.status


class CustomEngineVersionHandler(BaseHandler[CustomEngineVersionModel]):
    """Reconciles RDS Custom engine versions."""

    resource_type = RESOURCE_TYPE
    model_class = CustomEngineVersionModel
    rule_set = ENGINE_VERSION_ERROR_RULE_SET
    status_model = STATUS_MODEL
    default_config = ENGINE_VERSION_HANDLER_CONFIG
    required_on_create = ("engine", "engine_version")

    def create(self, request: ResourceHandlerRequest, progress: Progress) -> Progress:
        _, desired_tags = self.tag_sets(request, None, progress.resource_model)
        create_step = MutationStep(
            name=STAGE_VERSION_CREATED,
            translate=lambda m: translator.create_custom_db_engine_version_request(
                m, desired_tags.to_sdk()
            ),
            invoke=lambda client, req: client.invoke("create_custom_db_engine_version", req),
            stabilize=self.stabilizer(PollKind.CREATE, _fetch_status),
        )
        return Pipeline(
            [
                Stage(STAGE_VERSION_CREATED, lambda p: self._executor.execute(create_step, p)),
                Stage(STAGE_VERIFIED, self.read, gated=False),
            ]
        ).run(progress)

    def update(
        self,
        request: ResourceHandlerRequest,
        previous: CustomEngineVersionModel,
        progress: Progress,
    ) -> Progress:
        desired = progress.resource_model
        previous_tags, desired_tags = self.tag_sets(request, previous, desired)
        modify_step = MutationStep(
            name=STAGE_VERSION_MODIFIED,
            translate=lambda m: translator.modify_custom_db_engine_version_request(previous, m),
            invoke=lambda client, req: client.invoke("modify_custom_db_engine_version", req),
            stabilize=self.stabilizer(PollKind.UPDATE, _fetch_status),
        )
        return Pipeline(
            [
                Stage(
                    STAGE_TAGS_UPDATED,
                    lambda p: self._update_tags(p, previous_tags, desired_tags),
                ),
                Stage(
                    STAGE_VERSION_MODIFIED,
                    lambda p: self._executor.execute(modify_step, p),
                    when=should_modify(previous, desired),
                ),
                Stage(STAGE_VERIFIED, self.read, gated=False),
            ]
        ).run(progress)

    def delete(self, request: ResourceHandlerRequest, progress: Progress) -> Progress:
        delete_step = MutationStep(
            name=STAGE_VERSION_DELETED,
            translate=translator.delete_custom_db_engine_version_request,
            invoke=lambda client, req: client.invoke("delete_custom_db_engine_version", req),
            stabilize=self.stabilizer(PollKind.DELETE, _fetch_status),
        )
        return self._executor.execute(delete_step, progress).then(
            lambda p: ProgressEvent.success(None, p.callback_context)
        )

    def read(self, progress: Progress) -> Progress:
        model = progress.resource_model
        try:
            version = self._require_version(model)
        except Exception as e:
            return handle_exception(progress, e, self.rule_set, self.delay_seconds)

        result = ProgressEvent.success(
            translator.translate_engine_version_from_sdk(version), progress.callback_context
        )
        result.message = progress.message
        return result

    def _update_tags(self, progress: Progress, previous: TagSet, desired: TagSet) -> Progress:
        model = progress.resource_model
        try:
            version = self._require_version(model)
        except Exception as e:
            return handle_exception(progress, e, self.rule_set, self.delay_seconds)
        return update_tags(
            self._client,
            version["DBEngineVersionArn"],
            progress,
            previous,
            desired,
            self.rule_set,
            self.delay_seconds,
        )

    def _require_version(self, model: CustomEngineVersionModel) -> dict[str, Any]:
        version = _describe_version(self._client, model)
        if version is None:
            raise HandlerError(
                HandlerErrorCode.NOT_FOUND,
                f"Custom engine version {model.primary_identifier} not found",
            )
        return version
