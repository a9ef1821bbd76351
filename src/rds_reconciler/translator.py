"""Translation between resource models and RDS API requests/responses."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .models import (
    ClusterParameterGroupModel,
    CustomEngineVersionModel,
    DBClusterModel,
    ScalingConfiguration,
    Tag,
)
from .tagging import translate_tags_from_sdk

# Static parameters only take effect after a reboot; RDS accepts this
# method for dynamic parameters as well.
PARAMETER_APPLY_METHOD = "pending-reboot"


def _without_none(request: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in request.items() if value is not None}


def _tags_from_sdk(tags: Sequence[Mapping[str, Any]] | None) -> list[Tag] | None:
    tag_map = translate_tags_from_sdk(tags)
    if not tag_map:
        return None
    return [Tag(key=key, value=value) for key, value in tag_map.items()]


# =============================================================================
# DB Cluster Parameter Group
# =============================================================================


def create_db_cluster_parameter_group_request(
    model: ClusterParameterGroupModel, tags: list[dict[str, str]]
) -> dict[str, Any]:
    return _without_none(
        {
            "DBClusterParameterGroupName": model.db_cluster_parameter_group_name,
            "DBParameterGroupFamily": model.family,
            "Description": model.description,
            "Tags": tags or None,
        }
    )


def describe_db_cluster_parameter_groups_request(name: str) -> dict[str, Any]:
    return {"DBClusterParameterGroupName": name}


def describe_db_cluster_parameters_request(name: str, marker: str | None = None) -> dict[str, Any]:
    return _without_none(
        {"DBClusterParameterGroupName": name, "Source": "user", "Marker": marker}
    )


def reset_db_cluster_parameter_group_request(name: str) -> dict[str, Any]:
    return {"DBClusterParameterGroupName": name, "ResetAllParameters": True}


def modify_db_cluster_parameter_group_request(
    name: str, parameters: Mapping[str, str]
) -> dict[str, Any]:
    return {
        "DBClusterParameterGroupName": name,
        "Parameters": [
            {
                "ParameterName": key,
                "ParameterValue": value,
                "ApplyMethod": PARAMETER_APPLY_METHOD,
            }
            for key, value in parameters.items()
        ],
    }


def delete_db_cluster_parameter_group_request(name: str) -> dict[str, Any]:
    return {"DBClusterParameterGroupName": name}


def translate_parameter_group_from_sdk(
    group: Mapping[str, Any],
    parameters: Sequence[Mapping[str, Any]],
    tags: Sequence[Mapping[str, Any]] | None,
) -> ClusterParameterGroupModel:
    """Build a model from DescribeDBClusterParameterGroups/Parameters output.

    Only parameters with a value are reported; the caller gets back exactly
    the user-sourced overrides.
    """
    user_parameters = {
        str(p["ParameterName"]): str(p["ParameterValue"])
        for p in parameters
        if p.get("ParameterValue") is not None
    }
    return ClusterParameterGroupModel(
        db_cluster_parameter_group_name=group.get("DBClusterParameterGroupName"),
        description=group.get("Description"),
        family=group.get("DBParameterGroupFamily"),
        parameters=user_parameters or None,
        tags=_tags_from_sdk(tags),
    )


# =============================================================================
# Custom DB Engine Version
# =============================================================================


def create_custom_db_engine_version_request(
    model: CustomEngineVersionModel, tags: list[dict[str, str]]
) -> dict[str, Any]:
    return _without_none(
        {
            "Engine": model.engine,
            "EngineVersion": model.engine_version,
            "DatabaseInstallationFilesS3BucketName": (
                model.database_installation_files_s3_bucket_name
            ),
            "DatabaseInstallationFilesS3Prefix": model.database_installation_files_s3_prefix,
            "ImageId": model.image_id,
            "KMSKeyId": model.kms_key_id,
            "Description": model.description,
            "Manifest": model.manifest,
            "UseAwsProvidedLatestImage": model.use_aws_provided_latest_image,
            "Tags": tags or None,
        }
    )


def modify_custom_db_engine_version_request(
    previous: CustomEngineVersionModel | None, desired: CustomEngineVersionModel
) -> dict[str, Any]:
    """Only fields that actually changed are sent."""
    request: dict[str, Any] = {"Engine": desired.engine, "EngineVersion": desired.engine_version}
    if previous is None or previous.description != desired.description:
        request["Description"] = desired.description
    if desired.status is not None and (previous is None or previous.status != desired.status):
        request["Status"] = desired.status
    return _without_none(request)


def describe_db_engine_versions_request(model: CustomEngineVersionModel) -> dict[str, Any]:
    return {
        "Engine": model.engine,
        "EngineVersion": model.engine_version,
        "IncludeAll": True,
    }


def delete_custom_db_engine_version_request(model: CustomEngineVersionModel) -> dict[str, Any]:
    return {"Engine": model.engine, "EngineVersion": model.engine_version}


def translate_engine_version_from_sdk(version: Mapping[str, Any]) -> CustomEngineVersionModel:
    image = version.get("Image") or {}
    return CustomEngineVersionModel(
        engine=version.get("Engine"),
        engine_version=version.get("EngineVersion"),
        database_installation_files_s3_bucket_name=version.get(
            "DatabaseInstallationFilesS3BucketName"
        ),
        database_installation_files_s3_prefix=version.get("DatabaseInstallationFilesS3Prefix"),
        description=version.get("DBEngineVersionDescription"),
        kms_key_id=version.get("KMSKeyId"),
        manifest=version.get("CustomDBEngineVersionManifest"),
        image_id=image.get("ImageId"),
        status=version.get("Status"),
        db_engine_version_arn=version.get("DBEngineVersionArn"),
        tags=_tags_from_sdk(version.get("TagList")),
    )


# =============================================================================
# DB Cluster
# =============================================================================


def translate_scaling_configuration_to_sdk(
    config: ScalingConfiguration | None,
) -> dict[str, Any] | None:
    if config is None:
        return None
    return _without_none(
        {
            "AutoPause": config.auto_pause,
            "MinCapacity": config.min_capacity,
            "MaxCapacity": config.max_capacity,
            "SecondsBeforeTimeout": config.seconds_before_timeout,
            "SecondsUntilAutoPause": config.seconds_until_auto_pause,
            "TimeoutAction": config.timeout_action,
        }
    )


def translate_scaling_configuration_from_sdk(
    info: Mapping[str, Any] | None,
) -> ScalingConfiguration | None:
    """Build the model from a ScalingConfigurationInfo; None when absent."""
    if info is None:
        return None
    return ScalingConfiguration(
        auto_pause=info.get("AutoPause"),
        min_capacity=info.get("MinCapacity"),
        max_capacity=info.get("MaxCapacity"),
        seconds_before_timeout=info.get("SecondsBeforeTimeout"),
        seconds_until_auto_pause=info.get("SecondsUntilAutoPause"),
        timeout_action=info.get("TimeoutAction"),
    )


def create_db_cluster_request(model: DBClusterModel, tags: list[dict[str, str]]) -> dict[str, Any]:
    return _without_none(
        {
            "DBClusterIdentifier": model.db_cluster_identifier,
            "Engine": model.engine,
            "EngineVersion": model.engine_version,
            "EngineMode": model.engine_mode,
            "DatabaseName": model.database_name,
            "Port": model.port,
            "MasterUsername": model.master_username,
            "MasterUserPassword": model.master_user_password,
            "DBClusterParameterGroupName": model.db_cluster_parameter_group_name,
            "DBSubnetGroupName": model.db_subnet_group_name,
            "VpcSecurityGroupIds": model.vpc_security_group_ids,
            "BackupRetentionPeriod": model.backup_retention_period,
            "PreferredBackupWindow": model.preferred_backup_window,
            "PreferredMaintenanceWindow": model.preferred_maintenance_window,
            "EnableIAMDatabaseAuthentication": model.enable_iam_database_authentication,
            "DeletionProtection": model.deletion_protection,
            "StorageEncrypted": model.storage_encrypted,
            "KmsKeyId": model.kms_key_id,
            "Domain": model.domain,
            "DomainIAMRoleName": model.domain_iam_role_name,
            "ScalingConfiguration": translate_scaling_configuration_to_sdk(
                model.scaling_configuration
            ),
            "Tags": tags or None,
        }
    )


# Model attribute -> ModifyDBCluster field, sent only when the value changed
_MODIFIABLE_CLUSTER_FIELDS = (
    ("backup_retention_period", "BackupRetentionPeriod"),
    ("db_cluster_parameter_group_name", "DBClusterParameterGroupName"),
    ("deletion_protection", "DeletionProtection"),
    ("domain", "Domain"),
    ("domain_iam_role_name", "DomainIAMRoleName"),
    ("enable_iam_database_authentication", "EnableIAMDatabaseAuthentication"),
    ("master_user_password", "MasterUserPassword"),
    ("port", "Port"),
    ("preferred_backup_window", "PreferredBackupWindow"),
    ("preferred_maintenance_window", "PreferredMaintenanceWindow"),
    ("vpc_security_group_ids", "VpcSecurityGroupIds"),
)

# ModifyDBCluster fields present in every request
MODIFY_DB_CLUSTER_BASE_FIELDS = frozenset(("DBClusterIdentifier", "ApplyImmediately"))


def modify_db_cluster_request(
    previous: DBClusterModel, desired: DBClusterModel, is_rollback: bool
) -> dict[str, Any]:
    """Build ModifyDBCluster for the fields that differ between the two models.

    An engine version change also sends the instance parameter group used for
    the upgrade. A rollback never changes the engine version.
    """
    request: dict[str, Any] = {
        "DBClusterIdentifier": desired.db_cluster_identifier,
        "ApplyImmediately": True,
    }
    for attribute, key in _MODIFIABLE_CLUSTER_FIELDS:
        value = getattr(desired, attribute)
        if value is not None and value != getattr(previous, attribute):
            request[key] = value

    if previous.scaling_configuration != desired.scaling_configuration:
        request["ScalingConfiguration"] = translate_scaling_configuration_to_sdk(
            desired.scaling_configuration
        )

    upgrading = (
        desired.engine_version is not None
        and previous.engine_version != desired.engine_version
    )
    if upgrading and not is_rollback:
        request["EngineVersion"] = desired.engine_version
        request["AllowMajorVersionUpgrade"] = True
        request["DBInstanceParameterGroupName"] = desired.db_instance_parameter_group_name
    return _without_none(request)


def describe_db_clusters_request(identifier: str) -> dict[str, Any]:
    return {"DBClusterIdentifier": identifier}


def delete_db_cluster_request(model: DBClusterModel) -> dict[str, Any]:
    return {"DBClusterIdentifier": model.db_cluster_identifier, "SkipFinalSnapshot": True}


def translate_db_cluster_from_sdk(cluster: Mapping[str, Any]) -> DBClusterModel:
    """Build a model from one DescribeDBClusters entry.

    Domain settings come from the first domain membership, if any.
    """
    memberships = cluster.get("DomainMemberships") or []
    membership = memberships[0] if memberships else {}
    security_groups = cluster.get("VpcSecurityGroups") or []
    return DBClusterModel(
        db_cluster_identifier=cluster.get("DBClusterIdentifier"),
        engine=cluster.get("Engine"),
        engine_version=cluster.get("EngineVersion"),
        engine_mode=cluster.get("EngineMode"),
        database_name=cluster.get("DatabaseName"),
        port=cluster.get("Port"),
        master_username=cluster.get("MasterUsername"),
        db_cluster_parameter_group_name=cluster.get("DBClusterParameterGroup"),
        db_subnet_group_name=cluster.get("DBSubnetGroup"),
        vpc_security_group_ids=[g["VpcSecurityGroupId"] for g in security_groups] or None,
        backup_retention_period=cluster.get("BackupRetentionPeriod"),
        preferred_backup_window=cluster.get("PreferredBackupWindow"),
        preferred_maintenance_window=cluster.get("PreferredMaintenanceWindow"),
        enable_iam_database_authentication=cluster.get("IAMDatabaseAuthenticationEnabled"),
        deletion_protection=cluster.get("DeletionProtection"),
        storage_encrypted=cluster.get("StorageEncrypted"),
        kms_key_id=cluster.get("KmsKeyId"),
        domain=membership.get("Domain"),
        domain_iam_role_name=membership.get("IAMRoleName"),
        scaling_configuration=translate_scaling_configuration_from_sdk(
            cluster.get("ScalingConfigurationInfo")
        ),
        db_cluster_arn=cluster.get("DBClusterArn"),
        db_cluster_resource_id=cluster.get("DbClusterResourceId"),
        endpoint_address=cluster.get("Endpoint"),
        tags=_tags_from_sdk(cluster.get("TagList")),
    )
