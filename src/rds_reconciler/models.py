"""Pydantic models for the managed RDS resources.

These models provide:
1. Type-safe parsing of caller-supplied resource state
2. Property names matching the resource schema (PascalCase aliases)
3. A uniform notion of the resource's primary identifier
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# Base Models
# =============================================================================


class Tag(BaseModel):
    """A single resource tag."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    key: str = Field(alias="Key", min_length=1, max_length=128)
    value: str = Field("", alias="Value", max_length=256)


class ResourceModel(BaseModel):
    """Base resource model with the fields shared by every resource type."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Fields assigned on creation and immutable afterwards
    identity_fields: ClassVar[tuple[str, ...]] = ()
    # Accepted on input, never rendered back to the caller
    write_only_fields: ClassVar[tuple[str, ...]] = ()

    tags: list[Tag] | None = Field(None, alias="Tags")

    @property
    def primary_identifier(self) -> str | None:
        """Identity fields joined with '/', or None until all are assigned."""
        values = [getattr(self, name) for name in self.identity_fields]
        if not values or any(v is None for v in values):
            return None
        return "/".join(str(v) for v in values)

    def tag_map(self) -> dict[str, str]:
        if not self.tags:
            return {}
        return {tag.key: tag.value for tag in self.tags}

    def to_state(self) -> dict[str, Any]:
        """Render as caller-facing resource state."""
        # SECURITY: write-only fields (credentials) never leave the process
        return self.model_dump(
            by_alias=True, exclude_none=True, exclude=set(self.write_only_fields)
        )


# =============================================================================
# DB Cluster Parameter Group
# =============================================================================


class ClusterParameterGroupModel(ResourceModel):
    """AWS::RDS::DBClusterParameterGroup."""

    identity_fields: ClassVar[tuple[str, ...]] = ("db_cluster_parameter_group_name",)

    db_cluster_parameter_group_name: str | None = Field(
        None, alias="DBClusterParameterGroupName", max_length=255
    )
    description: str | None = Field(None, alias="Description")
    family: str | None = Field(None, alias="Family")
    parameters: dict[str, str] | None = Field(None, alias="Parameters")

    @field_validator("parameters", mode="before")
    @classmethod
    def stringify_parameters(cls, v: Any) -> Any:
        # RDS parameter values are strings on the wire
        if isinstance(v, dict):
            return {str(key): str(value) for key, value in v.items() if value is not None}
        return v


# =============================================================================
# Custom DB Engine Version
# =============================================================================


class CustomEngineVersionModel(ResourceModel):
    """AWS::RDS::CustomDBEngineVersion."""

    identity_fields: ClassVar[tuple[str, ...]] = ("engine", "engine_version")

    engine: str | None = Field(None, alias="Engine")
    engine_version: str | None = Field(None, alias="EngineVersion")
    database_installation_files_s3_bucket_name: str | None = Field(
        None, alias="DatabaseInstallationFilesS3BucketName"
    )
    database_installation_files_s3_prefix: str | None = Field(
        None, alias="DatabaseInstallationFilesS3Prefix"
    )
    description: str | None = Field(None, alias="Description")
    kms_key_id: str | None = Field(None, alias="KMSKeyId")
    manifest: str | None = Field(None, alias="Manifest")
    image_id: str | None = Field(None, alias="ImageId")
    use_aws_provided_latest_image: bool | None = Field(None, alias="UseAwsProvidedLatestImage")

    # Server-defaulted
    status: str | None = Field(None, alias="Status")
    db_engine_version_arn: str | None = Field(None, alias="DBEngineVersionArn")


# =============================================================================
# DB Cluster
# =============================================================================


class ScalingConfiguration(BaseModel):
    """Capacity settings of an Aurora Serverless v1 cluster."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    auto_pause: bool | None = Field(None, alias="AutoPause")
    min_capacity: int | None = Field(None, alias="MinCapacity")
    max_capacity: int | None = Field(None, alias="MaxCapacity")
    seconds_before_timeout: int | None = Field(None, alias="SecondsBeforeTimeout")
    seconds_until_auto_pause: int | None = Field(None, alias="SecondsUntilAutoPause")
    timeout_action: str | None = Field(None, alias="TimeoutAction")


class DBClusterModel(ResourceModel):
    """AWS::RDS::DBCluster."""

    identity_fields: ClassVar[tuple[str, ...]] = ("db_cluster_identifier",)
    write_only_fields: ClassVar[tuple[str, ...]] = (
        "master_user_password",
        "db_instance_parameter_group_name",
    )

    db_cluster_identifier: str | None = Field(None, alias="DBClusterIdentifier", max_length=63)
    engine: str | None = Field(None, alias="Engine")
    engine_version: str | None = Field(None, alias="EngineVersion")
    engine_mode: str | None = Field(None, alias="EngineMode")
    database_name: str | None = Field(None, alias="DatabaseName")
    port: int | None = Field(None, alias="Port")
    master_username: str | None = Field(None, alias="MasterUsername")
    master_user_password: str | None = Field(None, alias="MasterUserPassword")
    db_cluster_parameter_group_name: str | None = Field(
        None, alias="DBClusterParameterGroupName"
    )
    db_instance_parameter_group_name: str | None = Field(
        None, alias="DBInstanceParameterGroupName"
    )
    db_subnet_group_name: str | None = Field(None, alias="DBSubnetGroupName")
    vpc_security_group_ids: list[str] | None = Field(None, alias="VpcSecurityGroupIds")
    backup_retention_period: int | None = Field(None, alias="BackupRetentionPeriod", ge=1)
    preferred_backup_window: str | None = Field(None, alias="PreferredBackupWindow")
    preferred_maintenance_window: str | None = Field(None, alias="PreferredMaintenanceWindow")
    enable_iam_database_authentication: bool | None = Field(
        None, alias="EnableIAMDatabaseAuthentication"
    )
    deletion_protection: bool | None = Field(None, alias="DeletionProtection")
    storage_encrypted: bool | None = Field(None, alias="StorageEncrypted")
    kms_key_id: str | None = Field(None, alias="KmsKeyId")
    domain: str | None = Field(None, alias="Domain")
    domain_iam_role_name: str | None = Field(None, alias="DomainIAMRoleName")
    scaling_configuration: ScalingConfiguration | None = Field(
        None, alias="ScalingConfiguration"
    )

    # Server-defaulted
    db_cluster_arn: str | None = Field(None, alias="DBClusterArn")
    db_cluster_resource_id: str | None = Field(None, alias="DBClusterResourceId")
    endpoint_address: str | None = Field(None, alias="EndpointAddress")
