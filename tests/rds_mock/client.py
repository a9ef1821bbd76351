"""Mock RDS client state and operations.

Provides an in-memory stand-in for a boto3 RDS client. Methods take the
same keyword arguments and return the same response shapes as boto3 for
the operations the handlers use. Every call is recorded for idempotency
assertions.
"""

from __future__ import annotations

import copy
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from .errors import client_error

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"

# Mirrors the ModifyDBClusterParameterGroup limit
MAX_PARAMETERS_PER_MODIFY = 20

# Transient statuses that settle on the next unscripted describe
SETTLING_STATUSES = ("creating", "modifying")


@dataclass
class ParameterGroupRecord:
    """A stored DB cluster parameter group."""

    name: str
    family: str
    description: str
    parameters: dict[str, str] = field(default_factory=dict)

    @property
    def arn(self) -> str:
        return f"arn:aws:rds:{REGION}:{ACCOUNT_ID}:cluster-pg:{self.name}"


@dataclass
class EngineVersionRecord:
    """A stored custom engine version."""

    engine: str
    engine_version: str
    status: str
    properties: dict[str, Any] = field(default_factory=dict)
    arn: str = ""
    # Status reached once a create or modify settles
    target_status: str = "available"

    def __post_init__(self) -> None:
        if not self.arn:
            self.arn = (
                f"arn:aws:rds:{REGION}:{ACCOUNT_ID}:cev:"
                f"{self.engine}/{self.engine_version}/{uuid.uuid4()}"
            )


@dataclass
class ClusterRecord:
    """A stored DB cluster; properties use DescribeDBClusters field names."""

    identifier: str
    status: str
    properties: dict[str, Any] = field(default_factory=dict)
    password: str | None = None
    target_status: str = "available"

    @property
    def arn(self) -> str:
        return f"arn:aws:rds:{REGION}:{ACCOUNT_ID}:cluster:{self.identifier}"


class MockRdsClient:
    """In-memory RDS client.

    Error injection:
        fail("modify_db_cluster_parameter_group", "Throttling") raises a
        ClientError with that code on the next call to the operation.

    Status scripting:
        script_status("custom-oracle-ee", "19.cev1", "creating", "available")
        makes the next describes of that engine version report those
        statuses in order. A None entry removes the version. Without a
        script, a transient status settles on the next describe.
        script_cluster_status() does the same for a DB cluster.
    """

    # Maximum records to prevent unbounded growth in tests
    MAX_RECORDS = 1000

    def __init__(self, parameter_page_size: int = 100) -> None:
        self.parameter_groups: dict[str, ParameterGroupRecord] = {}
        self.engine_versions: dict[tuple[str, str], EngineVersionRecord] = {}
        self.clusters: dict[str, ClusterRecord] = {}
        self.tags: dict[str, dict[str, str]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []

        self._parameter_page_size = parameter_page_size
        self._failures: dict[str, deque[Exception | None]] = {}
        self._status_scripts: dict[tuple[str, str], deque[str | None]] = {}
        self._cluster_scripts: dict[str, deque[str | None]] = {}

    # =========================================================================
    # Test controls
    # =========================================================================

    def fail(
        self, operation: str, code: str, times: int = 1, message: str = "", after: int = 0
    ) -> None:
        """Queue ClientErrors for the next calls to an operation.

        The first `after` calls succeed before the errors are raised.
        """
        queue = self._failures.setdefault(operation, deque())
        queue.extend([None] * after)
        for _ in range(times):
            queue.append(client_error(code, message, operation))

    def fail_with(self, operation: str, exception: Exception) -> None:
        """Queue an arbitrary exception for the next call to an operation."""
        self._failures.setdefault(operation, deque()).append(exception)

    def script_status(self, engine: str, engine_version: str, *statuses: str | None) -> None:
        self._status_scripts[(engine, engine_version)] = deque(statuses)

    def script_cluster_status(self, identifier: str, *statuses: str | None) -> None:
        self._cluster_scripts[identifier] = deque(statuses)

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def calls_to(self, operation: str) -> list[dict[str, Any]]:
        return [request for name, request in self.calls if name == operation]

    def operations(self) -> list[str]:
        """Operation names in call order."""
        return [name for name, _ in self.calls]

    def reset_calls(self) -> None:
        self.calls.clear()

    def add_parameter_group(
        self,
        name: str,
        family: str = "aurora-postgresql15",
        description: str = "test group",
        parameters: dict[str, str] | None = None,
        tags: dict[str, str] | None = None,
    ) -> ParameterGroupRecord:
        """Pre-populate a parameter group without recording a call."""
        record = ParameterGroupRecord(name, family, description, dict(parameters or {}))
        self.parameter_groups[name] = record
        self.tags[record.arn] = dict(tags or {})
        return record

    def add_engine_version(
        self,
        engine: str,
        engine_version: str,
        status: str = "available",
        description: str | None = None,
        tags: dict[str, str] | None = None,
    ) -> EngineVersionRecord:
        """Pre-populate a custom engine version without recording a call."""
        record = EngineVersionRecord(
            engine, engine_version, status, {"DBEngineVersionDescription": description}
        )
        self.engine_versions[(engine, engine_version)] = record
        self.tags[record.arn] = dict(tags or {})
        return record

    def add_db_cluster(
        self,
        identifier: str,
        status: str = "available",
        engine: str = "aurora-postgresql",
        engine_version: str = "15.4",
        tags: dict[str, str] | None = None,
        **properties: Any,
    ) -> ClusterRecord:
        """Pre-populate a DB cluster without recording a call.

        Extra keyword arguments use CreateDBCluster field names.
        """
        record = ClusterRecord(identifier, status, self._default_cluster_properties(identifier))
        self._apply_cluster_fields(
            record, {"Engine": engine, "EngineVersion": engine_version, **properties}
        )
        self.clusters[identifier] = record
        self.tags[record.arn] = dict(tags or {})
        return record

    def _record(self, operation: str, request: dict[str, Any]) -> None:
        self.calls.append((operation, copy.deepcopy(request)))
        queue = self._failures.get(operation)
        if queue:
            error = queue.popleft()
            if error is not None:
                raise error

    # =========================================================================
    # DB cluster parameter groups
    # =========================================================================

    def _get_group(self, name: str, operation: str) -> ParameterGroupRecord:
        record = self.parameter_groups.get(name)
        if record is None:
            raise client_error(
                "DBParameterGroupNotFound",
                f"DBClusterParameterGroup not found: {name}",
                operation,
            )
        return record

    def create_db_cluster_parameter_group(self, **request: Any) -> dict[str, Any]:
        self._record("create_db_cluster_parameter_group", request)
        name = request["DBClusterParameterGroupName"]
        if name in self.parameter_groups:
            raise client_error(
                "DBParameterGroupAlreadyExists",
                f"Parameter group {name} already exists",
                "CreateDBClusterParameterGroup",
            )
        if len(self.parameter_groups) >= self.MAX_RECORDS:
            raise client_error("DBParameterGroupQuotaExceeded")

        record = ParameterGroupRecord(
            name, request["DBParameterGroupFamily"], request["Description"]
        )
        self.parameter_groups[name] = record
        self.tags[record.arn] = {t["Key"]: t["Value"] for t in request.get("Tags", [])}
        return {"DBClusterParameterGroup": self._group_shape(record)}

    def describe_db_cluster_parameter_groups(self, **request: Any) -> dict[str, Any]:
        self._record("describe_db_cluster_parameter_groups", request)
        record = self._get_group(
            request["DBClusterParameterGroupName"], "DescribeDBClusterParameterGroups"
        )
        return {"DBClusterParameterGroups": [self._group_shape(record)]}

    def describe_db_cluster_parameters(self, **request: Any) -> dict[str, Any]:
        self._record("describe_db_cluster_parameters", request)
        record = self._get_group(
            request["DBClusterParameterGroupName"], "DescribeDBClusterParameters"
        )
        items = sorted(record.parameters.items())
        start = int(request.get("Marker") or 0)
        end = start + self._parameter_page_size
        response: dict[str, Any] = {
            "Parameters": [
                {
                    "ParameterName": key,
                    "ParameterValue": value,
                    "Source": "user",
                    "ApplyMethod": "pending-reboot",
                }
                for key, value in items[start:end]
            ]
        }
        if end < len(items):
            response["Marker"] = str(end)
        return response

    def reset_db_cluster_parameter_group(self, **request: Any) -> dict[str, Any]:
        self._record("reset_db_cluster_parameter_group", request)
        record = self._get_group(
            request["DBClusterParameterGroupName"], "ResetDBClusterParameterGroup"
        )
        if request.get("ResetAllParameters"):
            record.parameters.clear()
        return {"DBClusterParameterGroupName": record.name}

    def modify_db_cluster_parameter_group(self, **request: Any) -> dict[str, Any]:
        self._record("modify_db_cluster_parameter_group", request)
        record = self._get_group(
            request["DBClusterParameterGroupName"], "ModifyDBClusterParameterGroup"
        )
        parameters = request["Parameters"]
        if len(parameters) > MAX_PARAMETERS_PER_MODIFY:
            raise client_error(
                "InvalidParameterValue",
                f"At most {MAX_PARAMETERS_PER_MODIFY} parameters per request",
                "ModifyDBClusterParameterGroup",
            )
        for parameter in parameters:
            record.parameters[parameter["ParameterName"]] = parameter["ParameterValue"]
        return {"DBClusterParameterGroupName": record.name}

    def delete_db_cluster_parameter_group(self, **request: Any) -> dict[str, Any]:
        self._record("delete_db_cluster_parameter_group", request)
        record = self._get_group(
            request["DBClusterParameterGroupName"], "DeleteDBClusterParameterGroup"
        )
        del self.parameter_groups[record.name]
        self.tags.pop(record.arn, None)
        return {}

    def _group_shape(self, record: ParameterGroupRecord) -> dict[str, Any]:
        return {
            "DBClusterParameterGroupName": record.name,
            "DBParameterGroupFamily": record.family,
            "Description": record.description,
            "DBClusterParameterGroupArn": record.arn,
        }

    # =========================================================================
    # Custom engine versions
    # =========================================================================

    def _get_version(self, request: dict[str, Any], operation: str) -> EngineVersionRecord:
        key = (request["Engine"], request["EngineVersion"])
        record = self.engine_versions.get(key)
        if record is None:
            raise client_error(
                "CustomDBEngineVersionNotFoundFault",
                f"Custom engine version {key[0]} {key[1]} not found",
                operation,
            )
        return record

    def create_custom_db_engine_version(self, **request: Any) -> dict[str, Any]:
        self._record("create_custom_db_engine_version", request)
        key = (request["Engine"], request["EngineVersion"])
        if key in self.engine_versions:
            raise client_error(
                "CustomDBEngineVersionAlreadyExistsFault",
                f"Custom engine version {key[0]} {key[1]} already exists",
                "CreateCustomDBEngineVersion",
            )

        properties = {
            "DatabaseInstallationFilesS3BucketName": request.get(
                "DatabaseInstallationFilesS3BucketName"
            ),
            "DatabaseInstallationFilesS3Prefix": request.get("DatabaseInstallationFilesS3Prefix"),
            "KMSKeyId": request.get("KMSKeyId"),
            "DBEngineVersionDescription": request.get("Description"),
            "CustomDBEngineVersionManifest": request.get("Manifest"),
            "Image": {"ImageId": request["ImageId"]} if request.get("ImageId") else None,
        }
        record = EngineVersionRecord(key[0], key[1], "creating", properties)
        self.engine_versions[key] = record
        self.tags[record.arn] = {t["Key"]: t["Value"] for t in request.get("Tags", [])}
        return self._version_shape(record)

    def describe_db_engine_versions(self, **request: Any) -> dict[str, Any]:
        self._record("describe_db_engine_versions", request)
        key = (request["Engine"], request["EngineVersion"])
        record = self.engine_versions.get(key)
        if record is None:
            return {"DBEngineVersions": []}

        script = self._status_scripts.get(key)
        if script:
            status = script.popleft()
            if status is None:
                self._remove_version(record)
                return {"DBEngineVersions": []}
            record.status = status
        else:
            shape = self._version_shape(record)
            if record.status == "deleting":
                self._remove_version(record)
            elif record.status in SETTLING_STATUSES:
                record.status = record.target_status
            return {"DBEngineVersions": [shape]}

        return {"DBEngineVersions": [self._version_shape(record)]}

    def modify_custom_db_engine_version(self, **request: Any) -> dict[str, Any]:
        self._record("modify_custom_db_engine_version", request)
        record = self._get_version(request, "ModifyCustomDBEngineVersion")
        if "Description" in request:
            record.properties["DBEngineVersionDescription"] = request["Description"]
        record.target_status = request.get("Status", record.status)
        record.status = "modifying"
        return self._version_shape(record)

    def delete_custom_db_engine_version(self, **request: Any) -> dict[str, Any]:
        self._record("delete_custom_db_engine_version", request)
        record = self._get_version(request, "DeleteCustomDBEngineVersion")
        record.status = "deleting"
        return self._version_shape(record)

    def _remove_version(self, record: EngineVersionRecord) -> None:
        del self.engine_versions[(record.engine, record.engine_version)]
        self.tags.pop(record.arn, None)

    def _version_shape(self, record: EngineVersionRecord) -> dict[str, Any]:
        shape = {
            "Engine": record.engine,
            "EngineVersion": record.engine_version,
            "Status": record.status,
            "DBEngineVersionArn": record.arn,
            "TagList": [
                {"Key": key, "Value": value}
                for key, value in self.tags.get(record.arn, {}).items()
            ],
        }
        shape.update({k: v for k, v in record.properties.items() if v is not None})
        return shape

    # =========================================================================
    # DB clusters
    # =========================================================================

    def _get_cluster(self, identifier: str, operation: str) -> ClusterRecord:
        record = self.clusters.get(identifier)
        if record is None:
            raise client_error(
                "DBClusterNotFoundFault", f"DBCluster {identifier} not found.", operation
            )
        return record

    def create_db_cluster(self, **request: Any) -> dict[str, Any]:
        self._record("create_db_cluster", request)
        identifier = request["DBClusterIdentifier"]
        if identifier in self.clusters:
            raise client_error(
                "DBClusterAlreadyExistsFault",
                f"DB Cluster already exists: {identifier}",
                "CreateDBCluster",
            )
        if len(self.clusters) >= self.MAX_RECORDS:
            raise client_error("DBClusterQuotaExceededFault")

        record = ClusterRecord(identifier, "creating", self._default_cluster_properties(identifier))
        self._apply_cluster_fields(record, request)
        self.clusters[identifier] = record
        self.tags[record.arn] = {t["Key"]: t["Value"] for t in request.get("Tags", [])}
        return {"DBCluster": self._cluster_shape(record)}

    def describe_db_clusters(self, **request: Any) -> dict[str, Any]:
        self._record("describe_db_clusters", request)
        identifier = request["DBClusterIdentifier"]
        record = self._get_cluster(identifier, "DescribeDBClusters")

        script = self._cluster_scripts.get(identifier)
        if script:
            status = script.popleft()
            if status is None:
                self._remove_cluster(record)
                raise client_error(
                    "DBClusterNotFoundFault",
                    f"DBCluster {identifier} not found.",
                    "DescribeDBClusters",
                )
            record.status = status
            return {"DBClusters": [self._cluster_shape(record)]}

        shape = self._cluster_shape(record)
        if record.status == "deleting":
            self._remove_cluster(record)
        elif record.status in SETTLING_STATUSES:
            record.status = record.target_status
        return {"DBClusters": [shape]}

    def modify_db_cluster(self, **request: Any) -> dict[str, Any]:
        self._record("modify_db_cluster", request)
        record = self._get_cluster(request["DBClusterIdentifier"], "ModifyDBCluster")
        if record.status not in ("available", "stopped"):
            raise client_error(
                "InvalidDBClusterStateFault",
                f"DB cluster {record.identifier} is {record.status}",
                "ModifyDBCluster",
            )
        self._apply_cluster_fields(record, request)
        record.target_status = record.status
        record.status = "modifying"
        return {"DBCluster": self._cluster_shape(record)}

    def delete_db_cluster(self, **request: Any) -> dict[str, Any]:
        self._record("delete_db_cluster", request)
        record = self._get_cluster(request["DBClusterIdentifier"], "DeleteDBCluster")
        if record.properties.get("DeletionProtection"):
            raise client_error(
                "InvalidParameterCombination",
                "Cannot delete protected Cluster, please disable deletion protection",
                "DeleteDBCluster",
            )
        record.status = "deleting"
        return {"DBCluster": self._cluster_shape(record)}

    def _remove_cluster(self, record: ClusterRecord) -> None:
        del self.clusters[record.identifier]
        self.tags.pop(record.arn, None)

    @staticmethod
    def _default_cluster_properties(identifier: str) -> dict[str, Any]:
        return {
            "BackupRetentionPeriod": 1,
            "DeletionProtection": False,
            "IAMDatabaseAuthenticationEnabled": False,
            "EngineMode": "provisioned",
            "Endpoint": f"{identifier}.cluster-abc123.{REGION}.rds.amazonaws.com",
            "DbClusterResourceId": f"cluster-{uuid.uuid4().hex[:26].upper()}",
        }

    @staticmethod
    def _apply_cluster_fields(record: ClusterRecord, request: dict[str, Any]) -> None:
        """Copy CreateDBCluster/ModifyDBCluster fields into the describe shape."""
        renamed = {
            "DBClusterParameterGroupName": "DBClusterParameterGroup",
            "DBSubnetGroupName": "DBSubnetGroup",
            "EnableIAMDatabaseAuthentication": "IAMDatabaseAuthenticationEnabled",
            "ScalingConfiguration": "ScalingConfigurationInfo",
        }
        copied = (
            "Engine",
            "EngineVersion",
            "EngineMode",
            "DatabaseName",
            "Port",
            "MasterUsername",
            "BackupRetentionPeriod",
            "PreferredBackupWindow",
            "PreferredMaintenanceWindow",
            "DeletionProtection",
            "StorageEncrypted",
            "KmsKeyId",
        )
        properties = record.properties
        for key in copied:
            if key in request:
                properties[key] = request[key]
        for key, describe_key in renamed.items():
            if key in request:
                properties[describe_key] = request[key]
        if "VpcSecurityGroupIds" in request:
            properties["VpcSecurityGroups"] = [
                {"VpcSecurityGroupId": group_id, "Status": "active"}
                for group_id in request["VpcSecurityGroupIds"]
            ]
        if "Domain" in request or "DomainIAMRoleName" in request:
            memberships = properties.get("DomainMemberships") or [{"Status": "joined"}]
            membership = dict(memberships[0])
            if "Domain" in request:
                membership["Domain"] = request["Domain"]
            if "DomainIAMRoleName" in request:
                membership["IAMRoleName"] = request["DomainIAMRoleName"]
            properties["DomainMemberships"] = [membership]
        if "MasterUserPassword" in request:
            record.password = request["MasterUserPassword"]

    def _cluster_shape(self, record: ClusterRecord) -> dict[str, Any]:
        shape = {
            "DBClusterIdentifier": record.identifier,
            "DBClusterArn": record.arn,
            "Status": record.status,
            "TagList": [
                {"Key": key, "Value": value}
                for key, value in self.tags.get(record.arn, {}).items()
            ],
        }
        shape.update({k: v for k, v in copy.deepcopy(record.properties).items() if v is not None})
        return shape

    # =========================================================================
    # Tagging
    # =========================================================================

    def _tags_for(self, arn: str, operation: str) -> dict[str, str]:
        if arn not in self.tags:
            raise client_error("ResourceNotFoundFault", f"Resource {arn} not found", operation)
        return self.tags[arn]

    def add_tags_to_resource(self, **request: Any) -> dict[str, Any]:
        self._record("add_tags_to_resource", request)
        tags = self._tags_for(request["ResourceName"], "AddTagsToResource")
        for tag in request["Tags"]:
            tags[tag["Key"]] = tag["Value"]
        return {}

    def remove_tags_from_resource(self, **request: Any) -> dict[str, Any]:
        self._record("remove_tags_from_resource", request)
        tags = self._tags_for(request["ResourceName"], "RemoveTagsFromResource")
        for key in request["TagKeys"]:
            tags.pop(key, None)
        return {}

    def list_tags_for_resource(self, **request: Any) -> dict[str, Any]:
        self._record("list_tags_for_resource", request)
        tags = self._tags_for(request["ResourceName"], "ListTagsForResource")
        return {"TagList": [{"Key": key, "Value": value} for key, value in tags.items()]}
