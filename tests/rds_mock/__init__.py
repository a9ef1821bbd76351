"""RDS API Mock for handler testing.

This module provides an in-memory implementation of the RDS API surface the
handlers use, so lifecycle operations can be driven end to end without AWS
connectivity.

Key Features:
- In-memory state for DB clusters, cluster parameter groups and custom
  engine versions
- Call recording for idempotency assertions (call counts per operation)
- Scripted status sequences for stabilization scenarios
- Error injection with real botocore ClientErrors

Usage:
    from rds_mock import MockRdsClient

    rds = MockRdsClient()
    handler = ClusterParameterGroupHandler(ServiceClient(rds))
    result = handler.handle(Action.CREATE, request)

    assert rds.call_count("create_db_cluster_parameter_group") == 1
"""

from .client import ClusterRecord, EngineVersionRecord, MockRdsClient, ParameterGroupRecord
from .clock import FakeClock
from .errors import client_error

__all__ = [
    "ClusterRecord",
    "EngineVersionRecord",
    "FakeClock",
    "MockRdsClient",
    "ParameterGroupRecord",
    "client_error",
]
