"""Tests for the rdsr command line."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner
from rds_mock import MockRdsClient

from rds_reconciler import cli as cli_module
from rds_reconciler.cli import cli
from rds_reconciler.client import ServiceClient

PARAMETER_GROUP = "AWS::RDS::DBClusterParameterGroup"
ENGINE_VERSION = "AWS::RDS::CustomDBEngineVersion"
DB_CLUSTER = "AWS::RDS::DBCluster"

CEV_REQUEST = """\
desiredResourceState:
  Engine: custom-oracle-ee
  EngineVersion: 19.cev1
  DatabaseInstallationFilesS3BucketName: media-bucket
clientRequestToken: token-1
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def patched(monkeypatch: pytest.MonkeyPatch, rds: MockRdsClient) -> list[float]:
    """Route the CLI to the mock client; returns the recorded sleeps."""
    sleeps: list[float] = []
    monkeypatch.setattr(cli_module, "create_rds_client", lambda region: ServiceClient(rds))
    monkeypatch.setattr(cli_module, "setup_logging", lambda level: None)
    monkeypatch.setattr(cli_module.time, "sleep", sleeps.append)
    return sleeps


def write_request(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "request.yaml"
    path.write_text(content)
    return path


def last_json(output: str) -> dict:
    """Parse the JSON result printed at the end of the output."""
    return json.loads(output[output.index("{") :])


class TestTypes:
    """Tests for the types command."""

    def test_lists_resource_types(self, runner: CliRunner, patched: list[float]) -> None:
        """Test that every supported type is printed."""
        result = runner.invoke(cli, ["types"])

        assert result.exit_code == 0
        assert result.output.split() == [ENGINE_VERSION, DB_CLUSTER, PARAMETER_GROUP]


class TestInvoke:
    """Tests for the single-invocation command."""

    def test_context_file_lifecycle(
        self, runner: CliRunner, patched: list[float], rds: MockRdsClient, tmp_path: Path
    ) -> None:
        """Test that the context is saved while in progress and removed when done."""
        request = write_request(tmp_path, CEV_REQUEST)
        context = tmp_path / "ctx.json"
        args = ["invoke", ENGINE_VERSION, "create", "-r", str(request), "-c", str(context)]

        first = runner.invoke(cli, args)
        assert first.exit_code == 0
        assert last_json(first.output)["status"] == "IN_PROGRESS"
        assert json.loads(context.read_text())["completed"] == {}

        second = runner.invoke(cli, args)
        assert second.exit_code == 0
        assert last_json(second.output)["status"] == "SUCCESS"
        assert not context.exists()
        assert rds.call_count("create_custom_db_engine_version") == 1

    def test_failure_exits_nonzero(
        self, runner: CliRunner, patched: list[float], tmp_path: Path
    ) -> None:
        """Test that a FAILED result exits with status 1."""
        request = write_request(
            tmp_path, "desiredResourceState:\n  DBClusterParameterGroupName: missing\n"
        )

        result = runner.invoke(cli, ["invoke", PARAMETER_GROUP, "READ", "-r", str(request)])

        assert result.exit_code == 1
        assert last_json(result.output)["errorCode"] == "NotFound"

    def test_bad_request_file(
        self, runner: CliRunner, patched: list[float], tmp_path: Path
    ) -> None:
        """Test that an invalid request file is a usage error."""
        request = write_request(tmp_path, "- not\n- a mapping\n")

        result = runner.invoke(cli, ["invoke", PARAMETER_GROUP, "READ", "-r", str(request)])

        assert result.exit_code == 1
        assert "must contain a mapping" in result.output

    def test_unknown_resource_type(
        self, runner: CliRunner, patched: list[float], tmp_path: Path
    ) -> None:
        """Test that click rejects unsupported resource types."""
        request = write_request(tmp_path, CEV_REQUEST)

        result = runner.invoke(cli, ["invoke", "AWS::S3::Bucket", "READ", "-r", str(request)])

        assert result.exit_code == 2


class TestRun:
    """Tests for the run-to-completion command."""

    def test_runs_until_success(
        self, runner: CliRunner, patched: list[float], rds: MockRdsClient, tmp_path: Path
    ) -> None:
        """Test that run waits the returned delay between invocations."""
        rds.script_status("custom-oracle-ee", "19.cev1", "creating", "validating", "available")
        request = write_request(tmp_path, CEV_REQUEST)

        result = runner.invoke(cli, ["run", ENGINE_VERSION, "CREATE", "-r", str(request)])

        assert result.exit_code == 0
        assert '"status": "SUCCESS"' in result.output
        assert patched == [30, 30]
        assert rds.call_count("create_custom_db_engine_version") == 1

    def test_gives_up_after_max_invocations(
        self, runner: CliRunner, patched: list[float], rds: MockRdsClient, tmp_path: Path
    ) -> None:
        """Test that run stops once the invocation limit is reached."""
        rds.script_status("custom-oracle-ee", "19.cev1", "creating", "creating", "creating")
        request = write_request(tmp_path, CEV_REQUEST)

        result = runner.invoke(
            cli, ["run", ENGINE_VERSION, "CREATE", "-r", str(request), "-n", "2"]
        )

        assert result.exit_code == 1
        assert "still in progress after 2 invocations" in result.output
        assert len(patched) == 2
