"""Tests for the infragraph CLI."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

from infragraph import cli

FIXTURES = Path(__file__).resolve().parent.parent / "fixtures"


def _write_config(root: Path) -> None:
    (root / ".infragraph").mkdir()
    (root / ".infragraph" / "config.yaml").write_text(
        "backend_url: s3://state-bucket\nregion: us-east-1\nstack_prefix: dev\n"
    )


def test_plan_prints_resolved_document(capsys: pytest.CaptureFixture[str]) -> None:
    """plan prints the resolved composition as YAML."""
    cli.main(["plan", str(FIXTURES / "minimal.yaml"), "--var", "name=demo"])
    document = yaml.safe_load(capsys.readouterr().out)
    assert document["name"] == "minimal"
    assert document["order"] == ["network"]
    assert document["outputs"]["vpc_id"] == "${network.main.id}"
    assert document["outputs"]["subnets"] == ["${network.external-0.id}", "${network.external-1.id}"]


def test_plan_var_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """--var-file supplies overrides; --var wins over it."""
    var_file = tmp_path / "vars.yaml"
    var_file.write_text("name: from-file\n")
    cli.main(["plan", str(FIXTURES / "minimal.yaml"), "--var-file", str(var_file)])
    document = yaml.safe_load(capsys.readouterr().out)
    assert document["variables"]["name"] == "from-file"

    cli.main(["plan", str(FIXTURES / "minimal.yaml"), "--var-file", str(var_file), "--var", "name=cli"])
    document = yaml.safe_load(capsys.readouterr().out)
    assert document["variables"]["name"] == "cli"


def test_plan_error_exits_with_stage(capsys: pytest.CaptureFixture[str]) -> None:
    """Resolution failures print the stage and message to stderr and exit 1."""
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["plan", str(FIXTURES / "minimal.yaml")])
    assert exc_info.value.code == 1
    err = capsys.readouterr().err
    assert "[resolve-variables]" in err
    assert "'name'" in err


def test_plan_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    """A missing composition file exits 1."""
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["plan", str(tmp_path / "missing.yaml")])
    assert exc_info.value.code == 1
    assert "not found" in capsys.readouterr().err


def test_plan_bad_assignment(capsys: pytest.CaptureFixture[str]) -> None:
    """A malformed --var exits 1."""
    with pytest.raises(SystemExit):
        cli.main(["plan", str(FIXTURES / "minimal.yaml"), "--var", "oops"])
    assert "name=value" in capsys.readouterr().err


def test_graph(capsys: pytest.CaptureFixture[str]) -> None:
    """graph prints the evaluation order and the reference edges."""
    cli.main(["graph", str(FIXTURES / "aws-stack.yaml")])
    out = capsys.readouterr().out
    assert "1. iam_role (iam-role, 4 resource(s))" in out
    assert "5. bastion (bastion, 2 resource(s))" in out
    assert "vpc.id -> dns.vpc_id" in out
    assert "security_groups.external_ssh -> bastion.security_groups" in out


def test_setup_saves_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """setup reads env vars and writes .infragraph/config.yaml."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("INFRAGRAPH_BACKEND_URL", "s3://state-bucket")
    monkeypatch.setenv("INFRAGRAPH_REGION", "eu-west-1")
    monkeypatch.delenv("INFRAGRAPH_STACK_PREFIX", raising=False)
    with patch("infragraph.cli._check_aws_credentials", return_value=True):
        cli.main(["setup"])
    saved = yaml.safe_load((tmp_path / ".infragraph" / "config.yaml").read_text())
    assert saved == {"backend_url": "s3://state-bucket", "region": "eu-west-1", "stack_prefix": "dev"}


def test_setup_without_credentials(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """setup exits 1 when AWS credentials are missing."""
    monkeypatch.chdir(tmp_path)
    with patch("infragraph.cli._check_aws_credentials", return_value=False):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["setup"])
    assert exc_info.value.code == 1
    assert not (tmp_path / ".infragraph").exists()


@patch("boto3.client")
def test_list_groups_by_composition(
    mock_client: MagicMock, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    """list queries resources tagged managed-by=infragraph and groups them by composition."""
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    paginator = mock_client.return_value.get_paginator.return_value
    paginator.paginate.return_value = [
        {
            "ResourceTagList": [
                {
                    "ResourceARN": "arn:aws:ec2:us-east-1:123:vpc/vpc-1",
                    "Tags": [{"Key": "composition", "Value": "aws-stack"}],
                },
                {"ResourceARN": "arn:aws:route53:::hostedzone/Z1", "Tags": []},
            ]
        }
    ]
    cli.main(["list"])

    mock_client.assert_called_once_with("resourcegroupstaggingapi", region_name="us-east-1")
    assert paginator.paginate.call_args[1]["TagFilters"] == [{"Key": "managed-by", "Values": ["infragraph"]}]
    out = capsys.readouterr().out
    assert "aws-stack\n  ec2: arn:aws:ec2:us-east-1:123:vpc/vpc-1" in out
    assert "?\n  route53: arn:aws:route53:::hostedzone/Z1" in out


@patch("boto3.client")
def test_list_empty(mock_client: MagicMock, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    """list says so when nothing is managed."""
    monkeypatch.chdir(tmp_path)
    mock_client.return_value.get_paginator.return_value.paginate.return_value = [{"ResourceTagList": []}]
    cli.main(["list"])
    assert "No infragraph-managed resources found." in capsys.readouterr().out


def test_up_requires_setup(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """up without a saved configuration exits 1."""
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["up", str(FIXTURES / "aws-stack.yaml")])
    assert exc_info.value.code == 1


def test_up_runs_pulumi(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """up selects the stack, sets region and variables, and runs pulumi up."""
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    with patch("infragraph.cli._run", return_value=MagicMock(returncode=0)) as mock_run:
        cli.main(["up", str(FIXTURES / "minimal.yaml"), "--var", "name=demo"])

    commands = [c[0][0] for c in mock_run.call_args_list]
    assert commands[0][:4] == ["pulumi", "stack", "select", "dev.minimal.us-east-1"]
    assert commands[1][:5] == ["pulumi", "config", "set", "aws:region", "us-east-1"]
    assert commands[2][:4] == ["pulumi", "config", "set", "infragraph:variables"]
    assert json.loads(commands[2][4]) == {"name": "demo"}
    assert commands[3][:3] == ["pulumi", "up", "-y"]
    for command in commands:
        assert command[-2:] == ["-C", str(cli._program_dir())]
    env = mock_run.call_args_list[3][1]["env"]
    assert env["COMPOSITION_YAML_PATH"] == str((FIXTURES / "minimal.yaml").resolve())
    assert env["PULUMI_BACKEND_URL"] == "s3://state-bucket"


def test_up_inits_missing_stack(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A stack that cannot be selected is created with the KMS secrets provider."""
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    results = [MagicMock(returncode=1)] + [MagicMock(returncode=0)] * 4
    with patch("infragraph.cli._run", side_effect=results) as mock_run:
        cli.main(["up", str(FIXTURES / "aws-stack.yaml")])

    commands = [c[0][0] for c in mock_run.call_args_list]
    assert commands[1][:4] == ["pulumi", "stack", "init", "dev.aws-stack.us-east-1"]
    assert "awskms://alias/pulumi_backend_infragraph?region=us-east-1" in commands[1]
    assert commands[3][:4] == ["pulumi", "config", "rm", "infragraph:variables"]


def test_up_stops_before_pulumi_on_resolution_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Configuration errors surface before any pulumi command runs."""
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    with patch("infragraph.cli._run") as mock_run:
        with pytest.raises(SystemExit):
            cli.main(["up", str(FIXTURES / "minimal.yaml")])
    mock_run.assert_not_called()


def test_up_rejects_overrides_pulumi_config_cannot_hold(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    """A YAML date given with --var exits 1 with a message instead of a traceback."""
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    (tmp_path / "label.yaml").write_text(
        "apiVersion: infragraph.dev/v1\nkind: Module\nmetadata:\n  name: label\n"
        "spec:\n  inputs:\n    value: {}\n  outputs:\n    value: {var: value}\n"
    )
    composition = tmp_path / "dated.yaml"
    composition.write_text(
        "apiVersion: infragraph.dev/v1\nkind: Composition\nmetadata:\n  name: dated\n"
        "spec:\n  variables:\n    stamp: {}\n  modules:\n"
        "    - name: label\n      source: ./label.yaml\n      inputs:\n        value: {var: stamp}\n"
    )
    with patch("infragraph.cli._run") as mock_run:
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["up", str(composition), "--var", "stamp=2024-01-01"])
    assert exc_info.value.code == 1
    assert "quote dates" in capsys.readouterr().err
    mock_run.assert_not_called()


def test_destroy(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """destroy asks for confirmation, destroys and removes the stack."""
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    with (
        patch("infragraph.cli._run", return_value=MagicMock(returncode=0)) as mock_run,
        patch("builtins.input", return_value="y"),
    ):
        cli.main(["destroy", "aws-stack"])
    commands = [c[0][0] for c in mock_run.call_args_list]
    assert commands[1][:3] == ["pulumi", "destroy", "-y"]
    assert commands[2][:5] == ["pulumi", "stack", "rm", "dev.aws-stack.us-east-1", "--yes"]


def test_destroy_cancelled(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Anything but 'y' cancels without destroying."""
    monkeypatch.chdir(tmp_path)
    _write_config(tmp_path)
    with (
        patch("infragraph.cli._run", return_value=MagicMock(returncode=0)) as mock_run,
        patch("builtins.input", return_value="n"),
    ):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["destroy", "aws-stack"])
    assert exc_info.value.code == 0
    assert mock_run.call_count == 1
