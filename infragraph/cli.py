"""
infragraph CLI: plan, graph, up, destroy and list compositions.
Run `infragraph setup` once; then `infragraph plan <composition.yaml>` to see the
resolved resources and `infragraph up <composition.yaml>` to provision them.
"""

import json
import os
from pathlib import Path
import subprocess
import sys
from typing import Any, NoReturn

import yaml

from infragraph.config import COMPOSITION_PATH_ENV, CompositionConfig, collect_overrides
from infragraph.engine import CompositionResult, run_pipeline
from infragraph.errors import InfragraphError

CONFIG_DIR = ".infragraph"
CONFIG_FILENAME = "config.yaml"
TAG_MANAGED = "managed-by"
TAG_MANAGED_VALUE = "infragraph"
TAG_COMPOSITION = "composition"
DEFAULT_STACK_PREFIX = "dev"
KMS_SECRETS_PROVIDER_TEMPLATE = "awskms://alias/pulumi_backend_infragraph?region={region}"


def _project_root() -> Path:
    return Path.cwd()


def _program_dir() -> Path:
    """Directory holding Pulumi.yaml and the Pulumi program (the infragraph package)."""
    return Path(__file__).resolve().parent


def _config_path() -> Path:
    return _project_root() / CONFIG_DIR / CONFIG_FILENAME


def _load_config() -> dict[str, Any] | None:
    path = _config_path()
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else None


def _save_config(backend_url: str, region: str, stack_prefix: str = DEFAULT_STACK_PREFIX) -> None:
    path = _config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(
            {
                "backend_url": backend_url,
                "region": region,
                "stack_prefix": stack_prefix,
            },
            f,
            default_flow_style=False,
        )
    print(f"Configuration saved to {path}")


def _require_config() -> dict[str, Any]:
    config = _load_config()
    if not config or not config.get("backend_url") or not config.get("region"):
        print("Configuration missing or incomplete. Run: infragraph setup", file=sys.stderr)
        sys.exit(1)
    return config


def _check_aws_credentials() -> bool:
    try:
        subprocess.run(
            ["aws", "sts", "get-caller-identity"],
            capture_output=True,
            check=True,
            timeout=10,
        )
        return True
    except (subprocess.CalledProcessError, FileNotFoundError, subprocess.TimeoutExpired):
        return False


def _run(cmd: list[str], env: dict[str, str] | None = None, check: bool = True) -> subprocess.CompletedProcess:
    full_env = os.environ.copy()
    if env:
        full_env.update(env)
    return subprocess.run(
        cmd,
        cwd=_project_root(),
        env=full_env,
        check=check,
    )


def _pulumi(*args: str) -> list[str]:
    return ["pulumi", *args, "-C", str(_program_dir())]


def _stack_name(composition_name: str, config: dict[str, Any]) -> str:
    prefix = config.get("stack_prefix", DEFAULT_STACK_PREFIX)
    region = config["region"]
    return f"{prefix}.{composition_name}.{region}"


def _fail(message: str) -> NoReturn:
    print(message, file=sys.stderr)
    sys.exit(1)


def _resolve(composition_path: str, var_files: list[str], assignments: list[str]) -> CompositionResult:
    """Load a composition and run the pipeline; any failure exits with status 1."""
    try:
        config = CompositionConfig.from_file(composition_path)
        overrides = collect_overrides(var_files, assignments)
        return run_pipeline(config.composition, overrides)
    except SystemExit as e:
        _fail(str(e.code))
    except InfragraphError as e:
        _fail(f"[{e.stage}] {e}" if e.stage else str(e))


# --- setup ---


def _cmd_setup() -> None:
    print("First-time setup. You will need:")
    print("  1) AWS credentials (e.g. run: aws sso login)")
    print("  2) Backend URL for infrastructure state (e.g. s3://your-account-pulumi-state)")
    print("  3) Default AWS region (e.g. us-east-1)")
    print()

    if not _check_aws_credentials():
        _fail("AWS credentials not found. Log in (e.g. aws sso login) and try again.")
    print("AWS credentials OK.")

    backend_url = os.environ.get("INFRAGRAPH_BACKEND_URL", "").strip()
    if not backend_url:
        backend_url = input("Backend URL for infrastructure state: ").strip()
    if not backend_url:
        _fail("Backend URL is required.")

    region = os.environ.get("INFRAGRAPH_REGION", "").strip()
    if not region:
        region = input("Default AWS region (e.g. us-east-1): ").strip()
    if not region:
        _fail("Region is required.")

    stack_prefix = os.environ.get("INFRAGRAPH_STACK_PREFIX", DEFAULT_STACK_PREFIX).strip() or DEFAULT_STACK_PREFIX
    _save_config(backend_url, region, stack_prefix)
    print("Setup complete. You can now use: infragraph plan <path>, infragraph up <path>, infragraph list")


# --- plan / graph ---


def _cmd_plan(composition_path: str, var_files: list[str], assignments: list[str]) -> None:
    result = _resolve(composition_path, var_files, assignments)
    print(yaml.safe_dump(result.to_document(), default_flow_style=False, sort_keys=False), end="")


def _cmd_graph(composition_path: str, var_files: list[str], assignments: list[str]) -> None:
    result = _resolve(composition_path, var_files, assignments)
    print(f"Composition '{result.name}'")
    print("Evaluation order:")
    for i, name in enumerate(result.order, 1):
        module = result.modules[name]
        print(f"  {i}. {name} ({module.source}, {len(module.resources)} resource(s))")
    print("References:")
    if not result.references:
        print("  (none)")
    for edge in result.references:
        print(f"  {edge}")


# --- list ---


def _cmd_list() -> None:
    try:
        import boto3
    except ImportError:
        _fail("Listing requires boto3. Install with: pip install infragraph (boto3 is a dependency)")
    config = _load_config()
    region = config.get("region") if config else os.environ.get("AWS_REGION", "us-east-1")
    client = boto3.client("resourcegroupstaggingapi", region_name=region)
    compositions: dict[str, list[dict[str, str]]] = {}

    paginator = client.get_paginator("get_resources")
    for page in paginator.paginate(
        TagFilters=[{"Key": TAG_MANAGED, "Values": [TAG_MANAGED_VALUE]}],
        ResourcesPerPage=100,
    ):
        for r in page.get("ResourceTagList", []):
            arn = r.get("ResourceARN", "")
            tags = {t["Key"]: t["Value"] for t in r.get("Tags", [])}
            name = tags.get(TAG_COMPOSITION, "?")
            resource_type = arn.split(":")[2] if ":" in arn else "resource"
            compositions.setdefault(name, []).append({"arn": arn, "type": resource_type})

    if not compositions:
        print("No infragraph-managed resources found.")
        return
    for name in sorted(compositions.keys()):
        print(f"\n{name}")
        for r in compositions[name]:
            print(f"  {r['type']}: {r['arn']}")


# --- up ---


def _cmd_up(composition_path: str, var_files: list[str], assignments: list[str]) -> None:
    config = _require_config()
    path = Path(composition_path)
    if not path.is_absolute():
        path = _project_root() / path
    if not path.exists():
        _fail(f"File not found: {path}")

    # Resolve locally first so configuration errors surface before Pulumi starts.
    result = _resolve(str(path), var_files, assignments)
    overrides = collect_overrides(var_files, assignments)
    try:
        variables_json = json.dumps(overrides) if overrides else ""
    except TypeError as e:
        _fail(f"variable overrides must be JSON values for Pulumi config ({e}); quote dates and timestamps")
    stack = _stack_name(result.name, config)
    region = config["region"]

    env = {
        COMPOSITION_PATH_ENV: str(path.resolve()),
        "PULUMI_BACKEND_URL": config["backend_url"],
    }
    select = _run(_pulumi("stack", "select", stack), env=env, check=False)
    if select.returncode != 0:
        kms = KMS_SECRETS_PROVIDER_TEMPLATE.format(region=region)
        _run(_pulumi("stack", "init", stack, "--secrets-provider", kms), env=env)
    _run(_pulumi("config", "set", "aws:region", region), env=env)
    if variables_json:
        _run(_pulumi("config", "set", "infragraph:variables", variables_json), env=env)
    else:
        _run(_pulumi("config", "rm", "infragraph:variables"), env=env, check=False)
    print(f"Provisioning composition '{result.name}' ({len(result.resources)} resource(s))...")
    _run(_pulumi("up", "-y"), env=env)
    print(f"Composition '{result.name}' provisioned (stack {stack}).")


# --- destroy ---


def _cmd_destroy(composition_name: str) -> None:
    config = _require_config()
    stack = _stack_name(composition_name, config)

    env = {"PULUMI_BACKEND_URL": config["backend_url"]}
    select = _run(_pulumi("stack", "select", stack), env=env, check=False)
    if select.returncode != 0:
        _fail(f"No infrastructure found for composition '{composition_name}' (stack {stack}).")
    confirm = input(f"This will remove all infrastructure for composition '{composition_name}'. Continue? [y/N]: ")
    if confirm.strip().lower() != "y":
        print("Cancelled.")
        sys.exit(0)
    _run(_pulumi("destroy", "-y"), env=env)
    # Stack rm can fail if the stack is already gone.
    _run(_pulumi("stack", "rm", stack, "--yes"), env=env, check=False)
    print(f"Composition '{composition_name}' removed.")


def _add_var_options(parser: Any) -> None:
    parser.add_argument("composition", help="Path to a composition YAML file")
    parser.add_argument(
        "--var",
        dest="assignments",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Override a variable; the value is read as YAML (repeatable)",
    )
    parser.add_argument(
        "--var-file",
        dest="var_files",
        action="append",
        default=[],
        metavar="FILE",
        help="YAML file of variable overrides (repeatable)",
    )


def main(argv: list[str] | None = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(
        description="Resolve and provision infragraph compositions. Run 'infragraph setup' first."
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("setup", help="One-time setup: AWS, state storage, region")
    _add_var_options(sub.add_parser("plan", help="Resolve a composition and print the result as YAML"))
    _add_var_options(sub.add_parser("graph", help="Print the module evaluation order and references"))
    sub.add_parser("list", help="List infragraph-managed resources by composition")
    _add_var_options(sub.add_parser("up", help="Provision a composition"))
    destroy_p = sub.add_parser("destroy", help="Remove all infrastructure for a composition")
    destroy_p.add_argument("composition_name", help="Composition name (metadata.name)")
    args = parser.parse_args(argv)

    if args.command == "setup":
        _cmd_setup()
    elif args.command == "plan":
        _cmd_plan(args.composition, args.var_files, args.assignments)
    elif args.command == "graph":
        _cmd_graph(args.composition, args.var_files, args.assignments)
    elif args.command == "list":
        _cmd_list()
    elif args.command == "up":
        _cmd_up(args.composition, args.var_files, args.assignments)
    elif args.command == "destroy":
        _cmd_destroy(args.composition_name)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
