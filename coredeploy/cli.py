"""
CLI interface for coredeploy.

Provides commands to run a deployment, list targets and inspect the
durable state of a target.

Targets are defined as YAML bundles in coredeploy/targets/*.yaml (or
$COREDEPLOY_TARGETS_DIR); secrets are read from the environment and
$COREDEPLOY_HOME/.env.
"""

import json

import click

from coredeploy import __version__
from coredeploy.config import DeploymentTarget


TARGET_CHOICES = [t.value for t in DeploymentTarget]


@click.group()
@click.version_option(version=__version__, prog_name="coredeploy")
def main():
    """
    coredeploy - Resumable core contract deployments.

    Provision, wire and configure the core units on a target network.
    """


@main.command("run")
@click.argument("target", type=click.Choice(TARGET_CHOICES))
@click.option("--verify", is_flag=True, help="Verify sources on the block explorer")
@click.option("--transfer-ownership", is_flag=True, help="Hand ownership to the upgrades admin")
@click.option("--complete-setup", is_flag=True, help="Flip AdminContract's setup-initialized flag")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
@click.option(
    "--log-format",
    default="pretty",
    show_default=True,
    type=click.Choice(["pretty", "structured"]),
)
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
def run(
    target: str,
    verify: bool,
    transfer_ownership: bool,
    complete_setup: bool,
    log_level: str,
    log_format: str,
    log_file: str | None,
):
    """
    Deploy the core units to TARGET.

    Re-running after a failure resumes from the target's output file.

    Examples:

        coredeploy run localhost

        coredeploy run botanix-testnet --verify

        coredeploy run arbitrum --transfer-ownership --log-format structured
    """
    from pathlib import Path

    from coredeploy.errors import CoredeployError
    from coredeploy.orchestrator import RunOptions, run as run_deployment
    from coredeploy.utils import format_units, setup_logging

    setup_logging(Path(log_file) if log_file else None, log_level=log_level, log_format=log_format)
    options = RunOptions(verify=verify, transfer_ownership=transfer_ownership, complete_setup=complete_setup)

    try:
        result = run_deployment(target, options)
    except CoredeployError as e:
        click.echo(f"✗ {target} failed: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"✓ {target} deployed ({len(result.records)} units recorded, cost {format_units(result.cost_wei)})")


@main.command("targets")
def list_targets():
    """List supported deployment targets."""
    from coredeploy.config import get_targets_dir

    targets_dir = get_targets_dir()
    for target in DeploymentTarget:
        configured = (targets_dir / f"{target.value}.yaml").exists()
        flags = []
        if target.is_testnet:
            flags.append("testnet")
        if target.is_layer2:
            flags.append("L2")
        if not configured:
            flags.append("no config")
        suffix = f"  ({', '.join(flags)})" if flags else ""
        click.echo(f"  {target.value}{suffix}")


@main.command("state")
@click.argument("target", type=click.Choice(TARGET_CHOICES))
def show_state(target: str):
    """Show the durable deployment state of TARGET."""
    from coredeploy.config import load_config
    from coredeploy.errors import ConfigError
    from coredeploy.state_store import FileStateStore

    try:
        config = load_config(target)
        records = FileStateStore(config.output_file).load()
    except ConfigError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(1)

    if not records:
        click.echo(f"No deployment recorded for {target} ({config.output_file})")
        return

    click.echo(f"Target: {target}")
    click.echo(f"State file: {config.output_file}")
    click.echo()
    click.echo(json.dumps({name: record.to_dict() for name, record in records.items()}, indent=2))


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing .env")
def init(force: bool):
    """Create the coredeploy home directory and a .env template."""
    from coredeploy.config import get_coredeploy_home

    home = get_coredeploy_home()
    home.mkdir(parents=True, exist_ok=True)

    env_path = home / ".env"
    if env_path.exists() and not force:
        click.echo(f".env already exists at {env_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    env_path.write_text(
        "DEPLOYER_PRIVATEKEY=\n"
        "# ETHERSCAN_API_KEY=...\n"
        "# ARBISCAN_API_KEY=...\n"
    )
    env_path.chmod(0o600)
    click.echo(f"Initialized coredeploy home at {home}")


if __name__ == "__main__":
    main()
