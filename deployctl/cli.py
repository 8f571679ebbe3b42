"""CLI entrypoint for deployctl."""

import logging
import sys
from pathlib import Path

import click
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from . import __version__


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )
    # web3 and urllib3 are noisy at DEBUG
    for name in ("web3", "urllib3"):
        logging.getLogger(name).setLevel(logging.INFO if verbose else logging.WARNING)


network_option = click.option(
    "--network",
    "-n",
    "network",
    type=str,
    default=None,
    help="Network name from the project file (default: DEPLOYCTL_NETWORK or defaults.network)",
)

json_option = click.option("--json", "output_json", is_flag=True, help="Output results as JSON")


@click.group()
@click.version_option(__version__, prog_name="deployctl")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Project file (defaults to DEPLOYCTL_CONFIG or ./deployctl.toml)",
)
@click.option(
    "--env-file",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Load environment variables (RPC URLs, keys) from this file (default: ./.env)",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, env_file: Path | None, verbose: bool) -> None:
    """deployctl - Deploy interdependent contracts in dependency order.

    Creates contracts from pre-built artifacts, wires their permissions,
    resumes after partial failures without redeploying, and publishes
    ABI descriptors for frontends and backends.
    """
    ctx.ensure_object(dict)
    _configure_logging(verbose)
    load_dotenv(dotenv_path=env_file or find_dotenv(usecwd=True), override=False)
    ctx.obj["config_path"] = config_path


@cli.command()
@json_option
@click.pass_context
def plan(ctx: click.Context, output_json: bool) -> None:
    """Show the deployment order without touching the network."""
    from .commands.status_cmd import run_plan

    sys.exit(run_plan(ctx.obj["config_path"], output_json=output_json))


@cli.command()
@network_option
@click.option(
    "--reset",
    is_flag=True,
    help="Forget recorded deployments for this network first (audited; contracts stay on chain)",
)
@click.option("--yes", "-y", is_flag=True, help="Do not ask before --reset")
@json_option
@click.pass_context
def deploy(ctx: click.Context, network: str | None, reset: bool, yes: bool, output_json: bool) -> None:
    """Deploy, wire and export.

    Rerunning is safe: deployed contracts are skipped, and wiring already in
    effect on chain is not resubmitted.

    Exit codes: 0 complete, 2 config, 10 cycle, 20 insufficient funds,
    30 creation failed, 40 wiring or verification incomplete, 50 export failed.

    Examples:

        deployctl deploy --network fuji

        deployctl deploy -n avalanche --json
    """
    from .commands.deploy_cmd import run_deploy

    if reset and not yes:
        click.confirm(f"Forget all recorded deployments for {network or 'the default network'}?", abort=True)

    sys.exit(run_deploy(ctx.obj["config_path"], network, reset=reset, output_json=output_json))


@cli.command()
@network_option
@json_option
@click.pass_context
def status(ctx: click.Context, network: str | None, output_json: bool) -> None:
    """Show recorded deployment state for a network."""
    from .commands.status_cmd import run_status

    sys.exit(run_status(ctx.obj["config_path"], network, output_json=output_json))


@cli.command()
@network_option
@click.option(
    "--dest",
    "destinations",
    multiple=True,
    type=click.Path(file_okay=False, path_type=Path),
    help="Export directory (repeatable; default: defaults.export_dirs)",
)
@click.pass_context
def export(ctx: click.Context, network: str | None, destinations: tuple[Path, ...]) -> None:
    """Write ABI descriptors and the deployment manifest from recorded state."""
    from .commands.status_cmd import run_export

    sys.exit(run_export(ctx.obj["config_path"], network, destinations=list(destinations) or None))


@cli.command()
@network_option
@json_option
@click.pass_context
def estimate(ctx: click.Context, network: str | None, output_json: bool) -> None:
    """Estimate the cost of pending creations against the account balance."""
    from .commands.deploy_cmd import run_estimate

    sys.exit(run_estimate(ctx.obj["config_path"], network, output_json=output_json))


if __name__ == "__main__":
    cli()
