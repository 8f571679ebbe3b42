"""Deploy and estimate commands (the ones that talk to the network)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.table import Table
from web3 import Web3

from ..compiled import ContractSource
from ..config import NetworkConfig, ProjectConfig, find_config, load_config
from ..errors import (
    ConfigError,
    CycleError,
    DeployctlError,
    InsufficientFundsError,
    PlanViolationError,
)
from ..ledger import LedgerGateway
from ..ledger.web3_gateway import Web3Gateway
from ..orchestrator import EstimateReport, Orchestrator, RunStatus, RunSummary
from ..state import StateRecorder

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_PLAN = 10
EXIT_FUNDS = 20
EXIT_DEPLOY = 30
EXIT_PARTIAL = 40
EXIT_EXPORT = 50

GatewayFactory = Callable[[NetworkConfig], LedgerGateway]


def connect_gateway(network: NetworkConfig) -> LedgerGateway:
    return Web3Gateway.connect(
        network.resolved_rpc_url(),
        network.private_key(),
        poa=network.poa,
        confirm_timeout=network.confirm_timeout,
        confirmations=network.confirmations,
        gas_margin=network.gas_margin,
        gas_price=network.gas_price,
    )


def load_project(config_path: Path | None) -> ProjectConfig:
    return load_config(find_config(config_path))


def build_orchestrator(config: ProjectConfig, network: NetworkConfig, gateway: LedgerGateway) -> Orchestrator:
    return Orchestrator(
        config.registry,
        gateway,
        StateRecorder(config.state_dir),
        ContractSource(config.artifacts_dir),
        network.info(),
        export_dirs=config.export_dirs,
        min_balance=network.min_balance,
        gas_margin=network.gas_margin,
        read_workers=config.read_workers,
    )


def exit_code_for_error(error: DeployctlError) -> int:
    if isinstance(error, (CycleError, PlanViolationError)):
        return EXIT_PLAN
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    if isinstance(error, InsufficientFundsError):
        return EXIT_FUNDS
    return EXIT_DEPLOY


def exit_code_for_summary(summary: RunSummary) -> int:
    if summary.status == RunStatus.FAILED:
        return EXIT_FUNDS if isinstance(summary.error, InsufficientFundsError) else EXIT_DEPLOY
    if not summary.wiring_complete or not summary.verification_complete:
        return EXIT_PARTIAL
    if not summary.export_complete:
        return EXIT_EXPORT
    return EXIT_OK


def report_error(error: DeployctlError) -> int:
    err = Console(stderr=True)
    label = {
        EXIT_CONFIG: "Configuration error",
        EXIT_PLAN: "Planning error",
        EXIT_FUNDS: "Insufficient funds",
    }.get(exit_code_for_error(error), "Deployment error")
    err.print(f"{label}: {error}", style="bold red")
    return exit_code_for_error(error)


def format_amount(wei: int | None, currency: str = "") -> str:
    if wei is None:
        return "?"
    value = Web3.from_wei(wei, "ether")
    return f"{value:f} {currency}".strip()


def _short(value: str, keep: int = 10) -> str:
    return value if len(value) <= keep * 2 else f"{value[:keep]}…{value[-6:]}"


# -----------------------------------------------------------------------------
# deploy
# -----------------------------------------------------------------------------


def print_summary(summary: RunSummary, console: Console) -> None:
    table = Table(title=f"Deployment: {summary.network} (chain {summary.chain_id})")
    table.add_column("artifact", style="cyan", no_wrap=True)
    table.add_column("status")
    table.add_column("address")
    table.add_column("tx", style="dim")
    table.add_column("note", style="dim")

    for a in summary.artifacts:
        style = {"deployed": "green", "failed": "red", "pending": "yellow"}.get(a.status.value, "")
        note = a.reason or ("new" if a.deployed_now else "")
        table.add_row(a.name, f"[{style}]{a.status.value}[/{style}]" if style else a.status.value,
                      a.address, _short(a.tx_hash) if a.tx_hash else "", note)
    console.print(table)

    if summary.wiring is not None and summary.wiring.outcomes:
        wiring = Table(title="Wiring")
        wiring.add_column("action", style="cyan")
        wiring.add_column("call")
        wiring.add_column("result")
        wiring.add_column("note", style="dim")
        for o in summary.wiring.outcomes:
            if o.unresolved:
                result = "[red]unresolved[/red]"
            elif o.skipped:
                result = "[dim]already in effect[/dim]"
            else:
                result = "[green]applied[/green]"
            wiring.add_row(o.action_id, o.call, result, o.reason or (_short(o.tx_hash) if o.tx_hash else ""))
        console.print(wiring)

    for v in summary.verification:
        style = "green" if v.ok else "yellow"
        console.print(f"verify {v.artifact}: {v.detail}", style=style)

    if summary.export is not None:
        for d in summary.export.destinations:
            if d.ok:
                console.print(f"exported {len(d.files)} files to {d.destination}", style="dim")
            else:
                console.print(f"export to {d.destination} failed: {d.error}", style="yellow")

    status_style = {"complete": "bold green", "partial": "bold yellow", "failed": "bold red"}[summary.status.value]
    console.print(f"\nRun {summary.status.value}", style=status_style)
    if summary.error is not None:
        console.print(f"  {summary.error}", style="red")
        if isinstance(summary.error, InsufficientFundsError):
            console.print(f"  fund {summary.account} and rerun; deployed artifacts will be kept", style="dim")


def run_deploy(
    config_path: Path | None,
    network_name: str | None,
    *,
    reset: bool = False,
    output_json: bool = False,
    gateway_factory: GatewayFactory = connect_gateway,
) -> int:
    console = Console()
    try:
        config = load_project(config_path)
        network = config.network(network_name)
        orchestrator = build_orchestrator(config, network, gateway_factory(network))
        summary = orchestrator.run(reset=reset)
    except DeployctlError as e:
        return report_error(e)

    if output_json:
        print(json.dumps(summary.to_dict(), indent=2, sort_keys=True))
    else:
        print_summary(summary, console)
    return exit_code_for_summary(summary)


# -----------------------------------------------------------------------------
# estimate
# -----------------------------------------------------------------------------


def print_estimate(report: EstimateReport, currency: str, console: Console) -> None:
    table = Table(title=f"Creation costs: {report.network}")
    table.add_column("artifact", style="cyan", no_wrap=True)
    table.add_column("estimate", justify="right")
    table.add_column("limit", justify="right")
    table.add_column("cost", justify="right")
    table.add_column("note", style="dim")

    for item in report.items:
        if item.error:
            table.add_row(item.artifact, "", "", "", f"[red]{item.error}[/red]")
            continue
        note = f"placeholder for {', '.join(item.placeholders)}" if item.placeholders else ""
        table.add_row(item.artifact, str(item.estimate), str(item.gas_limit), format_amount(item.cost, currency), note)
    for name in report.deployed:
        table.add_row(name, "", "", "", "already deployed")
    console.print(table)

    console.print(f"account: {report.account}")
    console.print(f"balance: {format_amount(report.balance, currency)}")
    console.print(f"total:   {format_amount(report.total, currency)}")
    if report.affordable is True:
        console.print("balance covers all pending creations", style="green")
    elif report.affordable is False:
        console.print("balance does not cover all pending creations", style="bold red")
    else:
        console.print("could not estimate every creation", style="yellow")


def run_estimate(
    config_path: Path | None,
    network_name: str | None,
    *,
    output_json: bool = False,
    gateway_factory: GatewayFactory = connect_gateway,
) -> int:
    console = Console()
    try:
        config = load_project(config_path)
        network = config.network(network_name)
        report = build_orchestrator(config, network, gateway_factory(network)).estimate()
    except DeployctlError as e:
        return report_error(e)

    if output_json:
        data = {
            "network": report.network,
            "account": report.account,
            "balance": report.balance,
            "total": report.total,
            "affordable": report.affordable,
            "deployed": report.deployed,
            "items": [
                {
                    "artifact": i.artifact,
                    "estimate": i.estimate,
                    "gas_limit": i.gas_limit,
                    "fee_per_unit": i.fee_per_unit,
                    "cost": i.cost,
                    "placeholders": list(i.placeholders),
                    "error": i.error,
                }
                for i in report.items
            ],
        }
        print(json.dumps(data, indent=2, sort_keys=True))
    else:
        print_estimate(report, network.currency, console)

    if report.affordable is False:
        return EXIT_FUNDS
    if report.affordable is None and any(i.error for i in report.items):
        return EXIT_DEPLOY
    return EXIT_OK
