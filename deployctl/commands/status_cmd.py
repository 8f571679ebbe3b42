"""Plan, status and export commands (local state only, no network access)."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from ..audit_log import AuditEntry, format_audit_entry, read_audit_log
from ..compiled import ContractSource
from ..errors import ConfigError, DeployctlError
from ..exporter import Exporter
from ..orchestrator import export_recorded
from ..planner import plan
from ..state import StateRecorder
from .deploy_cmd import EXIT_EXPORT, EXIT_OK, load_project, report_error


def run_plan(config_path: Path | None, *, output_json: bool = False) -> int:
    console = Console()
    try:
        config = load_project(config_path)
        ordered = plan(config.registry)
    except DeployctlError as e:
        return report_error(e)

    if output_json:
        data = [
            {
                "name": s.name,
                "contract": s.contract_name,
                "depends_on": s.references(),
                "wiring": [a.action_id for a in s.wiring],
            }
            for s in ordered
        ]
        print(json.dumps(data, indent=2))
        return EXIT_OK

    table = Table(title="Deployment order")
    table.add_column("#", justify="right", style="dim")
    table.add_column("artifact", style="cyan", no_wrap=True)
    table.add_column("contract", style="magenta")
    table.add_column("constructor")
    table.add_column("depends on")
    for i, spec in enumerate(ordered, start=1):
        table.add_row(
            str(i),
            spec.name,
            spec.contract_name,
            ", ".join(p.describe() for p in spec.constructor),
            ", ".join(spec.references()),
        )
    console.print(table)

    actions = config.registry.wiring_actions()
    if actions:
        console.print("\nWiring (after all creations):")
        for action in actions:
            check = f"  [dim]skip if {action.check.view}[/dim]" if action.check else ""
            console.print(f"  {action.action_id}: {action.describe()}{check}")
    return EXIT_OK


def _status_data(config_path: Path | None, network_name: str | None) -> dict[str, Any]:
    config = load_project(config_path)
    network = config.network(network_name)
    ordered = plan(config.registry)
    state = StateRecorder(config.state_dir).load(network.name)

    artifacts = []
    for spec in ordered:
        entry = state.entry(spec.name)
        row: dict[str, Any] = {"name": spec.name, "status": entry.status.value}
        if entry.record is not None:
            row.update(entry.record.to_dict())
        if entry.reason:
            row["reason"] = entry.reason
        if entry.tx_hash:
            row["tx_hash"] = entry.tx_hash
        artifacts.append(row)

    wiring = [
        {
            "action": a.action_id,
            "call": a.describe(),
            "status": state.wiring_entry(a.action_id).status.value,
            "tx_hash": state.wiring_entry(a.action_id).tx_hash,
        }
        for a in config.registry.wiring_actions()
    ]
    last = read_audit_log(config.state_dir, last_n=1, network=network.name)
    return {
        "network": network.name,
        "chain_id": state.chain_id,
        "deployer": state.deployer,
        "updated_at": state.updated_at,
        "artifacts": artifacts,
        "wiring": wiring,
        "last_operation": last[0].to_dict() if last else None,
    }


def run_status(config_path: Path | None, network_name: str | None, *, output_json: bool = False) -> int:
    console = Console()
    try:
        data = _status_data(config_path, network_name)
    except DeployctlError as e:
        return report_error(e)

    if output_json:
        print(json.dumps(data, indent=2, sort_keys=True))
        return EXIT_OK

    table = Table(title=f"State: {data['network']} (chain {data['chain_id'] or 'unbound'})")
    table.add_column("artifact", style="cyan", no_wrap=True)
    table.add_column("status")
    table.add_column("address")
    table.add_column("block", justify="right")
    table.add_column("note", style="dim")
    for row in data["artifacts"]:
        table.add_row(
            row["name"],
            row["status"],
            row.get("address", ""),
            str(row.get("block_number", "")),
            row.get("reason", "") or (f"tx {row['tx_hash']}" if row["status"] == "pending" else ""),
        )
    console.print(table)

    if data["wiring"]:
        wiring = Table(title="Wiring")
        wiring.add_column("action", style="cyan")
        wiring.add_column("call")
        wiring.add_column("status")
        for row in data["wiring"]:
            wiring.add_row(row["action"], row["call"], row["status"])
        console.print(wiring)

    if data["last_operation"]:
        console.print("\n" + format_audit_entry(AuditEntry.from_dict(data["last_operation"])), style="dim")
    return EXIT_OK


def run_export(
    config_path: Path | None,
    network_name: str | None,
    *,
    destinations: list[Path] | None = None,
) -> int:
    console = Console()
    err = Console(stderr=True)
    try:
        config = load_project(config_path)
        network = config.network(network_name)
        targets = destinations or config.export_dirs
        if not targets:
            raise ConfigError("no export destinations; set defaults.export_dirs or pass --dest")
        exporter = Exporter(
            ContractSource(config.artifacts_dir),
            network.info(),
            contract_names={s.name: s.contract_name for s in config.registry},
        )
        report = export_recorded(config.registry, StateRecorder(config.state_dir), exporter, targets)
    except DeployctlError as e:
        return report_error(e)

    if not report.artifacts:
        console.print(f"No artifacts deployed on {network.name}; only the manifest was written", style="yellow")
    for d in report.destinations:
        if d.ok:
            console.print(f"{d.destination}: {len(d.files)} files")
        else:
            err.print(f"{d.destination}: {d.error}", style="bold red")
    return EXIT_OK if report.complete else EXIT_EXPORT
