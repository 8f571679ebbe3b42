"""
Artifact exporter: publishes interface descriptors for downstream consumers.

Per destination directory:

    <Name>.json                   descriptor: ABI, signatures, address per network
    all-contracts.json            combined ABIs keyed by artifact name
    deployment-<network>.json     manifest: network, chain, deployer, addresses

Descriptor files keep the addresses of other networks already present, so
one destination can serve several environments.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Sequence

from .compiled import CompiledContract, ContractSource
from .errors import ConfigError, ExportError
from .models import DeploymentRecord
from .state import DeploymentState, atomic_write_text

logger = logging.getLogger(__name__)

COMBINED_ABI_FILE = "all-contracts.json"


def manifest_filename(network: str) -> str:
    return f"deployment-{network}.json"


@dataclass(frozen=True)
class NetworkInfo:
    """Network identity written into exported manifests."""

    name: str
    chain_id: int | None = None
    explorer_url: str = ""
    currency: str = ""

    def explorer_link(self, address: str) -> str:
        if not self.explorer_url:
            return ""
        return f"{self.explorer_url.rstrip('/')}/address/{address}"


@dataclass(frozen=True)
class DestinationOutcome:
    destination: Path
    files: tuple[str, ...] = ()
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"destination": str(self.destination), "ok": self.ok, "files": list(self.files)}
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class ExportReport:
    artifacts: list[str] = field(default_factory=list)
    destinations: list[DestinationOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[DestinationOutcome]:
        return [d for d in self.destinations if not d.ok]

    @property
    def complete(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "complete": self.complete,
            "artifacts": list(self.artifacts),
            "destinations": [d.to_dict() for d in self.destinations],
        }


def build_descriptor(
    compiled: CompiledContract,
    record: DeploymentRecord,
    network: NetworkInfo,
    existing: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    previous = (existing or {}).get("networks")
    networks = dict(previous) if isinstance(previous, Mapping) else {}
    networks[network.name] = {
        "address": record.address,
        "chainId": network.chain_id,
        "transactionHash": record.tx_hash,
        "blockNumber": record.block_number,
    }
    return {
        "contractName": compiled.name,
        "abi": compiled.abi,
        "functions": compiled.function_signatures(),
        "events": compiled.event_signatures(),
        "networks": dict(sorted(networks.items())),
    }


def build_manifest(
    state: DeploymentState,
    names: Sequence[str],
    network: NetworkInfo,
    deployer: str,
) -> dict[str, Any]:
    contracts: dict[str, Any] = {}
    for name in names:
        record = state.record(name)
        if record is None:
            continue
        contracts[name] = {
            "address": record.address,
            "transactionHash": record.tx_hash,
            "blockNumber": record.block_number,
            "deployedAt": record.deployed_at.isoformat(),
        }
        link = network.explorer_link(record.address)
        if link:
            contracts[name]["explorer"] = link

    return {
        "network": network.name,
        "chainId": network.chain_id if network.chain_id is not None else state.chain_id,
        "deployer": deployer or state.deployer,
        "currency": network.currency,
        "explorerUrl": network.explorer_url,
        "exportedAt": datetime.now(timezone.utc).isoformat(),
        "contracts": contracts,
    }


def _read_existing(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        # ValueError covers bad JSON and bad UTF-8
        logger.warning("replacing unreadable descriptor %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2) + "\n"


class Exporter:
    def __init__(
        self,
        source: ContractSource,
        network: NetworkInfo,
        *,
        contract_names: Mapping[str, str] | None = None,
    ):
        self.source = source
        self.network = network
        self.contract_names = dict(contract_names or {})

    def export(
        self,
        state: DeploymentState,
        destinations: Sequence[Path],
        *,
        names: Sequence[str] | None = None,
        deployer: str = "",
    ) -> ExportReport:
        """Write descriptors for every deployed artifact to every destination.

        A destination that cannot be written is reported and does not stop
        the others.
        """
        ordered = list(names) if names is not None else sorted(state.artifacts)
        records: dict[str, DeploymentRecord] = {}
        for name in ordered:
            record = state.record(name)
            if record is not None:
                records[name] = record
        deployed = list(records)
        report = ExportReport(artifacts=deployed)

        try:
            compiled = {n: self.source.load(self.contract_names.get(n, n)) for n in deployed}
        except ConfigError as e:
            report.destinations = [DestinationOutcome(Path(d), error=str(e)) for d in destinations]
            return report

        manifest = build_manifest(state, deployed, self.network, deployer)

        for dest in destinations:
            dest = Path(dest)
            written: list[str] = []
            try:
                self._write_destination(dest, records, compiled, manifest, written)
            except ExportError as e:
                logger.error("export failed: %s", e)
                report.destinations.append(DestinationOutcome(dest, tuple(written), error=e.reason))
                continue

            logger.info("exported %d artifacts to %s", len(deployed), dest)
            report.destinations.append(DestinationOutcome(dest, tuple(written)))

        return report

    def _write_destination(
        self,
        dest: Path,
        records: Mapping[str, DeploymentRecord],
        compiled: Mapping[str, CompiledContract],
        manifest: dict[str, Any],
        written: list[str],
    ) -> None:
        """Write one destination, appending file names to written as they land."""
        try:
            dest.mkdir(parents=True, exist_ok=True)
            for name, record in records.items():
                path = dest / f"{name}.json"
                descriptor = build_descriptor(compiled[name], record, self.network, _read_existing(path))
                atomic_write_text(path, _dump(descriptor))
                written.append(path.name)

            combined_path = dest / COMBINED_ABI_FILE
            combined = _read_existing(combined_path) or {}
            combined.update({name: compiled[name].abi for name in records})
            atomic_write_text(combined_path, _dump(dict(sorted(combined.items()))))
            written.append(combined_path.name)

            manifest_path = dest / manifest_filename(self.network.name)
            atomic_write_text(manifest_path, _dump(manifest))
            written.append(manifest_path.name)
        except (OSError, ValueError, TypeError) as e:
            raise ExportError(str(dest), str(e)) from e
