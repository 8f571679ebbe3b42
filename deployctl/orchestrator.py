"""
Orchestration of one deployment run against one network.

    plan -> chain check -> creations -> wiring -> verification -> export

Planning errors abort before anything touches the network. The first
creation failure stops further creations; everything already deployed
stays recorded. Wiring, verification and export run only once every
artifact is deployed, and their failures degrade the run to "partial"
instead of failing it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, Sequence

from .audit_log import CreationSummary, ErasureSummary, log_operation
from .compiled import CompiledContract, ContractSource
from .deployer import DEFAULT_GAS_MARGIN, CostEstimate, Deployer
from .errors import ConfigError, DeployctlError, DeployError, InsufficientFundsError
from .exporter import Exporter, ExportReport, NetworkInfo
from .ledger import LedgerGateway
from .models import ArtifactSpec, ArtifactStatus, DeploymentRecord
from .planner import plan
from .registry import ArtifactRegistry
from .state import DeploymentState, StateRecorder
from .wiring import WiringEngine, WiringReport

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"  # every artifact deployed; wiring, verification or export incomplete
    FAILED = "failed"  # at least one artifact not deployed


class Verifier(Protocol):
    """Explorer verification hook. Raises VerificationError on failure."""

    def verify(self, record: DeploymentRecord, compiled: CompiledContract) -> str:
        """Submit source verification; returns a reference such as an explorer URL."""
        ...


@dataclass(frozen=True)
class ArtifactOutcome:
    name: str
    status: ArtifactStatus
    address: str = ""
    tx_hash: str = ""
    reason: str = ""
    deployed_now: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "status": self.status.value, "deployed_now": self.deployed_now}
        if self.address:
            result["address"] = self.address
        if self.tx_hash:
            result["tx_hash"] = self.tx_hash
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass(frozen=True)
class VerificationOutcome:
    artifact: str
    ok: bool
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"artifact": self.artifact, "ok": self.ok, "detail": self.detail}


@dataclass
class RunSummary:
    network: str
    account: str = ""
    chain_id: int | None = None
    artifacts: list[ArtifactOutcome] = field(default_factory=list)
    wiring: WiringReport | None = None
    verification: list[VerificationOutcome] = field(default_factory=list)
    export: ExportReport | None = None
    error: DeployctlError | None = None  # the creation failure that stopped the run

    @property
    def all_deployed(self) -> bool:
        return all(a.status == ArtifactStatus.DEPLOYED for a in self.artifacts)

    @property
    def wiring_complete(self) -> bool:
        return self.wiring is None or self.wiring.complete

    @property
    def verification_complete(self) -> bool:
        return all(v.ok for v in self.verification)

    @property
    def export_complete(self) -> bool:
        return self.export is None or self.export.complete

    @property
    def status(self) -> RunStatus:
        if not self.all_deployed:
            return RunStatus.FAILED
        if self.wiring_complete and self.verification_complete and self.export_complete:
            return RunStatus.COMPLETE
        return RunStatus.PARTIAL

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "network": self.network,
            "chain_id": self.chain_id,
            "account": self.account,
            "status": self.status.value,
            "artifacts": [a.to_dict() for a in self.artifacts],
            "wiring": self.wiring.to_dict() if self.wiring is not None else None,
            "verification": [v.to_dict() for v in self.verification],
            "export": self.export.to_dict() if self.export is not None else None,
        }
        if self.error is not None:
            result["error"] = {"kind": type(self.error).__name__, "message": str(self.error)}
        return result


@dataclass
class EstimateReport:
    network: str
    account: str
    balance: int
    items: list[CostEstimate] = field(default_factory=list)
    deployed: list[str] = field(default_factory=list)

    @property
    def total(self) -> int | None:
        """Total buffered cost of all pending creations; None when any cost is unknown."""
        costs = [i.cost for i in self.items]
        if any(c is None for c in costs):
            return None
        return sum(c for c in costs if c is not None)

    @property
    def affordable(self) -> bool | None:
        if any(i.error for i in self.items):
            return None
        total = self.total
        return None if total is None else self.balance >= total


def export_recorded(
    registry: ArtifactRegistry,
    recorder: StateRecorder,
    exporter: Exporter,
    destinations: Sequence[Path],
) -> ExportReport:
    """Export the recorded state of exporter.network without touching the ledger. Audited."""
    network = exporter.network.name
    state = recorder.load(network)
    report = exporter.export(state, destinations, names=[s.name for s in plan(registry)])
    log_operation(
        recorder.state_dir,
        "export",
        network,
        created=CreationSummary(
            artifacts=report.artifacts,
            files=sum(len(d.files) for d in report.destinations),
        ),
        metadata={"destinations": [str(d.destination) for d in report.destinations], "complete": report.complete},
    )
    return report


class Orchestrator:
    def __init__(
        self,
        registry: ArtifactRegistry,
        gateway: LedgerGateway,
        recorder: StateRecorder,
        source: ContractSource,
        network: NetworkInfo,
        *,
        export_dirs: Sequence[Path] = (),
        min_balance: int = 0,
        gas_margin: float = DEFAULT_GAS_MARGIN,
        read_workers: int = 1,
        verifier: Verifier | None = None,
    ):
        self.registry = registry
        self.gateway = gateway
        self.recorder = recorder
        self.source = source
        self.network = network
        self.export_dirs = list(export_dirs)
        self.verifier = verifier

        contract_names = {s.name: s.contract_name for s in registry}
        self.deployer = Deployer(gateway, recorder, source, min_balance=min_balance, gas_margin=gas_margin)
        self.wiring = WiringEngine(gateway, recorder, source, contract_names=contract_names, read_workers=read_workers)
        self.exporter = Exporter(source, network, contract_names=contract_names)

    # -------------------------------------------------------------------------
    # reset
    # -------------------------------------------------------------------------

    def reset(self) -> bool:
        """Drop the network's recorded state. Audited with the list of erased records."""
        name = self.network.name
        before = self.recorder.load(name)
        removed = self.recorder.reset(name)
        if removed:
            log_operation(
                self.recorder.state_dir,
                "reset",
                name,
                erased=ErasureSummary(
                    artifacts=sorted(before.addresses()),
                    wiring=sorted(a for a in before.wiring if before.is_applied(a)),
                    files=1,
                ),
                metadata={"chain_id": before.chain_id, "addresses": before.addresses()},
            )
        return removed

    # -------------------------------------------------------------------------
    # run
    # -------------------------------------------------------------------------

    def run(self, reset: bool = False) -> RunSummary:
        """
        Execute one deployment run.

        Raises:
            CycleError, ConfigError: before any network interaction
            PlanViolationError: an artifact was ordered before its dependencies
            GatewayError: the chain id could not be read

        Creation, wiring, verification and export failures are reported in
        the summary instead of raised.
        """
        ordered = plan(self.registry)
        for spec in ordered:
            self.deployer.compiled(spec)
        if reset:
            self.reset()

        name = self.network.name
        state = self.recorder.load(name)
        chain_id = self.gateway.chain_id()
        if self.network.chain_id is not None and chain_id != self.network.chain_id:
            raise ConfigError(f"network {name} expects chain {self.network.chain_id}, endpoint reports {chain_id}")
        state = self.recorder.bind_chain(state, chain_id, self.gateway.account)

        summary = RunSummary(network=name, account=self.gateway.account, chain_id=chain_id)
        before = set(state.addresses())
        applied_before = {a for a in state.wiring if state.is_applied(a)}

        state = self._create_all(ordered, state, summary)
        summary.artifacts = self._outcomes(ordered, state, before)

        if summary.all_deployed:
            summary.wiring, state = self.wiring.apply(self.registry.wiring_actions(), state)
            summary.verification = self._verify(ordered, state, before)
            if self.export_dirs:
                summary.export = self.exporter.export(
                    state, self.export_dirs, names=[s.name for s in ordered], deployer=self.gateway.account
                )
        else:
            logger.warning("skipping wiring and export: not every artifact is deployed")

        log_operation(
            self.recorder.state_dir,
            "deploy",
            name,
            created=CreationSummary(
                artifacts=[a.name for a in summary.artifacts if a.deployed_now],
                wiring=sorted(a for a in state.wiring if state.is_applied(a) and a not in applied_before),
                files=sum(len(d.files) for d in summary.export.destinations) if summary.export else 0,
            ),
            metadata={"status": summary.status.value, "account": summary.account, "chain_id": chain_id},
        )
        logger.info("run on %s finished: %s", name, summary.status.value)
        return summary

    def _create_all(self, ordered: list[ArtifactSpec], state: DeploymentState, summary: RunSummary) -> DeploymentState:
        for spec in ordered:
            try:
                _, state = self.deployer.deploy(spec, state)
            except (DeployError, InsufficientFundsError) as e:
                logger.error("stopping creations at %s: %s", spec.name, e)
                summary.error = e
                # failure transitions were persisted by the recorder
                return self.recorder.load(state.network)
        return state

    def _outcomes(
        self, ordered: list[ArtifactSpec], state: DeploymentState, before: set[str]
    ) -> list[ArtifactOutcome]:
        outcomes = []
        for spec in ordered:
            entry = state.entry(spec.name)
            record = state.record(spec.name)
            outcomes.append(
                ArtifactOutcome(
                    name=spec.name,
                    status=entry.status,
                    address=record.address if record else "",
                    tx_hash=record.tx_hash if record else entry.tx_hash,
                    reason=entry.reason,
                    deployed_now=record is not None and spec.name not in before,
                )
            )
        return outcomes

    def _verify(
        self, ordered: list[ArtifactSpec], state: DeploymentState, before: set[str]
    ) -> list[VerificationOutcome]:
        if self.verifier is None:
            return []
        results = []
        for spec in ordered:
            record = state.record(spec.name)
            if record is None or spec.name in before:
                continue
            try:
                detail = self.verifier.verify(record, self.source.load(spec.contract_name))
            except DeployctlError as e:
                logger.warning("verification of %s failed: %s", spec.name, e)
                results.append(VerificationOutcome(spec.name, ok=False, detail=str(e)))
                continue
            results.append(VerificationOutcome(spec.name, ok=True, detail=detail))
        return results

    # -------------------------------------------------------------------------
    # export / estimate
    # -------------------------------------------------------------------------

    def export(self, destinations: Sequence[Path] | None = None) -> ExportReport:
        """Re-publish descriptors for whatever is currently deployed."""
        return export_recorded(self.registry, self.recorder, self.exporter, destinations or self.export_dirs)

    def estimate(self) -> EstimateReport:
        """Project the cost of every creation not yet deployed. Read-only."""
        ordered = plan(self.registry)
        state = self.recorder.load(self.network.name)
        balance = self.gateway.get_balance()
        report = EstimateReport(network=self.network.name, account=self.gateway.account, balance=balance)
        for spec in ordered:
            if state.is_deployed(spec.name):
                report.deployed.append(spec.name)
                continue
            report.items.append(self.deployer.estimate(spec, state, balance))
        return report
