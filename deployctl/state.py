"""
Persisted deployment state, one JSON document per network.

The StateRecorder is the only writer. Every transition is saved atomically
(temp file, fsync, rename) before the recorder returns the new snapshot,
so a crash never leaves a half-written state file and never loses a
transition that was already reported.

Alongside the state file, each transition is appended to
<network>.history.jsonl. The history is never rewritten; the state file is
its current projection.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigError
from .models import ArtifactStatus, DeploymentRecord, WiringStatus

logger = logging.getLogger(__name__)

STATE_VERSION = 1

_NETWORK_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ArtifactEntry:
    status: ArtifactStatus = ArtifactStatus.NOT_STARTED
    record: DeploymentRecord | None = None
    reason: str = ""  # set when failed
    tx_hash: str = ""  # set when pending after submission
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value}
        if self.record is not None:
            result["record"] = self.record.to_dict()
        if self.reason:
            result["reason"] = self.reason
        if self.tx_hash:
            result["tx_hash"] = self.tx_hash
        if self.updated_at:
            result["updated_at"] = self.updated_at
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ArtifactEntry:
        record = data.get("record")
        return cls(
            status=ArtifactStatus(data.get("status", ArtifactStatus.NOT_STARTED.value)),
            record=DeploymentRecord.from_dict(record) if isinstance(record, dict) else None,
            reason=str(data.get("reason", "")),
            tx_hash=str(data.get("tx_hash", "")),
            updated_at=str(data.get("updated_at", "")),
        )


@dataclass(frozen=True)
class WiringEntry:
    status: WiringStatus = WiringStatus.NOT_APPLIED
    tx_hash: str = ""  # empty when the action was found already in effect
    applied_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value}
        if self.tx_hash:
            result["tx_hash"] = self.tx_hash
        if self.applied_at:
            result["applied_at"] = self.applied_at
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WiringEntry:
        return cls(
            status=WiringStatus(data.get("status", WiringStatus.NOT_APPLIED.value)),
            tx_hash=str(data.get("tx_hash", "")),
            applied_at=str(data.get("applied_at", "")),
        )


@dataclass(frozen=True)
class DeploymentState:
    """
    Snapshot of one network's deployment progress.

    Snapshots are values: transitions produce a new DeploymentState and
    never mutate an existing one. Artifacts absent from the mapping are
    NOT_STARTED, which keeps older state files valid when specs grow.
    """

    network: str
    chain_id: int | None = None
    deployer: str = ""  # account of the most recent run
    artifacts: Mapping[str, ArtifactEntry] = field(default_factory=dict)
    wiring: Mapping[str, WiringEntry] = field(default_factory=dict)
    updated_at: str = ""

    def entry(self, name: str) -> ArtifactEntry:
        return self.artifacts.get(name, ArtifactEntry())

    def status(self, name: str) -> ArtifactStatus:
        return self.entry(name).status

    def record(self, name: str) -> DeploymentRecord | None:
        entry = self.entry(name)
        return entry.record if entry.status == ArtifactStatus.DEPLOYED else None

    def is_deployed(self, name: str) -> bool:
        return self.record(name) is not None

    def addresses(self) -> dict[str, str]:
        """Deployed artifact name -> address."""
        return {
            name: entry.record.address
            for name, entry in self.artifacts.items()
            if entry.status == ArtifactStatus.DEPLOYED and entry.record is not None
        }

    def wiring_entry(self, action_id: str) -> WiringEntry:
        return self.wiring.get(action_id, WiringEntry())

    def is_applied(self, action_id: str) -> bool:
        return self.wiring_entry(action_id).status == WiringStatus.APPLIED

    def with_artifact(self, name: str, entry: ArtifactEntry) -> DeploymentState:
        artifacts = dict(self.artifacts)
        artifacts[name] = entry
        return replace(self, artifacts=artifacts, updated_at=_now())

    def with_wiring(self, action_id: str, entry: WiringEntry) -> DeploymentState:
        wiring = dict(self.wiring)
        wiring[action_id] = entry
        return replace(self, wiring=wiring, updated_at=_now())

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "version": STATE_VERSION,
            "network": self.network,
            "chain_id": self.chain_id,
            "deployer": self.deployer,
            "updated_at": self.updated_at,
            "artifacts": {name: e.to_dict() for name, e in sorted(self.artifacts.items())},
            "wiring": {aid: e.to_dict() for aid, e in sorted(self.wiring.items())},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentState:
        artifacts_raw = data.get("artifacts") or {}
        wiring_raw = data.get("wiring") or {}
        chain_id = data.get("chain_id")
        return cls(
            network=str(data.get("network", "")),
            chain_id=int(chain_id) if chain_id is not None else None,
            deployer=str(data.get("deployer", "") or ""),
            artifacts={str(k): ArtifactEntry.from_dict(v) for k, v in artifacts_raw.items() if isinstance(v, dict)},
            wiring={str(k): WiringEntry.from_dict(v) for k, v in wiring_raw.items() if isinstance(v, dict)},
            updated_at=str(data.get("updated_at", "")),
        )


def atomic_write_text(path: Path, text: str) -> None:
    """Write text so readers see either the old file or the new one, never a mix."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


class StateRecorder:
    """
    Owner of persisted DeploymentState.

    Other components hold snapshots and propose transitions through the
    mark_* methods; each returns the new snapshot only after it is on disk.
    """

    def __init__(self, state_dir: Path):
        self.state_dir = state_dir

    def _check_network(self, network: str) -> None:
        if not _NETWORK_RE.match(network or ""):
            raise ConfigError(f"invalid network name for state file: {network!r}")

    def path(self, network: str) -> Path:
        self._check_network(network)
        return self.state_dir / f"{network}.json"

    def history_path(self, network: str) -> Path:
        self._check_network(network)
        return self.state_dir / f"{network}.history.jsonl"

    # -------------------------------------------------------------------------
    # load / save / reset
    # -------------------------------------------------------------------------

    def exists(self, network: str) -> bool:
        return self.path(network).exists()

    def load(self, network: str) -> DeploymentState:
        path = self.path(network)
        if not path.exists():
            return DeploymentState(network=network)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"state file {path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"state file {path} must contain a JSON object")
        try:
            state = DeploymentState.from_dict(data)
        except (KeyError, ValueError) as e:
            raise ConfigError(f"state file {path} is malformed: {e}") from e
        if state.network and state.network != network:
            raise ConfigError(f"state file {path} belongs to network {state.network!r}")
        return replace(state, network=network)

    def save(self, network: str, state: DeploymentState) -> None:
        atomic_write_text(self.path(network), json.dumps(state.to_dict(), indent=2) + "\n")

    def reset(self, network: str) -> bool:
        """Delete the network's state. Operator-invoked only; history is kept."""
        path = self.path(network)
        if not path.exists():
            return False
        path.unlink()
        self._append_history(network, "reset", {})
        logger.warning("deployment state reset for %s", network)
        return True

    # -------------------------------------------------------------------------
    # transitions
    # -------------------------------------------------------------------------

    def _commit(self, state: DeploymentState, event: str, payload: dict[str, Any]) -> DeploymentState:
        self.save(state.network, state)
        self._append_history(state.network, event, payload)
        return state

    def _append_history(self, network: str, event: str, payload: dict[str, Any]) -> None:
        path = self.history_path(network)
        path.parent.mkdir(parents=True, exist_ok=True)
        line = {"timestamp": _now(), "network": network, "event": event, **payload}
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(line, sort_keys=True) + "\n")

    def bind_chain(self, state: DeploymentState, chain_id: int, account: str = "") -> DeploymentState:
        """Record the chain id on first use; refuse to continue against another chain."""
        if state.chain_id is not None and state.chain_id != chain_id:
            raise ConfigError(
                f"state for {state.network} was recorded on chain {state.chain_id}, "
                f"but the gateway reports chain {chain_id}"
            )
        if state.chain_id == chain_id and (not account or state.deployer == account):
            return state
        bound = replace(state, chain_id=chain_id, deployer=account or state.deployer, updated_at=_now())
        return self._commit(bound, "chain.bound", {"chain_id": chain_id, "account": bound.deployer})

    def mark_pending(self, state: DeploymentState, name: str, tx_hash: str = "") -> DeploymentState:
        entry = ArtifactEntry(status=ArtifactStatus.PENDING, tx_hash=tx_hash, updated_at=_now())
        return self._commit(state.with_artifact(name, entry), "artifact.pending", {"artifact": name, "tx_hash": tx_hash})

    def mark_deployed(self, state: DeploymentState, record: DeploymentRecord) -> DeploymentState:
        entry = ArtifactEntry(status=ArtifactStatus.DEPLOYED, record=record, updated_at=_now())
        return self._commit(
            state.with_artifact(record.artifact, entry),
            "artifact.deployed",
            {"artifact": record.artifact, "address": record.address, "tx_hash": record.tx_hash},
        )

    def mark_failed(self, state: DeploymentState, name: str, reason: str, tx_hash: str = "") -> DeploymentState:
        entry = ArtifactEntry(status=ArtifactStatus.FAILED, reason=reason, tx_hash=tx_hash, updated_at=_now())
        return self._commit(state.with_artifact(name, entry), "artifact.failed", {"artifact": name, "reason": reason})

    def mark_applied(self, state: DeploymentState, action_id: str, tx_hash: str = "") -> DeploymentState:
        entry = WiringEntry(status=WiringStatus.APPLIED, tx_hash=tx_hash, applied_at=_now())
        return self._commit(state.with_wiring(action_id, entry), "wiring.applied", {"action": action_id, "tx_hash": tx_hash})
