"""
Audit log for operator-visible operations.

Every deploy run, state reset and export appends one entry to
<state_dir>/audit.log (JSON Lines). Entries record what was created and what
was erased, so a reset is never silent: the erased entry lists the artifacts
whose recorded addresses were dropped.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

AUDIT_LOG_NAME = "audit.log"


@dataclass
class ErasureSummary:
    """What an operation dropped from local state."""
    artifacts: list[str] = field(default_factory=list)
    wiring: list[str] = field(default_factory=list)
    files: int = 0


@dataclass
class CreationSummary:
    """What an operation produced."""
    artifacts: list[str] = field(default_factory=list)
    wiring: list[str] = field(default_factory=list)
    files: int = 0


@dataclass
class AuditEntry:
    timestamp: str
    operation: str
    network: str
    erased: ErasureSummary
    created: CreationSummary
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "network": self.network,
            "erased": asdict(self.erased),
            "created": asdict(self.created),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEntry":
        return cls(
            timestamp=data["timestamp"],
            operation=data["operation"],
            network=data.get("network", ""),
            erased=ErasureSummary(**data.get("erased", {})),
            created=CreationSummary(**data.get("created", {})),
            metadata=data.get("metadata", {}),
        )


def get_audit_log_path(state_dir: Path) -> Path:
    return state_dir / AUDIT_LOG_NAME


def log_operation(
    state_dir: Path,
    operation: str,
    network: str,
    erased: ErasureSummary | None = None,
    created: CreationSummary | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditEntry:
    """
    Append an operation to the audit log.

    Args:
        state_dir: Directory holding the network state files
        operation: Name of the operation ("deploy", "reset", "export")
        network: Network the operation ran against
        erased: Summary of what was dropped
        created: Summary of what was created
        metadata: Additional context (account, status, destinations)

    Returns:
        The created audit entry
    """
    entry = AuditEntry(
        timestamp=datetime.now(timezone.utc).isoformat(),
        operation=operation,
        network=network,
        erased=erased or ErasureSummary(),
        created=created or CreationSummary(),
        metadata=metadata or {},
    )

    log_path = get_audit_log_path(state_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(entry.to_dict()) + "\n")

    return entry


def read_audit_log(state_dir: Path, last_n: int | None = None, network: str | None = None) -> list[AuditEntry]:
    """Read entries, oldest first, optionally for one network. Malformed lines are skipped."""
    log_path = get_audit_log_path(state_dir)
    if not log_path.exists():
        return []

    entries = []
    with log_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    entry = AuditEntry.from_dict(json.loads(line))
                except (json.JSONDecodeError, KeyError, TypeError):
                    continue
                if network is None or entry.network == network:
                    entries.append(entry)

    if last_n is not None:
        return entries[-last_n:]
    return entries


def format_audit_entry(entry: AuditEntry) -> str:
    """Format an audit entry for human-readable display."""
    lines = [f"[{entry.timestamp}] {entry.operation} ({entry.network})"]

    if entry.erased.artifacts or entry.erased.wiring:
        parts = []
        if entry.erased.artifacts:
            parts.append(f"{len(entry.erased.artifacts)} artifacts")
        if entry.erased.wiring:
            parts.append(f"{len(entry.erased.wiring)} wiring actions")
        lines.append(f"  Erased: {', '.join(parts)}")

    if entry.created.artifacts or entry.created.wiring or entry.created.files:
        parts = []
        if entry.created.artifacts:
            parts.append(f"{len(entry.created.artifacts)} artifacts")
        if entry.created.wiring:
            parts.append(f"{len(entry.created.wiring)} wiring actions")
        if entry.created.files:
            parts.append(f"{entry.created.files} files")
        lines.append(f"  Created: {', '.join(parts)}")

    for key, value in entry.metadata.items():
        lines.append(f"  {key}: {value}")

    return "\n".join(lines)
