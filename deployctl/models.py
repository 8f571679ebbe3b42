"""
Data models for deployable artifacts and their deployment results.

An ArtifactSpec is static: it says what to create and how to wire it.
Everything that depends on a particular network (addresses, transaction
hashes) lives in DeploymentRecord and the persisted DeploymentState.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Protocol

from .errors import UnresolvedReferenceError


class ArtifactStatus(str, Enum):
    NOT_STARTED = "not_started"
    PENDING = "pending"  # Persisted before submission; may carry a tx hash
    DEPLOYED = "deployed"
    FAILED = "failed"


class WiringStatus(str, Enum):
    NOT_APPLIED = "not_applied"
    APPLIED = "applied"


# -----------------------------------------------------------------------------
# Parameter resolvers
# -----------------------------------------------------------------------------


class ParamResolver(Protocol):
    """A constructor or call argument, resolved at submission time."""

    def resolve(self, addresses: Mapping[str, str], account: str) -> Any:
        ...

    def references(self) -> list[str]:
        ...

    def describe(self) -> str:
        ...


@dataclass(frozen=True)
class Literal:
    """A fixed value passed through unchanged."""

    value: Any

    def resolve(self, addresses: Mapping[str, str], account: str) -> Any:
        return self.value

    def references(self) -> list[str]:
        return []

    def describe(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class AddressOf:
    """The deployed address of another artifact."""

    artifact: str

    def resolve(self, addresses: Mapping[str, str], account: str) -> Any:
        address = addresses.get(self.artifact)
        if not address:
            raise UnresolvedReferenceError(self.artifact)
        return address

    def references(self) -> list[str]:
        return [self.artifact]

    def describe(self) -> str:
        return f"address_of({self.artifact})"


@dataclass(frozen=True)
class Account:
    """The address of the signing account."""

    def resolve(self, addresses: Mapping[str, str], account: str) -> Any:
        return account

    def references(self) -> list[str]:
        return []

    def describe(self) -> str:
        return "account"


def resolve_all(params: tuple[ParamResolver, ...], addresses: Mapping[str, str], account: str) -> list[Any]:
    return [p.resolve(addresses, account) for p in params]


def values_equal(left: Any, right: Any) -> bool:
    """Compare view results, treating hex strings (addresses, hashes) case-insensitively."""
    if isinstance(left, bytes):
        left = "0x" + left.hex()
    if isinstance(right, bytes):
        right = "0x" + right.hex()
    if isinstance(left, str) and isinstance(right, str):
        return left.lower() == right.lower()
    return left == right


# -----------------------------------------------------------------------------
# Specs
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Check:
    """Idempotency predicate: `target.view(*args) == expect` means already applied."""

    view: str
    args: tuple[ParamResolver, ...] = ()
    expect: ParamResolver = field(default_factory=lambda: Literal(True))

    def references(self) -> list[str]:
        refs: list[str] = []
        for p in (*self.args, self.expect):
            refs.extend(p.references())
        return refs


@dataclass(frozen=True)
class WiringAction:
    """A configuration call against a deployed artifact."""

    owner: str  # artifact whose spec declares this action
    name: str
    target: str
    call: str
    args: tuple[ParamResolver, ...] = ()
    check: Check | None = None

    @property
    def action_id(self) -> str:
        return f"{self.owner}.{self.name}"

    def references(self) -> list[str]:
        refs = [self.target]
        for p in self.args:
            refs.extend(p.references())
        if self.check is not None:
            refs.extend(self.check.references())
        return refs

    def describe(self) -> str:
        args = ", ".join(p.describe() for p in self.args)
        return f"{self.target}.{self.call}({args})"


@dataclass(frozen=True)
class ArtifactSpec:
    """Static description of one deployable artifact."""

    name: str
    contract: str = ""  # compiled contract name; defaults to name
    constructor: tuple[ParamResolver, ...] = ()
    wiring: tuple[WiringAction, ...] = ()

    @property
    def contract_name(self) -> str:
        return self.contract or self.name

    def constructor_references(self) -> list[str]:
        refs: list[str] = []
        for p in self.constructor:
            refs.extend(p.references())
        return _unique(refs)

    def references(self) -> list[str]:
        """Artifacts this one needs deployed first (constructor and wiring)."""
        refs = list(self.constructor_references())
        for action in self.wiring:
            refs.extend(action.references())
        return [r for r in _unique(refs) if r != self.name]


def _unique(names: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for n in names:
        if n not in seen:
            seen.add(n)
            out.append(n)
    return out


# -----------------------------------------------------------------------------
# Results
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class DeploymentRecord:
    """Immutable result of one confirmed creation."""

    network: str
    artifact: str
    address: str
    tx_hash: str
    resource_used: int
    block_number: int
    deployed_at: datetime
    constructor_args: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "network": self.network,
            "artifact": self.artifact,
            "address": self.address,
            "tx_hash": self.tx_hash,
            "resource_used": self.resource_used,
            "block_number": self.block_number,
            "deployed_at": self.deployed_at.isoformat(),
            "constructor_args": list(self.constructor_args),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeploymentRecord:
        deployed_at = data.get("deployed_at")
        return cls(
            network=str(data["network"]),
            artifact=str(data["artifact"]),
            address=str(data["address"]),
            tx_hash=str(data.get("tx_hash", "")),
            resource_used=int(data.get("resource_used", 0)),
            block_number=int(data.get("block_number", 0)),
            deployed_at=datetime.fromisoformat(deployed_at) if deployed_at else datetime.now(timezone.utc),
            constructor_args=list(data.get("constructor_args", [])),
        )
