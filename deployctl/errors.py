"""
Error taxonomy for deployment runs.

Each error class maps to one failure category of a run. The CLI turns
these categories into distinct exit codes; the orchestrator uses them to
decide whether later steps may still proceed.
"""

from __future__ import annotations


class DeployctlError(Exception):
    """Base class for all deployctl errors."""


class ConfigError(DeployctlError):
    """Raised when project configuration or the artifact registry is invalid."""


class CycleError(DeployctlError):
    """Raised when artifact references form a cycle. Fatal, never retried."""

    def __init__(self, cycles: list[list[str]]):
        self.cycles = cycles
        # members of one strongly connected component, not a path
        rendered = "; ".join(f"{c[0]} -> {c[0]}" if len(c) == 1 else ", ".join(c) for c in cycles)
        super().__init__(f"dependency cycle between artifacts: {rendered}")

    @property
    def artifacts(self) -> list[str]:
        names: list[str] = []
        for cycle in self.cycles:
            for name in cycle:
                if name not in names:
                    names.append(name)
        return names


class PlanViolationError(DeployctlError):
    """Raised when an artifact is deployed before something it references."""


class InsufficientFundsError(DeployctlError):
    """Raised when the signing account cannot pay for a creation.

    Recoverable by funding the account and rerunning; never retried
    automatically.
    """

    def __init__(self, message: str, *, balance: int, required: int):
        super().__init__(message)
        self.balance = balance
        self.required = required


class DeployError(DeployctlError):
    """Raised when a creation transaction fails to submit or confirm."""

    def __init__(self, artifact: str, reason: str, cause: BaseException | None = None):
        super().__init__(f"{artifact}: {reason}")
        self.artifact = artifact
        self.reason = reason
        self.cause = cause


class WiringError(DeployctlError):
    """Raised for a single wiring action; reported, never fatal to a run."""

    def __init__(self, action_id: str, reason: str):
        super().__init__(f"{action_id}: {reason}")
        self.action_id = action_id
        self.reason = reason


class ExportError(DeployctlError):
    """Raised for a single export destination; reported, never fatal to a run."""

    def __init__(self, destination: str, reason: str):
        super().__init__(f"{destination}: {reason}")
        self.destination = destination
        self.reason = reason


class GatewayError(DeployctlError):
    """Raised by a ledger gateway when the network rejects or drops a request."""


class ConfirmationTimeout(GatewayError):
    """Raised when a transaction is not confirmed within the configured timeout."""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"transaction {tx_hash} not confirmed after {timeout:g}s")
        self.tx_hash = tx_hash
        self.timeout = timeout



class TransactionNotLanded(GatewayError):
    """Raised when a transaction is unknown to the ledger or reverted; it created nothing."""


class UnresolvedReferenceError(DeployctlError):
    """Raised when a parameter refers to an artifact with no deployed address."""

    def __init__(self, artifact: str):
        super().__init__(f"artifact {artifact!r} has no deployed address")
        self.artifact = artifact


class VerificationError(DeployctlError):
    """Raised by an explorer verification hook; reported, never fatal to a run."""
