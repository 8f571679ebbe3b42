"""
Ledger gateway protocol.

The gateway is the only seam between deployctl and the network. It knows
how to sign, estimate, submit and confirm; it knows nothing about
artifacts, ordering or persisted state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Protocol


def buffered_limit(estimate: int, margin: float) -> int:
    """Apply the fractional safety margin to a resource estimate, rounded up.

    The margin is taken as the decimal it was written as, so 0.10 on
    100_000 gives exactly 110_000.
    """
    factor = 1 + Fraction(str(margin))
    return -(-estimate * factor.numerator // factor.denominator)


@dataclass(frozen=True)
class CreationRequest:
    """A contract creation transaction."""

    artifact: str
    abi: list[dict[str, Any]]
    bytecode: str
    args: list[Any] = field(default_factory=list)
    gas_limit: int | None = None  # None: let the gateway decide (estimation only)


@dataclass(frozen=True)
class CallRequest:
    """A state-changing call against a deployed contract."""

    target: str  # contract address
    abi: list[dict[str, Any]]
    function: str
    args: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class TxHandle:
    tx_hash: str
    label: str = ""


@dataclass(frozen=True)
class Confirmation:
    tx_hash: str
    block_number: int
    resource_used: int
    address: str | None = None  # set for creations


class LedgerGateway(Protocol):
    """Operations deployctl needs from a ledger.

    Implementations raise GatewayError for rejected or dropped requests.
    confirm() raises ConfirmationTimeout when it gives up waiting and
    TransactionNotLanded when the transaction is unknown or reverted.
    """

    @property
    def account(self) -> str:
        """Address of the signing account."""
        ...

    def chain_id(self) -> int:
        ...

    def get_balance(self, account: str | None = None) -> int:
        """Balance in the smallest currency unit (defaults to the signing account)."""
        ...

    def fee_per_unit(self) -> int | None:
        """Current price of one resource unit, or None if unknown."""
        ...

    def estimate_cost(self, request: CreationRequest | CallRequest) -> int:
        """Estimated resource units for the request."""
        ...

    def submit(self, request: CreationRequest) -> TxHandle:
        ...

    def confirm(self, handle: TxHandle) -> Confirmation:
        """Block until the transaction is final."""
        ...

    def call(self, request: CallRequest) -> TxHandle:
        ...

    def read_view(self, target: str, abi: list[dict[str, Any]], view: str, args: list[Any]) -> Any:
        ...
