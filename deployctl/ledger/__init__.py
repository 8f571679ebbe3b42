"""
Ledger gateway: the seam between orchestration and the network.
"""

from __future__ import annotations

from .gateway import (
    CallRequest,
    Confirmation,
    CreationRequest,
    LedgerGateway,
    TxHandle,
    buffered_limit,
)

__all__ = [
    "CallRequest",
    "Confirmation",
    "CreationRequest",
    "LedgerGateway",
    "TxHandle",
    "buffered_limit",
]
