"""Web3 implementation of the ledger gateway (EVM JSON-RPC, locally signed)."""

from __future__ import annotations

import logging
import time
from typing import Any

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from ..errors import ConfirmationTimeout, GatewayError, TransactionNotLanded
from .gateway import CallRequest, Confirmation, CreationRequest, TxHandle, buffered_limit

logger = logging.getLogger(__name__)


class Web3Gateway:
    """
    LedgerGateway over a JSON-RPC endpoint.

    Transactions are signed locally with the supplied key and submitted
    with explicit nonces, one at a time. Calls (wiring) are estimated and
    buffered with the same margin the deployer applies to creations.

    With confirmations > 1, confirm() also waits until the receipt's block
    is that many blocks deep (the inclusion block counts as the first),
    within the same timeout.
    """

    def __init__(
        self,
        w3: Web3,
        private_key: str,
        *,
        confirm_timeout: float = 120.0,
        poll_interval: float = 2.0,
        gas_margin: float = 0.10,
        gas_price: int | None = None,
        confirmations: int = 1,
    ):
        self.w3 = w3
        self._signer = Account.from_key(private_key)
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.gas_margin = gas_margin
        self._gas_price = gas_price
        self.confirmations = confirmations

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        private_key: str,
        *,
        poa: bool = False,
        **kwargs: Any,
    ) -> "Web3Gateway":
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        if poa:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        if not w3.is_connected():
            raise GatewayError(f"could not connect to RPC endpoint {rpc_url}")
        logger.info("connected to %s", rpc_url)
        return cls(w3, private_key, **kwargs)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    @property
    def account(self) -> str:
        return self._signer.address

    def chain_id(self) -> int:
        try:
            return int(self.w3.eth.chain_id)
        except Exception as e:
            raise GatewayError(f"chain id query failed: {e}") from e

    def get_balance(self, account: str | None = None) -> int:
        address = Web3.to_checksum_address(account or self.account)
        try:
            return int(self.w3.eth.get_balance(address))
        except Exception as e:
            raise GatewayError(f"balance query failed: {e}") from e

    def fee_per_unit(self) -> int | None:
        if self._gas_price is not None:
            return self._gas_price
        try:
            return int(self.w3.eth.gas_price)
        except Exception as e:
            logger.warning("gas price unavailable: %s", e)
            return None

    def estimate_cost(self, request: CreationRequest | CallRequest) -> int:
        try:
            fn = self._build(request)
            return int(fn.estimate_gas({"from": self.account}))
        except ContractLogicError as e:
            raise GatewayError(f"estimation reverted: {e}") from e
        except Exception as e:
            raise GatewayError(f"estimation failed: {e}") from e

    def read_view(self, target: str, abi: list[dict[str, Any]], view: str, args: list[Any]) -> Any:
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(target), abi=abi)
        try:
            return contract.get_function_by_name(view)(*_normalize_args(args)).call()
        except Exception as e:
            raise GatewayError(f"view {view} failed: {e}") from e

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def submit(self, request: CreationRequest) -> TxHandle:
        gas_limit = request.gas_limit or self._buffered(self.estimate_cost(request))
        return self._send(self._build(request), gas_limit, label=request.artifact)

    def call(self, request: CallRequest) -> TxHandle:
        gas_limit = self._buffered(self.estimate_cost(request))
        return self._send(self._build(request), gas_limit, label=request.function)

    def confirm(self, handle: TxHandle) -> Confirmation:
        deadline = time.monotonic() + self.confirm_timeout
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                handle.tx_hash,
                timeout=self.confirm_timeout,
                poll_latency=self.poll_interval,
            )
        except TimeExhausted as e:
            if not self._is_known(handle.tx_hash):
                raise TransactionNotLanded(f"transaction {handle.tx_hash} not found") from e
            raise ConfirmationTimeout(handle.tx_hash, self.confirm_timeout) from e
        except Exception as e:
            raise GatewayError(f"waiting for {handle.tx_hash} failed: {e}") from e

        block_number = int(receipt["blockNumber"])
        if receipt["status"] != 1:
            raise TransactionNotLanded(f"transaction {handle.tx_hash} reverted in block {block_number}")

        if self.confirmations > 1:
            self._wait_for_depth(handle, block_number, deadline)

        address = receipt.get("contractAddress")
        return Confirmation(
            tx_hash=handle.tx_hash,
            block_number=block_number,
            resource_used=int(receipt["gasUsed"]),
            address=str(address) if address else None,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _build(self, request: CreationRequest | CallRequest) -> Any:
        args = _normalize_args(request.args)
        if isinstance(request, CreationRequest):
            factory = self.w3.eth.contract(abi=request.abi, bytecode=request.bytecode)
            return factory.constructor(*args)
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(request.target), abi=request.abi)
        return contract.get_function_by_name(request.function)(*args)

    def _is_known(self, tx_hash: str) -> bool:
        """False only when the node positively reports the transaction as unknown."""
        try:
            self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return False
        except Exception as e:
            logger.warning("could not look up %s: %s", tx_hash, e)
        return True

    def _wait_for_depth(self, handle: TxHandle, block_number: int, deadline: float) -> None:
        target = block_number + self.confirmations - 1
        while True:
            try:
                head = int(self.w3.eth.block_number)
            except Exception as e:
                raise GatewayError(f"block number query failed: {e}") from e
            if head >= target:
                return
            if time.monotonic() >= deadline:
                raise ConfirmationTimeout(handle.tx_hash, self.confirm_timeout)
            logger.debug("%s at block %d, head %d, waiting for %d", handle.tx_hash, block_number, head, target)
            time.sleep(self.poll_interval)

    def _buffered(self, estimate: int) -> int:
        return buffered_limit(estimate, self.gas_margin)

    def _send(self, fn: Any, gas_limit: int, *, label: str) -> TxHandle:
        try:
            params: dict[str, Any] = {
                "from": self.account,
                "nonce": self.w3.eth.get_transaction_count(self.account, "pending"),
                "chainId": self.chain_id(),
                "gas": gas_limit,
            }
            if self._gas_price is not None:
                params["gasPrice"] = self._gas_price
            tx = fn.build_transaction(params)
            signed = self._signer.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            raise GatewayError(f"submission of {label} failed: {e}") from e

        handle = TxHandle(tx_hash=Web3.to_hex(tx_hash), label=label)
        logger.info("submitted %s: %s (gas limit %d)", label, handle.tx_hash, gas_limit)
        return handle


def _normalize_args(args: list[Any]) -> list[Any]:
    """Checksum anything that looks like an address; web3 rejects lowercase ones."""
    out: list[Any] = []
    for a in args:
        if isinstance(a, str) and len(a) == 42 and Web3.is_address(a):
            out.append(Web3.to_checksum_address(a))
        else:
            out.append(a)
    return out
