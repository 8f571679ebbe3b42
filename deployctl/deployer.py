"""
Deployer: executes one artifact's creation.

deploy() is idempotent per artifact. An artifact already recorded as
deployed is returned as-is; anything else goes through balance check,
buffered estimation, a persisted PENDING mark, submission and
confirmation. Nothing is retried automatically; a failed artifact is
recorded as FAILED and the caller decides whether to rerun.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from .compiled import CompiledContract, ContractSource
from .errors import (
    ConfigError,
    ConfirmationTimeout,
    DeployError,
    GatewayError,
    InsufficientFundsError,
    PlanViolationError,
    TransactionNotLanded,
    UnresolvedReferenceError,
)
from .ledger import Confirmation, CreationRequest, LedgerGateway, TxHandle, buffered_limit
from .models import ArtifactSpec, ArtifactStatus, DeploymentRecord, resolve_all
from .state import DeploymentState, StateRecorder

logger = logging.getLogger(__name__)

DEFAULT_GAS_MARGIN = 0.10


@dataclass(frozen=True)
class CostEstimate:
    """Read-only projection of what creating one artifact would cost."""

    artifact: str
    estimate: int = 0
    gas_limit: int = 0
    fee_per_unit: int | None = None
    balance: int = 0
    placeholders: tuple[str, ...] = ()  # references estimated against the account address
    error: str | None = None

    @property
    def cost(self) -> int | None:
        if self.fee_per_unit is None:
            return None
        return self.gas_limit * self.fee_per_unit

    @property
    def affordable(self) -> bool | None:
        cost = self.cost
        return None if cost is None else self.balance >= cost


class Deployer:
    def __init__(
        self,
        gateway: LedgerGateway,
        recorder: StateRecorder,
        source: ContractSource,
        *,
        min_balance: int = 0,
        gas_margin: float = DEFAULT_GAS_MARGIN,
    ):
        self.gateway = gateway
        self.recorder = recorder
        self.source = source
        self.min_balance = min_balance
        self.gas_margin = gas_margin

    def compiled(self, spec: ArtifactSpec) -> CompiledContract:
        """Load the creation artifact for a spec; ConfigError if missing or abstract."""
        compiled = self.source.load(spec.contract_name)
        if not compiled.bytecode or compiled.bytecode == "0x":
            raise ConfigError(f"{spec.contract_name} has no creation bytecode (abstract contract or interface?)")
        return compiled

    def _request(self, spec: ArtifactSpec, args: list) -> CreationRequest:
        compiled = self.compiled(spec)
        return CreationRequest(artifact=spec.name, abi=compiled.abi, bytecode=compiled.bytecode, args=args)

    def _resolve_args(self, spec: ArtifactSpec, state: DeploymentState) -> list:
        missing = [ref for ref in spec.references() if not state.is_deployed(ref)]
        if missing:
            raise PlanViolationError(f"{spec.name} planned before its dependencies: {', '.join(missing)}")
        try:
            return resolve_all(spec.constructor, state.addresses(), self.gateway.account)
        except UnresolvedReferenceError as e:
            raise PlanViolationError(f"{spec.name}: {e}") from e

    def deploy(self, spec: ArtifactSpec, state: DeploymentState) -> tuple[DeploymentRecord, DeploymentState]:
        """
        Create one artifact, persisting every transition through the recorder.

        Returns:
            The deployment record and the state snapshot after the last transition.

        Raises:
            PlanViolationError: a referenced artifact is not deployed yet
            InsufficientFundsError: balance below minimum or below estimated cost
            DeployError: estimation, submission or confirmation failed (artifact marked FAILED)
        """
        existing = state.record(spec.name)
        if existing is not None:
            logger.info("%s already deployed at %s, skipping", spec.name, existing.address)
            return existing, state

        args = self._resolve_args(spec, state)
        request = self._request(spec, args)

        earlier = self._earlier_creation(spec, state, args)
        if earlier is not None:
            return earlier

        try:
            balance = self.gateway.get_balance()
        except GatewayError as e:
            raise DeployError(spec.name, f"balance query failed: {e}", e) from e
        if balance < self.min_balance:
            raise InsufficientFundsError(
                f"balance {balance} of {self.gateway.account} is below the configured minimum {self.min_balance}",
                balance=balance,
                required=self.min_balance,
            )

        try:
            estimate = self.gateway.estimate_cost(request)
        except GatewayError as e:
            state = self.recorder.mark_failed(state, spec.name, f"estimation failed: {e}")
            raise DeployError(spec.name, f"estimation failed: {e}", e) from e

        gas_limit = buffered_limit(estimate, self.gas_margin)
        fee = self.gateway.fee_per_unit()
        if fee is not None and balance < gas_limit * fee:
            raise InsufficientFundsError(
                f"{spec.name} needs up to {gas_limit * fee} ({gas_limit} units at {fee}), balance is {balance}",
                balance=balance,
                required=gas_limit * fee,
            )
        logger.info("%s: estimated %d units, submitting with limit %d", spec.name, estimate, gas_limit)

        state = self.recorder.mark_pending(state, spec.name)
        try:
            handle = self.gateway.submit(replace(request, gas_limit=gas_limit))
        except GatewayError as e:
            state = self.recorder.mark_failed(state, spec.name, f"submission failed: {e}")
            raise DeployError(spec.name, f"submission failed: {e}", e) from e

        state = self.recorder.mark_pending(state, spec.name, handle.tx_hash)
        return self._confirm(spec, state, handle, args)

    def _earlier_creation(
        self,
        spec: ArtifactSpec,
        state: DeploymentState,
        args: list,
    ) -> tuple[DeploymentRecord, DeploymentState] | None:
        """Confirm a creation submitted by an earlier run; None when it has to be submitted again."""
        entry = state.entry(spec.name)
        if entry.status not in (ArtifactStatus.PENDING, ArtifactStatus.FAILED):
            return None
        if not entry.tx_hash:
            if entry.status == ArtifactStatus.PENDING:
                logger.warning("%s was marked pending without a transaction hash; submitting again", spec.name)
            return None

        logger.info("%s has a creation %s from an earlier run; confirming it", spec.name, entry.tx_hash)
        handle = TxHandle(entry.tx_hash, label=spec.name)
        try:
            confirmation = self.gateway.confirm(handle)
        except ConfirmationTimeout as e:
            self.recorder.mark_failed(state, spec.name, str(e), tx_hash=handle.tx_hash)
            raise DeployError(spec.name, f"confirmation timed out: {e}", e) from e
        except TransactionNotLanded as e:
            logger.warning("%s: earlier creation %s did not land (%s); submitting again", spec.name, entry.tx_hash, e)
            return None
        except GatewayError as e:
            self.recorder.mark_failed(state, spec.name, str(e), tx_hash=handle.tx_hash)
            raise DeployError(spec.name, f"confirmation failed: {e}", e) from e
        return self._record(spec, state, handle, confirmation, args)

    def _confirm(
        self,
        spec: ArtifactSpec,
        state: DeploymentState,
        handle: TxHandle,
        args: list,
    ) -> tuple[DeploymentRecord, DeploymentState]:
        try:
            confirmation = self.gateway.confirm(handle)
        except ConfirmationTimeout as e:
            state = self.recorder.mark_failed(state, spec.name, str(e), tx_hash=handle.tx_hash)
            raise DeployError(spec.name, f"confirmation timed out: {e}", e) from e
        except GatewayError as e:
            state = self.recorder.mark_failed(state, spec.name, str(e), tx_hash=handle.tx_hash)
            raise DeployError(spec.name, f"confirmation failed: {e}", e) from e
        return self._record(spec, state, handle, confirmation, args)

    def _record(
        self,
        spec: ArtifactSpec,
        state: DeploymentState,
        handle: TxHandle,
        confirmation: Confirmation,
        args: list,
    ) -> tuple[DeploymentRecord, DeploymentState]:
        if not confirmation.address:
            reason = f"transaction {handle.tx_hash} confirmed without a contract address"
            state = self.recorder.mark_failed(state, spec.name, reason, tx_hash=handle.tx_hash)
            raise DeployError(spec.name, reason)

        record = DeploymentRecord(
            network=state.network,
            artifact=spec.name,
            address=confirmation.address,
            tx_hash=confirmation.tx_hash,
            resource_used=confirmation.resource_used,
            block_number=confirmation.block_number,
            deployed_at=datetime.now(timezone.utc),
            constructor_args=list(args),
        )
        state = self.recorder.mark_deployed(state, record)
        logger.info("%s deployed at %s (block %d)", spec.name, record.address, record.block_number)
        return record, state

    def estimate(self, spec: ArtifactSpec, state: DeploymentState, balance: int) -> CostEstimate:
        """Estimate a creation without submitting; missing addresses use the account as placeholder."""
        addresses = dict(state.addresses())
        placeholders = tuple(r for r in spec.constructor_references() if r not in addresses)
        for ref in placeholders:
            addresses[ref] = self.gateway.account

        fee = self.gateway.fee_per_unit()
        try:
            args = resolve_all(spec.constructor, addresses, self.gateway.account)
            estimate = self.gateway.estimate_cost(self._request(spec, args))
        except (GatewayError, ConfigError) as e:
            return CostEstimate(spec.name, fee_per_unit=fee, balance=balance, placeholders=placeholders, error=str(e))

        return CostEstimate(
            artifact=spec.name,
            estimate=estimate,
            gas_limit=buffered_limit(estimate, self.gas_margin),
            fee_per_unit=fee,
            balance=balance,
            placeholders=placeholders,
        )
