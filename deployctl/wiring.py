"""
Wiring engine: post-deployment configuration calls.

Each action is independently idempotent: its predicate is read from the
ledger first, and an action already in effect is recorded as applied
without a submission. A failing action is reported and the engine moves
on; sibling actions never depend on each other's success.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .compiled import ContractSource
from .errors import ConfigError, GatewayError, UnresolvedReferenceError, WiringError
from .ledger import CallRequest, LedgerGateway
from .models import WiringAction, WiringStatus, resolve_all, values_equal
from .state import DeploymentState, StateRecorder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WiringOutcome:
    action_id: str
    call: str
    status: WiringStatus
    skipped: bool = False  # True when already in effect; nothing submitted
    tx_hash: str = ""
    reason: str = ""

    @property
    def unresolved(self) -> bool:
        return self.status != WiringStatus.APPLIED

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "action": self.action_id,
            "call": self.call,
            "status": self.status.value if not self.unresolved else "unresolved",
            "skipped": self.skipped,
        }
        if self.tx_hash:
            result["tx_hash"] = self.tx_hash
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass
class WiringReport:
    outcomes: list[WiringOutcome] = field(default_factory=list)

    @property
    def unresolved(self) -> list[WiringOutcome]:
        return [o for o in self.outcomes if o.unresolved]

    @property
    def complete(self) -> bool:
        return not self.unresolved

    def to_dict(self) -> dict[str, Any]:
        return {"complete": self.complete, "actions": [o.to_dict() for o in self.outcomes]}


class WiringEngine:
    def __init__(
        self,
        gateway: LedgerGateway,
        recorder: StateRecorder,
        source: ContractSource,
        *,
        contract_names: Mapping[str, str] | None = None,
        read_workers: int = 1,
    ):
        self.gateway = gateway
        self.recorder = recorder
        self.source = source
        self.contract_names = dict(contract_names or {})
        self.read_workers = max(1, read_workers)

    def _abi(self, action: WiringAction) -> list[dict[str, Any]]:
        try:
            return self.source.load(self.contract_names.get(action.target, action.target)).abi
        except ConfigError as e:
            raise WiringError(action.action_id, str(e)) from e

    def _target_address(self, action: WiringAction, state: DeploymentState) -> str:
        record = state.record(action.target)
        if record is None:
            raise WiringError(action.action_id, f"target {action.target} is not deployed")
        return record.address

    def in_effect(self, action: WiringAction, state: DeploymentState) -> bool | None:
        """Evaluate the idempotency predicate; None when the action has none."""
        if action.check is None:
            return None
        target = self._target_address(action, state)
        try:
            args = resolve_all(action.check.args, state.addresses(), self.gateway.account)
            expected = action.check.expect.resolve(state.addresses(), self.gateway.account)
        except UnresolvedReferenceError as e:
            raise WiringError(action.action_id, str(e)) from e
        try:
            value = self.gateway.read_view(target, self._abi(action), action.check.view, args)
        except GatewayError as e:
            raise WiringError(action.action_id, f"check {action.check.view} failed: {e}") from e
        return values_equal(value, expected)

    def _prefetch(self, actions: Sequence[WiringAction], state: DeploymentState) -> dict[str, bool | WiringError]:
        """Evaluate predicates concurrently. Reads only; submissions stay sequential."""
        checkable = [a for a in actions if a.check is not None and state.is_deployed(a.target)]
        if self.read_workers <= 1 or len(checkable) <= 1:
            return {}

        def evaluate(action: WiringAction) -> bool | WiringError:
            try:
                return bool(self.in_effect(action, state))
            except WiringError as e:
                return e

        with ThreadPoolExecutor(max_workers=self.read_workers) as pool:
            results = list(pool.map(evaluate, checkable))
        return {a.action_id: r for a, r in zip(checkable, results)}

    def apply(self, actions: Sequence[WiringAction], state: DeploymentState) -> tuple[WiringReport, DeploymentState]:
        """Apply actions in order; failures are reported and never stop later actions."""
        report = WiringReport()
        prefetched = self._prefetch(actions, state)

        for action in actions:
            try:
                outcome, state = self._apply_one(action, state, prefetched.get(action.action_id))
            except WiringError as e:
                logger.error("wiring %s unresolved: %s", action.action_id, e.reason)
                outcome = WiringOutcome(
                    action_id=action.action_id,
                    call=action.describe(),
                    status=WiringStatus.NOT_APPLIED,
                    reason=e.reason,
                )
            report.outcomes.append(outcome)

        return report, state

    def _apply_one(
        self,
        action: WiringAction,
        state: DeploymentState,
        prefetched: bool | WiringError | None,
    ) -> tuple[WiringOutcome, DeploymentState]:
        target = self._target_address(action, state)

        if isinstance(prefetched, WiringError):
            raise prefetched
        in_effect = prefetched if prefetched is not None else self.in_effect(action, state)

        already = in_effect is True or (in_effect is None and state.is_applied(action.action_id))
        if already:
            if not state.is_applied(action.action_id):
                state = self.recorder.mark_applied(state, action.action_id)
            logger.info("wiring %s already in effect, skipping", action.action_id)
            return WiringOutcome(action.action_id, action.describe(), WiringStatus.APPLIED, skipped=True), state

        try:
            args = resolve_all(action.args, state.addresses(), self.gateway.account)
        except UnresolvedReferenceError as e:
            raise WiringError(action.action_id, str(e)) from e

        request = CallRequest(target=target, abi=self._abi(action), function=action.call, args=args)
        try:
            handle = self.gateway.call(request)
        except GatewayError as e:
            raise WiringError(action.action_id, f"submission failed: {e}") from e
        try:
            confirmation = self.gateway.confirm(handle)
        except GatewayError as e:
            raise WiringError(action.action_id, f"confirmation of {handle.tx_hash} failed: {e}") from e

        state = self.recorder.mark_applied(state, action.action_id, confirmation.tx_hash)
        logger.info("wiring %s applied in block %d", action.action_id, confirmation.block_number)
        return (
            WiringOutcome(action.action_id, action.describe(), WiringStatus.APPLIED, tx_hash=confirmation.tx_hash),
            state,
        )
