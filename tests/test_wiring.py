"""Tests for post-deployment wiring."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from deployctl.compiled import ContractSource
from deployctl.models import AddressOf, DeploymentRecord, WiringAction, WiringStatus
from deployctl.state import DeploymentState, StateRecorder
from deployctl.wiring import WiringEngine

from conftest import ACCOUNT, FakeGateway, claim_spec, nft_spec

FACTORY = "0x" + "0" * 39 + "1"
CLAIM = "0x" + "0" * 39 + "2"
NFT = "0x" + "0" * 39 + "3"


def _deployed(recorder: StateRecorder, *names_and_addresses: tuple[str, str]) -> DeploymentState:
    state = recorder.load("fuji")
    for i, (name, address) in enumerate(names_and_addresses):
        state = recorder.mark_deployed(
            state,
            DeploymentRecord(
                network="fuji",
                artifact=name,
                address=address,
                tx_hash=f"0x{i:064x}",
                resource_used=100_000,
                block_number=10 + i,
                deployed_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            ),
        )
    return state


@pytest.fixture
def state(recorder: StateRecorder) -> DeploymentState:
    return _deployed(recorder, ("EventFactory", FACTORY), ("ClaimVerification", CLAIM), ("BoundaryNFT", NFT))


@pytest.fixture
def actions() -> list[WiringAction]:
    return [*nft_spec().wiring, *claim_spec().wiring]


@pytest.fixture
def engine(gateway: FakeGateway, recorder: StateRecorder, source: ContractSource) -> WiringEngine:
    return WiringEngine(gateway, recorder, source)


def test_applies_actions_and_records_them(
    engine: WiringEngine, gateway: FakeGateway, recorder: StateRecorder, state: DeploymentState, actions: list
) -> None:
    report, state = engine.apply(actions, state)

    assert report.complete
    assert [o.action_id for o in report.outcomes] == ["BoundaryNFT.factory-nft", "ClaimVerification.trusted-signer"]
    assert all(o.tx_hash and not o.skipped for o in report.outcomes)

    assert [(c.target, c.function, c.args) for c in gateway.calls] == [
        (FACTORY, "setBoundaryNFT", [NFT]),
        (CLAIM, "setTrustedSigner", [ACCOUNT, True]),
    ]
    persisted = recorder.load("fuji")
    assert persisted.is_applied("BoundaryNFT.factory-nft")
    assert persisted.is_applied("ClaimVerification.trusted-signer")


def test_second_apply_submits_nothing(
    engine: WiringEngine, gateway: FakeGateway, state: DeploymentState, actions: list
) -> None:
    _, state = engine.apply(actions, state)

    report, _ = engine.apply(actions, state)

    assert report.complete
    assert all(o.skipped for o in report.outcomes)
    assert len(gateway.calls) == 2


def test_predicate_already_true_is_skipped_and_recorded(
    engine: WiringEngine, gateway: FakeGateway, recorder: StateRecorder, state: DeploymentState, actions: list
) -> None:
    gateway.set_view(FACTORY, "boundaryNFT", (), NFT)

    report, _ = engine.apply(actions, state)

    first, second = report.outcomes
    assert first.skipped and first.status == WiringStatus.APPLIED
    assert not second.skipped
    assert [c.function for c in gateway.calls] == ["setTrustedSigner"]
    assert recorder.load("fuji").is_applied("BoundaryNFT.factory-nft")


def test_predicate_reread_even_when_recorded_applied(
    engine: WiringEngine, gateway: FakeGateway, recorder: StateRecorder, state: DeploymentState, actions: list
) -> None:
    state = recorder.mark_applied(state, "BoundaryNFT.factory-nft", "0xold")

    report, _ = engine.apply(actions[:1], state)

    assert report.complete
    assert not report.outcomes[0].skipped
    assert [c.function for c in gateway.calls] == ["setBoundaryNFT"]


def test_failed_call_is_reported_and_later_actions_proceed(
    engine: WiringEngine, gateway: FakeGateway, recorder: StateRecorder, state: DeploymentState, actions: list
) -> None:
    gateway.fail_calls.add("setBoundaryNFT")

    report, _ = engine.apply(actions, state)

    assert not report.complete
    (unresolved,) = report.unresolved
    assert unresolved.action_id == "BoundaryNFT.factory-nft"
    assert "submission failed" in unresolved.reason
    assert unresolved.to_dict()["status"] == "unresolved"

    persisted = recorder.load("fuji")
    assert not persisted.is_applied("BoundaryNFT.factory-nft")
    assert persisted.is_applied("ClaimVerification.trusted-signer")


def test_confirmation_timeout_is_unresolved(
    engine: WiringEngine, gateway: FakeGateway, state: DeploymentState, actions: list
) -> None:
    gateway.timeout.add("setTrustedSigner")

    report, _ = engine.apply(actions, state)

    assert [o.action_id for o in report.unresolved] == ["ClaimVerification.trusted-signer"]
    assert "not confirmed" in report.unresolved[0].reason


def test_target_not_deployed(
    engine: WiringEngine, gateway: FakeGateway, recorder: StateRecorder, actions: list
) -> None:
    state = _deployed(recorder, ("BoundaryNFT", NFT), ("ClaimVerification", CLAIM))

    report, _ = engine.apply(actions, state)

    assert report.unresolved[0].reason == "target EventFactory is not deployed"
    assert [c.function for c in gateway.calls] == ["setTrustedSigner"]


def test_view_failure_is_unresolved(
    engine: WiringEngine, gateway: FakeGateway, state: DeploymentState, actions: list
) -> None:
    gateway.fail_views.add("trustedSigners")

    report, _ = engine.apply(actions, state)

    (unresolved,) = report.unresolved
    assert unresolved.reason.startswith("check trustedSigners failed")
    assert [c.function for c in gateway.calls] == ["setBoundaryNFT"]


def test_action_without_check_uses_recorded_flag(
    engine: WiringEngine, gateway: FakeGateway, state: DeploymentState
) -> None:
    grant = WiringAction(
        owner="BoundaryNFT",
        name="organizer-role",
        target="EventFactory",
        call="grantOrganizerRole",
        args=(AddressOf("BoundaryNFT"),),
    )

    report, state = engine.apply([grant], state)
    assert report.complete and not report.outcomes[0].skipped

    report, _ = engine.apply([grant], state)
    assert report.outcomes[0].skipped
    assert len(gateway.calls) == 1


def test_concurrent_predicate_reads(
    gateway: FakeGateway, recorder: StateRecorder, source: ContractSource, state: DeploymentState, actions: list
) -> None:
    engine = WiringEngine(gateway, recorder, source, read_workers=4)

    report, _ = engine.apply(actions, state)

    assert report.complete
    # one read per predicate, all before any submission
    assert sorted(view for _, view, _ in gateway.view_reads) == ["boundaryNFT", "trustedSigners"]
    assert [c.function for c in gateway.calls] == ["setBoundaryNFT", "setTrustedSigner"]


def test_report_to_dict(engine: WiringEngine, state: DeploymentState, actions: list) -> None:
    report, _ = engine.apply(actions, state)

    data = report.to_dict()

    assert data["complete"] is True
    assert data["actions"][0]["call"] == "EventFactory.setBoundaryNFT(address_of(BoundaryNFT))"
    assert data["actions"][0]["status"] == "applied"
