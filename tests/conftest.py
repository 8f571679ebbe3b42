"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from deployctl.compiled import ContractSource
from deployctl.errors import ConfirmationTimeout, GatewayError, TransactionNotLanded
from deployctl.exporter import NetworkInfo
from deployctl.ledger import CallRequest, Confirmation, CreationRequest, TxHandle
from deployctl.models import Account, AddressOf, ArtifactSpec, Check, Literal, WiringAction
from deployctl.registry import ArtifactRegistry
from deployctl.state import StateRecorder

ACCOUNT = "0x" + "ab" * 20
CHAIN_ID = 43113
NETWORK = NetworkInfo(name="fuji", chain_id=CHAIN_ID, explorer_url="https://testnet.snowtrace.io", currency="AVAX")

# A successful call sets a view: function -> (view, number of leading args that key the view)
DEFAULT_EFFECTS = {
    "setBoundaryNFT": ("boundaryNFT", 0),
    "setClaimVerification": ("claimVerification", 0),
    "setTrustedSigner": ("trustedSigners", 1),
}


def _norm(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


class FakeGateway:
    """In-memory ledger. Addresses and hashes are sequential and deterministic."""

    def __init__(
        self,
        *,
        account: str = ACCOUNT,
        chain_id: int = CHAIN_ID,
        balance: int = 10**20,
        fee: int | None = None,
        estimate: int = 100_000,
    ):
        self.account = account
        self._chain_id = chain_id
        self.balance = balance
        self.fee = fee
        self.default_estimate = estimate
        self.estimates: dict[str, int] = {}

        self.fail_estimate: set[str] = set()
        self.fail_submit: set[str] = set()
        self.timeout: set[str] = set()  # artifact names or function names
        self.fail_calls: set[str] = set()
        self.fail_views: set[str] = set()
        self.fail_balance = False

        self.effects = dict(DEFAULT_EFFECTS)
        self.views: dict[tuple, Any] = {}
        self.confirmations: dict[str, Confirmation] = {}

        self.submissions: list[CreationRequest] = []
        self.calls: list[CallRequest] = []
        self.view_reads: list[tuple] = []
        self._counter = 0

    # reads

    def chain_id(self) -> int:
        return self._chain_id

    def get_balance(self, account: str | None = None) -> int:
        if self.fail_balance:
            raise GatewayError("connection refused")
        return self.balance

    def fee_per_unit(self) -> int | None:
        return self.fee

    def estimate_cost(self, request: CreationRequest | CallRequest) -> int:
        if isinstance(request, CreationRequest):
            if request.artifact in self.fail_estimate:
                raise GatewayError("execution reverted")
            return self.estimates.get(request.artifact, self.default_estimate)
        return 50_000

    def set_view(self, target: str, view: str, args: tuple, value: Any) -> None:
        self.views[(target.lower(), view, tuple(_norm(a) for a in args))] = value

    def read_view(self, target: str, abi: list[dict[str, Any]], view: str, args: list[Any]) -> Any:
        self.view_reads.append((target, view, tuple(args)))
        if view in self.fail_views:
            raise GatewayError(f"call to {view} reverted")
        return self.views.get((target.lower(), view, tuple(_norm(a) for a in args)))

    # writes

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    def submit(self, request: CreationRequest) -> TxHandle:
        if request.artifact in self.fail_submit:
            raise GatewayError("nonce too low")
        self.submissions.append(request)
        n = self._next()
        tx_hash = f"0x{n:064x}"
        self.confirmations[tx_hash] = Confirmation(
            tx_hash=tx_hash,
            block_number=1000 + n,
            resource_used=request.gas_limit or 0,
            address=f"0x{n:040x}",
        )
        return TxHandle(tx_hash, label=request.artifact)

    def call(self, request: CallRequest) -> TxHandle:
        self.calls.append(request)
        if request.function in self.fail_calls:
            raise GatewayError("execution reverted: AccessControl")
        n = self._next()
        tx_hash = f"0x{n:064x}"
        self.confirmations[tx_hash] = Confirmation(tx_hash=tx_hash, block_number=1000 + n, resource_used=50_000)
        if request.function in self.effects:
            view, keyed = self.effects[request.function]
            value = request.args[keyed] if len(request.args) > keyed else True
            self.set_view(request.target, view, tuple(request.args[:keyed]), value)
        return TxHandle(tx_hash, label=request.function)

    def confirm(self, handle: TxHandle) -> Confirmation:
        if handle.label in self.timeout:
            raise ConfirmationTimeout(handle.tx_hash, 1.0)
        if handle.tx_hash not in self.confirmations:
            raise TransactionNotLanded(f"transaction {handle.tx_hash} not found")
        return self.confirmations[handle.tx_hash]


# -----------------------------------------------------------------------------
# Compiled artifacts
# -----------------------------------------------------------------------------


def _fn(name: str, inputs: list[str], outputs: list[str] | None = None, mutability: str = "nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs)],
        "outputs": [{"name": "", "type": t} for t in (outputs or [])],
        "stateMutability": mutability,
    }


FACTORY_ABI = [
    {"type": "constructor", "inputs": [], "stateMutability": "nonpayable"},
    _fn("setBoundaryNFT", ["address"]),
    _fn("setClaimVerification", ["address"]),
    _fn("grantOrganizerRole", ["address"]),
    _fn("boundaryNFT", [], ["address"], "view"),
    _fn("claimVerification", [], ["address"], "view"),
    _fn("hasRole", ["bytes32", "address"], ["bool"], "view"),
    {
        "type": "event",
        "name": "EventCreated",
        "anonymous": False,
        "inputs": [
            {"name": "eventId", "type": "uint256", "indexed": True},
            {"name": "organizer", "type": "address", "indexed": True},
        ],
    },
]

NFT_ABI = [
    {"type": "constructor", "inputs": [{"name": "factory", "type": "address"}], "stateMutability": "nonpayable"},
    _fn("mintBoundary", ["uint256", "address"]),
]

CLAIM_ABI = [
    _fn("setTrustedSigner", ["address", "bool"]),
    _fn("trustedSigners", ["address"], ["bool"], "view"),
]


def write_compiled(artifacts_dir: Path, name: str, abi: list[dict], bytecode: str = "0x6080604052") -> Path:
    path = artifacts_dir / "contracts" / f"{name}.sol" / f"{name}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"contractName": name, "abi": abi, "bytecode": bytecode}), encoding="utf-8")
    return path


@pytest.fixture
def artifacts_dir(tmp_path: Path) -> Path:
    root = tmp_path / "artifacts"
    write_compiled(root, "EventFactory", FACTORY_ABI)
    write_compiled(root, "BoundaryNFT", NFT_ABI)
    write_compiled(root, "ClaimVerification", CLAIM_ABI)
    return root


@pytest.fixture
def source(artifacts_dir: Path) -> ContractSource:
    return ContractSource(artifacts_dir)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "deployments"


@pytest.fixture
def recorder(state_dir: Path) -> StateRecorder:
    return StateRecorder(state_dir)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


# -----------------------------------------------------------------------------
# Specs: Factory, Asset (needs Factory), Verifier (independent)
# -----------------------------------------------------------------------------


def factory_spec() -> ArtifactSpec:
    return ArtifactSpec(name="EventFactory")


def nft_spec() -> ArtifactSpec:
    return ArtifactSpec(
        name="BoundaryNFT",
        constructor=(AddressOf("EventFactory"),),
        wiring=(
            WiringAction(
                owner="BoundaryNFT",
                name="factory-nft",
                target="EventFactory",
                call="setBoundaryNFT",
                args=(AddressOf("BoundaryNFT"),),
                check=Check(view="boundaryNFT", expect=AddressOf("BoundaryNFT")),
            ),
        ),
    )


def claim_spec() -> ArtifactSpec:
    return ArtifactSpec(
        name="ClaimVerification",
        wiring=(
            WiringAction(
                owner="ClaimVerification",
                name="trusted-signer",
                target="ClaimVerification",
                call="setTrustedSigner",
                args=(Account(), Literal(True)),
                check=Check(view="trustedSigners", args=(Account(),)),
            ),
        ),
    )


@pytest.fixture
def specs() -> list[ArtifactSpec]:
    return [factory_spec(), nft_spec(), claim_spec()]


@pytest.fixture
def registry(specs: list[ArtifactSpec]) -> ArtifactRegistry:
    return ArtifactRegistry(specs)


PROJECT_TOML = """
[defaults]
artifacts_dir = "artifacts"
state_dir = "deployments"
export_dirs = ["out/frontend", "out/backend"]
min_balance = "0.01 ether"
network = "fuji"

[networks.fuji]
rpc_url = "http://127.0.0.1:8545"
chain_id = 43113
explorer_url = "https://testnet.snowtrace.io"
currency = "AVAX"
gas_price = "25 gwei"

[networks.somniaTestnet]
rpc_url = "env:SOMNIA_RPC_URL"
chain_id = 50312
currency = "STT"
min_balance = 0

[[artifacts]]
name = "EventFactory"

[[artifacts]]
name = "BoundaryNFT"
args = [{ address_of = "EventFactory" }]

  [[artifacts.wiring]]
  name = "factory-nft"
  target = "EventFactory"
  call = "setBoundaryNFT"
  args = [{ address_of = "BoundaryNFT" }]
  check = { view = "boundaryNFT", expect = { address_of = "BoundaryNFT" } }

[[artifacts]]
name = "ClaimVerification"

  [[artifacts.wiring]]
  name = "trusted-signer"
  call = "setTrustedSigner"
  args = [{ account = true }, true]
  check = { view = "trustedSigners", args = [{ account = true }] }
"""


@pytest.fixture
def project(tmp_path: Path, artifacts_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A project directory with deployctl.toml and compiled artifacts; returns the config path."""
    monkeypatch.delenv("DEPLOYCTL_NETWORK", raising=False)
    monkeypatch.delenv("DEPLOYCTL_CONFIG", raising=False)
    config_path = tmp_path / "deployctl.toml"
    config_path.write_text(PROJECT_TOML, encoding="utf-8")
    return config_path
