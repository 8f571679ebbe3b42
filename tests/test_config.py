"""Tests for project configuration, registry parsing and key references."""

from __future__ import annotations

from pathlib import Path

import pytest
from web3 import Web3

from deployctl.config import find_config, load_config, parse_amount
from deployctl.errors import ConfigError
from deployctl.models import Account, AddressOf, ArtifactSpec, Literal
from deployctl.registry import ArtifactRegistry, parse_param, registry_from_dicts
from deployctl.secrets import CompositeSecretsProvider, EnvSecretsProvider, FileSecretsProvider, resolve_secret


# -----------------------------------------------------------------------------
# Parameters
# -----------------------------------------------------------------------------


def test_parse_param_kinds() -> None:
    assert parse_param(42) == Literal(42)
    assert parse_param("hello") == Literal("hello")
    assert parse_param({"address_of": "EventFactory"}) == AddressOf("EventFactory")
    assert parse_param({"account": True}) == Account()
    assert parse_param({"literal": {"a": 1}}) == Literal({"a": 1})


def test_keccak_param_is_role_hash() -> None:
    resolver = parse_param({"keccak": "ORGANIZER_ROLE"})

    assert isinstance(resolver, Literal)
    assert resolver.value == Web3.to_hex(Web3.keccak(text="ORGANIZER_ROLE"))
    assert resolver.value.startswith("0x") and len(resolver.value) == 66


def test_unknown_param_kind_rejected() -> None:
    with pytest.raises(ConfigError, match="unknown parameter kind"):
        parse_param({"env": "X"})


def test_param_table_needs_one_key() -> None:
    with pytest.raises(ConfigError, match="exactly one key"):
        parse_param({"address_of": "A", "account": True})


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


def test_registry_from_dicts_builds_wiring() -> None:
    registry = registry_from_dicts(
        [
            {"name": "EventFactory"},
            {
                "name": "BoundaryNFT",
                "args": [{"address_of": "EventFactory"}],
                "wiring": [
                    {
                        "target": "EventFactory",
                        "call": "grantOrganizerRole",
                        "args": [{"address_of": "BoundaryNFT"}],
                        "check": {"view": "hasRole", "args": [{"keccak": "ORGANIZER_ROLE"}, {"address_of": "BoundaryNFT"}]},
                    }
                ],
            },
        ]
    )

    (action,) = registry.wiring_actions()
    assert action.action_id == "BoundaryNFT.grantOrganizerRole"
    assert action.target == "EventFactory"
    assert action.check is not None and action.check.expect == Literal(True)
    assert registry.specs[1].references() == ["EventFactory"]


def test_wiring_target_defaults_to_owner() -> None:
    registry = registry_from_dicts([{"name": "ClaimVerification", "wiring": [{"call": "setTrustedSigner"}]}])
    assert registry.wiring_actions()[0].target == "ClaimVerification"


def test_registry_rejects_duplicates_and_unknown_references() -> None:
    with pytest.raises(ConfigError, match="duplicate artifact name"):
        ArtifactRegistry([ArtifactSpec("A"), ArtifactSpec("A")])

    with pytest.raises(ConfigError, match="undeclared artifact 'Ghost'"):
        ArtifactRegistry([ArtifactSpec("A", constructor=(AddressOf("Ghost"),))])


def test_registry_rejects_duplicate_wiring_names() -> None:
    with pytest.raises(ConfigError, match="duplicate wiring action: A.setX"):
        registry_from_dicts([{"name": "A", "wiring": [{"call": "setX"}, {"call": "setX"}]}])


def test_registry_requires_artifacts() -> None:
    with pytest.raises(ConfigError, match="at least one"):
        registry_from_dicts([])


def test_wiring_call_required() -> None:
    with pytest.raises(ConfigError, match=r"wiring\[0\]\.call is required"):
        registry_from_dicts([{"name": "A", "wiring": [{"name": "x"}]}])


# -----------------------------------------------------------------------------
# Project file
# -----------------------------------------------------------------------------


def test_load_toml_project(project: Path) -> None:
    config = load_config(project)

    assert [s.name for s in config.registry] == ["EventFactory", "BoundaryNFT", "ClaimVerification"]
    assert config.artifacts_dir == project.parent / "artifacts"
    assert config.state_dir == project.parent / "deployments"
    assert config.export_dirs == [project.parent / "out/frontend", project.parent / "out/backend"]

    fuji = config.network()
    assert fuji.name == "fuji"
    assert fuji.chain_id == 43113
    assert fuji.min_balance == 10**16
    assert fuji.gas_price == 25 * 10**9
    assert fuji.key == "env:DEPLOYER_PRIVATE_KEY"
    assert fuji.info().explorer_link("0xabc") == "https://testnet.snowtrace.io/address/0xabc"


def test_network_override_of_defaults(project: Path) -> None:
    somnia = load_config(project).network("somniaTestnet")
    assert somnia.min_balance == 0
    assert somnia.currency == "STT"


def test_network_selected_from_environment(project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEPLOYCTL_NETWORK", "somniaTestnet")
    assert load_config(project).network().name == "somniaTestnet"


def test_unknown_network(project: Path) -> None:
    with pytest.raises(ConfigError, match="unknown network 'mainnet'"):
        load_config(project).network("mainnet")


def test_rpc_url_reference_resolved(project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    network = load_config(project).network("somniaTestnet")

    monkeypatch.delenv("SOMNIA_RPC_URL", raising=False)
    with pytest.raises(ConfigError, match="env:SOMNIA_RPC_URL is not set"):
        network.resolved_rpc_url()

    monkeypatch.setenv("SOMNIA_RPC_URL", "https://dream-rpc.somnia.network")
    assert network.resolved_rpc_url() == "https://dream-rpc.somnia.network"


def test_load_yaml_project(tmp_path: Path) -> None:
    path = tmp_path / "deployctl.yaml"
    path.write_text(
        "\n".join(
            [
                "networks:",
                "  local:",
                "    rpc_url: http://127.0.0.1:8545",
                "artifacts:",
                "  - name: Token",
                "    args: [1000000]",
            ]
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.network().name == "local"
    (token,) = config.registry
    assert token.constructor == (Literal(1000000),)


def test_invalid_toml_is_config_error(tmp_path: Path) -> None:
    path = tmp_path / "deployctl.toml"
    path.write_text("[networks\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid TOML"):
        load_config(path)


def test_network_requires_rpc_url(tmp_path: Path) -> None:
    path = tmp_path / "deployctl.toml"
    path.write_text('[networks.x]\nchain_id = 1\n[[artifacts]]\nname = "A"\n', encoding="utf-8")
    with pytest.raises(ConfigError, match="networks.x.rpc_url is required"):
        load_config(path)


def test_confirmation_depth_from_defaults_and_network(tmp_path: Path) -> None:
    path = tmp_path / "deployctl.toml"
    path.write_text(
        "\n".join(
            [
                "[defaults]",
                "confirmations = 6",
                "[networks.avalanche]",
                'rpc_url = "http://127.0.0.1:9650"',
                "[networks.local]",
                'rpc_url = "http://127.0.0.1:8545"',
                "confirmations = 1",
                "[[artifacts]]",
                'name = "A"',
            ]
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.network("avalanche").confirmations == 6
    assert config.network("local").confirmations == 1


def test_confirmation_depth_defaults_to_receipt_only(project: Path) -> None:
    assert load_config(project).network("fuji").confirmations == 1


def test_zero_confirmations_rejected(tmp_path: Path) -> None:
    path = tmp_path / "deployctl.toml"
    path.write_text('[networks.x]\nrpc_url = "http://127.0.0.1:8545"\nconfirmations = 0\n[[artifacts]]\nname = "A"\n', encoding="utf-8")
    with pytest.raises(ConfigError, match="networks.x.confirmations must be at least 1"):
        load_config(path)


def test_find_config_walks_up(project: Path) -> None:
    nested = project.parent / "a" / "b"
    nested.mkdir(parents=True)
    assert find_config(start=nested) == project.resolve()


def test_find_config_from_environment(project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEPLOYCTL_CONFIG", str(project))
    assert find_config() == project


def test_find_config_missing_explicit(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="config file not found"):
        find_config(tmp_path / "nope.toml")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, 0),
        (12345, 12345),
        ("0.01 ether", 10**16),
        ("25 gwei", 25 * 10**9),
        ("7", 7),
    ],
)
def test_parse_amount(value: object, expected: int) -> None:
    assert parse_amount(value, "x") == expected


def test_parse_amount_rejects_garbage() -> None:
    with pytest.raises(ConfigError):
        parse_amount("lots of ether", "defaults.min_balance")


# -----------------------------------------------------------------------------
# Key references
# -----------------------------------------------------------------------------


def test_env_reference(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEPLOYER_PRIVATE_KEY", "0x" + "11" * 32)
    assert resolve_secret("env:DEPLOYER_PRIVATE_KEY") == "0x" + "11" * 32


def test_missing_env_reference(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DEPLOYER_PRIVATE_KEY", raising=False)
    with pytest.raises(ConfigError, match="is not set"):
        resolve_secret("env:DEPLOYER_PRIVATE_KEY")


def test_file_reference(tmp_path: Path) -> None:
    (tmp_path / "key.txt").write_text("0xdeadbeef\n", encoding="utf-8")
    provider = CompositeSecretsProvider([EnvSecretsProvider(), FileSecretsProvider(base_dir=tmp_path)])

    assert resolve_secret("file:key.txt", provider) == "0xdeadbeef"


def test_raw_key_refused() -> None:
    with pytest.raises(ConfigError, match="must be configured as a reference"):
        resolve_secret("0x" + "22" * 32)


def test_unsupported_reference() -> None:
    with pytest.raises(ConfigError, match="unsupported secret reference"):
        resolve_secret("vault:deployer")
