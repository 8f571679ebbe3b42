"""
Project configuration.

A project is described by one file, deployctl.toml (or deployctl.yaml):

    [defaults]
    artifacts_dir = "artifacts"
    state_dir = "deployments"
    export_dirs = ["frontend/src/contracts", "backend/src/contracts/abis"]
    gas_margin = 0.10
    min_balance = "0.01 ether"
    network = "fuji"

    [networks.fuji]
    rpc_url = "https://api.avax-test.network/ext/bc/C/rpc"
    chain_id = 43113
    key = "env:DEPLOYER_PRIVATE_KEY"
    explorer_url = "https://testnet.snowtrace.io"
    currency = "AVAX"
    confirmations = 6

    [[artifacts]]
    name = "BoundaryNFT"
    args = [{ address_of = "EventFactory" }]

      [[artifacts.wiring]]
      name = "set-nft"
      target = "EventFactory"
      call = "setBoundaryNFT"
      args = [{ address_of = "BoundaryNFT" }]
      check = { view = "boundaryNFT", expect = { address_of = "BoundaryNFT" } }

Relative paths resolve against the directory holding the file.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml
from web3 import Web3

from .errors import ConfigError
from .exporter import NetworkInfo
from .registry import ArtifactRegistry, registry_from_dicts
from .secrets import EnvSecretsProvider, resolve_secret

logger = logging.getLogger(__name__)

CONFIG_ENV = "DEPLOYCTL_CONFIG"
NETWORK_ENV = "DEPLOYCTL_NETWORK"
CONFIG_NAMES = ("deployctl.toml", "deployctl.yaml", "deployctl.yml")

DEFAULT_KEY_REF = "env:DEPLOYER_PRIVATE_KEY"


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_amount(value: Any, where: str) -> int:
    """Parse a native-currency amount: an integer in wei, or "<number> <unit>" such as "0.1 ether"."""
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ConfigError(f"{where}: expected an amount, got {value!r}")
    if isinstance(value, int):
        return value
    parts = str(value).split()
    if len(parts) == 1:
        parts.append("wei")
    if len(parts) != 2:
        raise ConfigError(f"{where}: cannot parse amount {value!r}")
    number, unit = parts
    try:
        return int(Web3.to_wei(Decimal(number), unit.lower()))
    except (InvalidOperation, ValueError) as e:
        raise ConfigError(f"{where}: cannot parse amount {value!r}: {e}") from e


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    rpc_url: str
    chain_id: int | None = None
    key: str = DEFAULT_KEY_REF
    explorer_url: str = ""
    currency: str = ""
    min_balance: int = 0
    gas_margin: float = 0.10
    gas_price: int | None = None
    poa: bool = False
    confirm_timeout: float = 120.0
    confirmations: int = 1  # blocks deep, inclusion block included

    def info(self) -> NetworkInfo:
        return NetworkInfo(
            name=self.name,
            chain_id=self.chain_id,
            explorer_url=self.explorer_url,
            currency=self.currency,
        )

    def resolved_rpc_url(self) -> str:
        """The endpoint, with an "env:VAR" reference resolved."""
        if EnvSecretsProvider().supports(self.rpc_url):
            return resolve_secret(self.rpc_url)
        return self.rpc_url

    def private_key(self) -> str:
        return resolve_secret(self.key)


@dataclass
class ProjectConfig:
    path: Path
    registry: ArtifactRegistry
    networks: dict[str, NetworkConfig] = field(default_factory=dict)
    artifacts_dir: Path = Path("artifacts")
    state_dir: Path = Path("deployments")
    export_dirs: list[Path] = field(default_factory=list)
    read_workers: int = 1
    default_network: str | None = None

    @property
    def root(self) -> Path:
        return self.path.parent

    def network(self, name: str | None = None) -> NetworkConfig:
        """Select a network: explicit name, then DEPLOYCTL_NETWORK, then the configured default."""
        chosen = name or os.environ.get(NETWORK_ENV) or self.default_network
        if not chosen:
            if len(self.networks) == 1:
                return next(iter(self.networks.values()))
            raise ConfigError(f"no network selected; pass --network or set {NETWORK_ENV}")
        if chosen not in self.networks:
            known = ", ".join(sorted(self.networks)) or "none"
            raise ConfigError(f"unknown network {chosen!r} (configured: {known})")
        return self.networks[chosen]


def find_config(explicit: Path | None = None, start: Path | None = None) -> Path:
    """Locate the project file: --config, DEPLOYCTL_CONFIG, or deployctl.* walking up from start."""
    if explicit is None and os.environ.get(CONFIG_ENV):
        explicit = Path(os.environ[CONFIG_ENV])
    if explicit is not None:
        if not explicit.is_file():
            raise ConfigError(f"config file not found: {explicit}")
        return explicit

    cur = (start or Path.cwd()).resolve()
    for p in (cur, *cur.parents):
        for name in CONFIG_NAMES:
            candidate = p / name
            if candidate.is_file():
                return candidate
    raise ConfigError(f"no {CONFIG_NAMES[0]} found; pass --config or set {CONFIG_ENV}")


def _read(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: invalid YAML: {e}") from e
    else:
        import tomllib

        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"{path}: invalid TOML: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a table")
    return data


def _parse_network(name: str, raw: dict[str, Any], defaults: dict[str, Any]) -> NetworkConfig:
    where = f"networks.{name}"
    rpc_url = str(raw.get("rpc_url", "")).strip()
    if not rpc_url:
        raise ConfigError(f"{where}.rpc_url is required")

    chain_id = raw.get("chain_id")
    gas_price = raw.get("gas_price")
    try:
        network = NetworkConfig(
            name=name,
            rpc_url=rpc_url,
            chain_id=int(chain_id) if chain_id is not None else None,
            key=str(raw.get("key", defaults.get("key", DEFAULT_KEY_REF))),
            explorer_url=str(raw.get("explorer_url", "")),
            currency=str(raw.get("currency", "")),
            min_balance=parse_amount(raw.get("min_balance", defaults.get("min_balance")), f"{where}.min_balance"),
            gas_margin=float(raw.get("gas_margin", defaults.get("gas_margin", 0.10))),
            gas_price=parse_amount(gas_price, f"{where}.gas_price") if gas_price is not None else None,
            poa=bool(raw.get("poa", False)),
            confirm_timeout=float(raw.get("confirm_timeout", defaults.get("confirm_timeout", 120.0))),
            confirmations=int(raw.get("confirmations", defaults.get("confirmations", 1))),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}: {e}") from e
    if network.confirmations < 1:
        raise ConfigError(f"{where}.confirmations must be at least 1")
    return network


def load_config(path: Path) -> ProjectConfig:
    data = _read(path)
    root = path.parent
    defaults = _coerce_dict(data.get("defaults"))

    networks_raw = _coerce_dict(data.get("networks"))
    if not networks_raw:
        raise ConfigError(f"{path}: at least one [networks.<name>] table is required")
    networks = {name: _parse_network(name, _coerce_dict(raw), defaults) for name, raw in networks_raw.items()}

    registry = registry_from_dicts(data.get("artifacts") or [])

    export_raw = defaults.get("export_dirs", [])
    if isinstance(export_raw, str):
        export_raw = [export_raw]

    default_network = defaults.get("network")
    config = ProjectConfig(
        path=path,
        registry=registry,
        networks=networks,
        artifacts_dir=root / str(defaults.get("artifacts_dir", "artifacts")),
        state_dir=root / str(defaults.get("state_dir", "deployments")),
        export_dirs=[root / str(d) for d in export_raw],
        read_workers=int(defaults.get("read_workers", 1)),
        default_network=str(default_network) if default_network else None,
    )
    logger.debug("loaded %s: %d artifacts, networks %s", path, len(registry), ", ".join(networks))
    return config
