"""
Artifact registry: the validated, ordered set of ArtifactSpecs for a project.

Specs are declared in configuration. Parameters are written as plain values
(literals) or one-key tables:

    {address_of = "EventFactory"}   deployed address of another artifact
    {account = true}                signing account address
    {keccak = "ORGANIZER_ROLE"}     keccak256 of a string (role identifiers)
    {literal = ...}                 explicit literal (for values that are tables)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from web3 import Web3

from .errors import ConfigError
from .models import Account, AddressOf, ArtifactSpec, Check, Literal, ParamResolver, WiringAction


@dataclass
class ArtifactRegistry:
    """Specs in declaration order, checked for unique names and known references."""

    specs: list[ArtifactSpec] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.validate()

    def __iter__(self) -> Iterator[ArtifactSpec]:
        return iter(self.specs)

    def __len__(self) -> int:
        return len(self.specs)

    def wiring_actions(self) -> list[WiringAction]:
        """All wiring actions in declaration order."""
        return [action for spec in self.specs for action in spec.wiring]

    def validate(self) -> None:
        names: set[str] = set()
        for spec in self.specs:
            if not spec.name:
                raise ConfigError("artifact name must not be empty")
            if spec.name in names:
                raise ConfigError(f"duplicate artifact name: {spec.name}")
            names.add(spec.name)

        action_ids: set[str] = set()
        for spec in self.specs:
            for ref in spec.references():
                if ref not in names:
                    raise ConfigError(f"artifact {spec.name!r} references undeclared artifact {ref!r}")
            for action in spec.wiring:
                if action.action_id in action_ids:
                    raise ConfigError(f"duplicate wiring action: {action.action_id}")
                action_ids.add(action.action_id)


# -----------------------------------------------------------------------------
# Parsing from configuration data
# -----------------------------------------------------------------------------


def parse_param(raw: Any) -> ParamResolver:
    if not isinstance(raw, dict):
        return Literal(raw)
    if len(raw) != 1:
        raise ConfigError(f"parameter table must have exactly one key: {raw!r}")

    (kind, value), = raw.items()
    if kind == "address_of":
        return AddressOf(str(value))
    if kind == "account":
        return Account()
    if kind == "keccak":
        return Literal(Web3.to_hex(Web3.keccak(text=str(value))))
    if kind == "literal":
        return Literal(value)
    raise ConfigError(f"unknown parameter kind {kind!r} (expected address_of, account, keccak or literal)")


def _parse_params(raw: Any, where: str) -> tuple[ParamResolver, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigError(f"{where} must be a list")
    return tuple(parse_param(p) for p in raw)


def _parse_check(raw: Any, where: str) -> Check | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigError(f"{where}.check must be a table")
    view = str(raw.get("view", "")).strip()
    if not view:
        raise ConfigError(f"{where}.check.view is required")
    expect = parse_param(raw["expect"]) if "expect" in raw else Literal(True)
    return Check(view=view, args=_parse_params(raw.get("args"), f"{where}.check.args"), expect=expect)


def _parse_wiring(owner: str, raw: dict[str, Any], index: int) -> WiringAction:
    where = f"artifacts.{owner}.wiring[{index}]"
    call = str(raw.get("call", "")).strip()
    if not call:
        raise ConfigError(f"{where}.call is required")
    name = str(raw.get("name", "")).strip() or call
    target = str(raw.get("target", "")).strip() or owner
    return WiringAction(
        owner=owner,
        name=name,
        target=target,
        call=call,
        args=_parse_params(raw.get("args"), f"{where}.args"),
        check=_parse_check(raw.get("check"), where),
    )


def spec_from_dict(raw: dict[str, Any]) -> ArtifactSpec:
    name = str(raw.get("name", "")).strip()
    if not name:
        raise ConfigError("every artifact needs a name")

    wiring_raw = raw.get("wiring") or []
    if not isinstance(wiring_raw, list):
        raise ConfigError(f"artifacts.{name}.wiring must be a list")

    return ArtifactSpec(
        name=name,
        contract=str(raw.get("contract", "") or "").strip(),
        constructor=_parse_params(raw.get("args"), f"artifacts.{name}.args"),
        wiring=tuple(_parse_wiring(name, w, i) for i, w in enumerate(wiring_raw) if isinstance(w, dict)),
    )


def registry_from_dicts(raw_artifacts: list[dict[str, Any]]) -> ArtifactRegistry:
    if not isinstance(raw_artifacts, list) or not raw_artifacts:
        raise ConfigError("at least one [[artifacts]] entry is required")
    return ArtifactRegistry([spec_from_dict(a) for a in raw_artifacts if isinstance(a, dict)])
