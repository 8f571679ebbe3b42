"""
Compiled contract artifacts (build output from Hardhat or Foundry).

deployctl never compiles; it reads the ABI and creation bytecode that a
build tool already produced. Both layouts are supported:

    <artifacts_dir>/**/<Name>.sol/<Name>.json   {"abi": [...], "bytecode": "0x..."}
    <out_dir>/<Name>.sol/<Name>.json            {"abi": [...], "bytecode": {"object": "0x..."}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConfigError


@dataclass(frozen=True)
class CompiledContract:
    name: str
    abi: list[dict[str, Any]]
    bytecode: str
    source_path: Path | None = None

    def entries(self, kind: str) -> list[dict[str, Any]]:
        return [item for item in self.abi if item.get("type") == kind]

    def function_signatures(self) -> list[str]:
        return [_signature(item) for item in self.entries("function")]

    def event_signatures(self) -> list[str]:
        return [_signature(item) for item in self.entries("event")]


def _canonical_type(param: dict[str, Any]) -> str:
    typ = str(param.get("type", ""))
    if typ.startswith("tuple"):
        inner = ",".join(_canonical_type(c) for c in param.get("components", []))
        return f"({inner}){typ[len('tuple'):]}"
    return typ


def _signature(item: dict[str, Any]) -> str:
    params = ",".join(_canonical_type(p) for p in item.get("inputs", []))
    return f"{item.get('name', '')}({params})"


def parse_compiled(name: str, data: dict[str, Any], source_path: Path | None = None) -> CompiledContract:
    abi = data.get("abi")
    if not isinstance(abi, list):
        raise ConfigError(f"compiled artifact for {name} has no abi list")

    bytecode = data.get("bytecode", "")
    if isinstance(bytecode, dict):
        bytecode = bytecode.get("object", "")
    bytecode = str(bytecode or "")
    if bytecode and not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode

    return CompiledContract(name=name, abi=abi, bytecode=bytecode, source_path=source_path)


@dataclass
class ContractSource:
    """Loads compiled contracts by name from a build directory (cached)."""

    artifacts_dir: Path
    _cache: dict[str, CompiledContract] = field(default_factory=dict, repr=False)

    def _find(self, name: str) -> Path | None:
        if not self.artifacts_dir.is_dir():
            return None
        preferred = sorted(self.artifacts_dir.rglob(f"{name}.sol/{name}.json"))
        if preferred:
            return preferred[0]
        fallback = sorted(
            p for p in self.artifacts_dir.rglob(f"{name}.json")
            if "build-info" not in p.parts and not p.name.endswith(".dbg.json")
        )
        return fallback[0] if fallback else None

    def load(self, name: str) -> CompiledContract:
        if name in self._cache:
            return self._cache[name]

        path = self._find(name)
        if path is None:
            raise ConfigError(f"compiled artifact not found for {name} under {self.artifacts_dir}")

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"unreadable compiled artifact {path}: {e}") from e

        compiled = parse_compiled(name, data, source_path=path)
        self._cache[name] = compiled
        return compiled
