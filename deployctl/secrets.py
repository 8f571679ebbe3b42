"""
Signing key references.

Keys are configured as references (e.g. "env:DEPLOYER_PRIVATE_KEY"), never
as raw values, so a project file can be committed and state files, logs and
audit entries only ever carry the reference.

The reference format is: "<provider>:<key>"
- env:VAR_NAME - environment variable (a .env file is loaded by the CLI)
- file:PATH - first line of a file, e.g. a mounted secret
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Protocol

from .errors import ConfigError

_RAW_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


class SecretsProvider(Protocol):
    """Protocol for resolving secret references to values."""

    def get(self, ref: str) -> str | None:
        """
        Resolve a secret reference to its value.

        Args:
            ref: Secret reference (e.g., "env:DEPLOYER_PRIVATE_KEY")

        Returns:
            The secret value, or None if not found.
        """
        ...

    def supports(self, ref: str) -> bool:
        ...


class EnvSecretsProvider:
    """
    Resolve secrets from environment variables.

    Example: "env:DEPLOYER_PRIVATE_KEY" resolves to os.environ["DEPLOYER_PRIVATE_KEY"]
    """

    PREFIX = "env:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        value = os.environ.get(ref[len(self.PREFIX) :])
        return value or None


class FileSecretsProvider:
    """Resolve "file:PATH" to the first line of the file; relative paths use base_dir."""

    PREFIX = "file:"

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        path = Path(ref[len(self.PREFIX) :]).expanduser()
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        if not path.is_file():
            return None
        lines = path.read_text(encoding="utf-8").splitlines()
        return lines[0].strip() if lines and lines[0].strip() else None


class CompositeSecretsProvider:
    """
    Combine multiple secrets providers.

    Tries each provider in order until one returns a value.
    """

    def __init__(self, providers: list[SecretsProvider] | None = None):
        self.providers = providers or [EnvSecretsProvider(), FileSecretsProvider()]

    def supports(self, ref: str) -> bool:
        return any(p.supports(ref) for p in self.providers)

    def get(self, ref: str) -> str | None:
        for provider in self.providers:
            if provider.supports(ref):
                value = provider.get(ref)
                if value is not None:
                    return value
        return None


def is_raw_key(value: str) -> bool:
    return bool(_RAW_KEY_RE.match(value.strip()))


def resolve_secret(ref: str, provider: SecretsProvider | None = None) -> str:
    """
    Resolve a key reference, raising ConfigError when it cannot be used.

    A literal private key in place of a reference is refused.
    """
    provider = provider or CompositeSecretsProvider()
    if is_raw_key(ref):
        raise ConfigError("signing keys must be configured as a reference such as env:DEPLOYER_PRIVATE_KEY")
    if not provider.supports(ref):
        raise ConfigError(f"unsupported secret reference {ref!r} (expected env:VAR or file:PATH)")
    value = provider.get(ref)
    if value is None:
        raise ConfigError(f"secret {ref} is not set")
    return value
