"""Configuration system for sign-relay.

Loads relay config from ``.sign-relay/config.yaml`` and supports
environment variable expansion (``${VAR}``) in any string value.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from sign_relay.chain.networks import get_network
from sign_relay.wallet.keystore import DEFAULT_KEYSTORE_PATH


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class NetworkConfig(BaseModel):
    """Which Sui network the relay watches."""

    name: str = "devnet"
    rpc_url: Optional[str] = None  # Overrides the network's public full node
    request_timeout: float = 30.0

    def resolve_rpc_url(self) -> str:
        return self.rpc_url or get_network(self.name).rpc_url


class WalletConfig(BaseModel):
    """Operator wallet settings."""

    keystore_path: str = str(DEFAULT_KEYSTORE_PATH)
    address: Optional[str] = None  # Required when the keystore holds several keys
    auto_approve: bool = False      # Sign without asking (unattended operators only)


class PollingConfig(BaseModel):
    """Relay loop timing and reply gas."""

    interval_seconds: float = 2.5
    gas_budget: int = 10_000_000     # MIST
    finality_timeout: float = 60.0


class RelayConfig(BaseModel):
    """Root configuration object."""

    network: NetworkConfig = Field(default_factory=NetworkConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    log_level: str = "WARNING"


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_root_dir(base: Path | None = None) -> Path:
    """Return the ``.sign-relay/`` directory (no auto-create).

    Parameters
    ----------
    base:
        Parent directory that contains (or will contain) the root folder.
        Defaults to the current working directory.
    """
    if base is None:
        base = Path.cwd()
    return base / ".sign-relay"


def default_config_path(base: Path | None = None) -> Path:
    return get_root_dir(base) / "config.yaml"


def load_config(path: Path) -> RelayConfig:
    """Load and validate a relay configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return RelayConfig.model_validate(expanded)


def load_config_or_default(path: Path | None = None) -> RelayConfig:
    """Load *path* (or the default location) if it exists, else defaults."""
    path = path or default_config_path()
    if path.exists():
        return load_config(path)
    return RelayConfig()


def save_config(config: RelayConfig, path: Path) -> None:
    """Serialize a :class:`RelayConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
