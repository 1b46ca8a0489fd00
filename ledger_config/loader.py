"""
Configuration Loader (``ledger_config.loader``).

Loads a YAML file and parses it into a ``LedgerConfig``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.

``compute_checksum`` produces a deterministic SHA-256 hash of the effective
configuration so a running service can report which settings govern it.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, fields
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import LedgerConfig

_DECIMAL_FIELDS = frozenset({
    "late_fee_daily_rate",
    "late_fee_cap_ratio",
    "installment_quantum",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def config_from_mapping(data: dict[str, Any]) -> LedgerConfig:
    """
    Build a LedgerConfig from a plain mapping (e.g. parsed YAML).

    Keys may be nested under a top-level ``ledger:`` section.
    """
    if "ledger" in data and isinstance(data["ledger"], dict):
        data = data["ledger"]

    known = {f.name for f in fields(LedgerConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown ledger configuration keys: {', '.join(unknown)}")

    values: dict[str, Any] = {}
    for key, value in data.items():
        if key in _DECIMAL_FIELDS:
            values[key] = Decimal(str(value))
        elif key == "webhook_secrets":
            if not isinstance(value, dict):
                raise ValueError("webhook_secrets must be a mapping of gateway -> secret")
            values[key] = {str(k).upper(): str(v) for k, v in value.items()}
        else:
            values[key] = value
    return LedgerConfig(**values)


def load_ledger_config(path: Path | str | None = None) -> LedgerConfig:
    """Load configuration from ``path``; defaults when no path is given."""
    if path is None:
        return LedgerConfig()
    return config_from_mapping(load_yaml_file(Path(path)))


def compute_checksum(config: LedgerConfig) -> str:
    """
    SHA-256 of the canonical JSON form of ``config``.

    Webhook secrets are replaced by their own hashes, so the checksum can be
    logged without leaking them.
    """
    data = asdict(config)
    data["webhook_secrets"] = {
        gateway: hashlib.sha256(secret.encode()).hexdigest()
        for gateway, secret in config.webhook_secrets.items()
    }
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
