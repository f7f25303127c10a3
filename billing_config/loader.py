"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Reads a billing policy YAML file and parses it into a frozen
``BillingPolicy``.  Runtime callers go through
``billing_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Required keys have no silent defaults: a missing ``config_id``,
  ``version`` or ``currency`` raises ``KeyError``.
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing YAML file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Missing required keys -> ``KeyError``.
* Invalid values -> ``ValueError`` from ``BillingPolicy``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from billing_config.schema import BillingPolicy


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_policy(data: dict[str, Any]) -> BillingPolicy:
    """Parse a ``BillingPolicy`` from the YAML document structure."""
    indexation = data.get("indexation") or {}
    batch = data.get("batch") or {}
    fixed_fee = data.get("fixed_fee") or {}

    return BillingPolicy(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        currency=data["currency"],
        indexation_warning_days=indexation.get("warning_days", 30),
        indexation_alert_days=indexation.get("alert_days", 7),
        batch_number_prefix=str(batch.get("number_prefix", "B")),
        charge_fixed_fee_once_per_period=bool(
            fixed_fee.get("charge_once_per_period", True)
        ),
        checksum=compute_checksum(data),
    )


def load_policy(path: Path | str) -> BillingPolicy:
    return parse_policy(load_yaml_file(Path(path)))
