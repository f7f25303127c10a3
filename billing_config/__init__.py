"""
billing_config -- single public entrypoint for billing policy.

Responsibility:
    ``get_active_config()`` is the only way services obtain the billing
    policy.  YAML loading is internal to this package.

Architecture position:
    Configuration layer.  Sits above ``billing_kernel`` and
    ``billing_engines`` and below the services.  Engines MUST NEVER import
    from ``billing_config``; services pass policy values in as explicit
    parameters.

Failure modes:
    - ``FileNotFoundError`` -- policy file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or invalid policy values.

Audit relevance:
    Every successful load emits a ``BILLING_CONFIG_TRACE`` log entry with
    the config_id, version and checksum so that every batch can be tied
    back to the policy that governed it.
"""

from __future__ import annotations

from pathlib import Path

from billing_config.loader import load_policy
from billing_config.schema import BillingPolicy
from billing_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> BillingPolicy:
    """
    Load and validate the billing policy.

    Args:
        path: Policy YAML file.  Defaults to ``billing_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value fails validation.
    """
    policy = load_policy(Path(path) if path is not None else _DEFAULT_CONFIG_PATH)

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "config_set_id": policy.config_id,
            "config_set_version": policy.version,
            "checksum": policy.checksum,
            "currency": policy.currency,
            "indexation_warning_days": policy.indexation_warning_days,
            "indexation_alert_days": policy.indexation_alert_days,
        },
    )
    return policy


__all__ = [
    "BillingPolicy",
    "get_active_config",
]
