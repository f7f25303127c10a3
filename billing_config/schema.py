"""
Billing policy schema (``billing_config.schema``).

Responsibility
--------------
Frozen dataclass describing the product policy the billing engine is run
under: the billing currency, the indexation warning windows, batch
numbering and the fixed-fee charging rule.

Architecture position
---------------------
**Config layer** -- pure data.  Produced by ``billing_config.loader``,
consumed by services.  Engines never see a ``BillingPolicy``; services
pass its values in as explicit parameters.

Invariants enforced
-------------------
* ``currency`` is a known ISO 4217 code.
* Both indexation windows are non-negative and the alert window is not
  wider than the warning window.
* ``batch_number_prefix`` is a non-empty alphanumeric string.
"""

from __future__ import annotations

from dataclasses import dataclass

from billing_kernel.domain.currency import CurrencyRegistry


@dataclass(frozen=True)
class BillingPolicy:
    """Validated billing policy."""

    config_id: str
    version: int
    currency: str
    indexation_warning_days: int = 30  # agreements list
    indexation_alert_days: int = 7  # dashboard
    batch_number_prefix: str = "B"
    charge_fixed_fee_once_per_period: bool = True
    checksum: str = ""

    def __post_init__(self) -> None:
        code = (self.currency or "").upper().strip()
        if not CurrencyRegistry.is_valid(code):
            raise ValueError(f"Unknown billing currency: {self.currency!r}")
        object.__setattr__(self, "currency", code)

        for name in ("indexation_warning_days", "indexation_alert_days"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")
        if self.indexation_alert_days > self.indexation_warning_days:
            raise ValueError(
                "indexation_alert_days must not exceed indexation_warning_days "
                f"({self.indexation_alert_days} > {self.indexation_warning_days})"
            )

        if not self.batch_number_prefix or not self.batch_number_prefix.isalnum():
            raise ValueError(
                f"batch_number_prefix must be alphanumeric, got {self.batch_number_prefix!r}"
            )
