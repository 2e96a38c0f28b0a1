"""Platform fee breakdown for a milestone payment."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict

from talenthive.utils.config_loader import PlatformSettings


@dataclass(frozen=True)
class FeeBreakdown:
    amount: float
    platform_commission: float
    processing_fee: float
    tax: float
    freelancer_amount: float
    currency: str

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_fees(amount: float, settings: PlatformSettings) -> FeeBreakdown:
    """
    Split a gross payment into platform commission, processing fee, tax and
    the freelancer's share. Rates in settings are percentages; the commission
    is clamped to [min_commission, max_commission]. All values are in cents
    precision.
    """
    if not math.isfinite(amount) or amount <= 0:
        raise ValueError("amount must be a finite number greater than zero")

    commission = amount * settings.commission_rate / 100.0
    commission = min(max(commission, settings.min_commission), settings.max_commission)
    commission = round(commission, 2)
    processing_fee = round(amount * settings.payment_processing_fee / 100.0, 2)
    tax = round(amount * settings.tax_rate / 100.0, 2)
    freelancer_amount = round(amount - commission - processing_fee - tax, 2)

    return FeeBreakdown(
        amount=round(amount, 2),
        platform_commission=commission,
        processing_fee=processing_fee,
        tax=tax,
        freelancer_amount=max(freelancer_amount, 0.0),
        currency=settings.currency,
    )
