"""Landed cost estimate for shipping a purchase to Jamaica.

The numbers are a replaceable policy, not a customs ruling. The default
charges freight per pound, applies a category duty rate to the CIF value
(price + freight), then GCT on CIF + duty.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from concierge.models.contracts import LandedCostEstimate

_DEFAULT_DUTY_RATES = {
    "electronics": 0.10,
    "clothing": 0.20,
    "tools": 0.05,
    "auto_parts": 0.20,
    "general": 0.20,
}


def _cents(amount_usd: float) -> int:
    return round(amount_usd * 100)


@dataclass(frozen=True)
class LandedCostPolicy:
    freight_per_lb_usd: float = 3.50
    min_freight_usd: float = 5.00
    gct_rate: float = 0.15
    duty_rates: dict[str, float] = field(default_factory=lambda: dict(_DEFAULT_DUTY_RATES))

    def estimate(
        self, product_price_usd: float, weight_lbs: float, category: str = "general"
    ) -> LandedCostEstimate:
        duty_rate = self.duty_rates.get(category, self.duty_rates["general"])

        price = _cents(product_price_usd)
        shipping = _cents(max(self.min_freight_usd, weight_lbs * self.freight_per_lb_usd))
        cif = price + shipping
        duty = round(cif * duty_rate)
        gct = round((cif + duty) * self.gct_rate)
        total = cif + duty + gct

        rationale = (
            f"Freight ${shipping / 100:.2f} for {weight_lbs:g} lb; "
            f"{duty_rate:.0%} duty on CIF ${cif / 100:.2f} ({category}); "
            f"{self.gct_rate:.0%} GCT on CIF plus duty. Estimate only."
        )
        return LandedCostEstimate(
            product_price_usd_cents=price,
            shipping_usd_cents=shipping,
            duty_usd_cents=duty,
            gct_usd_cents=gct,
            total_usd_cents=total,
            rationale=rationale,
        )
