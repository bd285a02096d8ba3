"""Pricing engine.

Pure functions computing subtotal, shipping, tax and total for a cart.
The same functions back the client preview endpoint and the
authoritative server computation; nothing here performs I/O.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from app.config import get_settings
from app.errors import FieldError, ValidationFailed
from app.utils.helpers import round_money

settings = get_settings()

# US state sales tax rates (simplified)
REGION_TAX_RATES: dict[str, Decimal] = {
    code: Decimal(rate)
    for code, rate in {
        "AL": "0.04", "AK": "0.00", "AZ": "0.056", "AR": "0.065", "CA": "0.0725",
        "CO": "0.029", "CT": "0.0635", "DE": "0.00", "FL": "0.06", "GA": "0.04",
        "HI": "0.04", "ID": "0.06", "IL": "0.0625", "IN": "0.07", "IA": "0.06",
        "KS": "0.065", "KY": "0.06", "LA": "0.045", "ME": "0.055", "MD": "0.06",
        "MA": "0.0625", "MI": "0.06", "MN": "0.06875", "MS": "0.07", "MO": "0.04225",
        "MT": "0.00", "NE": "0.055", "NV": "0.0685", "NH": "0.00", "NJ": "0.06625",
        "NM": "0.05125", "NY": "0.08", "NC": "0.0475", "ND": "0.05", "OH": "0.0575",
        "OK": "0.045", "OR": "0.00", "PA": "0.06", "RI": "0.07", "SC": "0.06",
        "SD": "0.045", "TN": "0.07", "TX": "0.0625", "UT": "0.0485", "VT": "0.06",
        "VA": "0.053", "WA": "0.065", "WV": "0.06", "WI": "0.05", "WY": "0.04",
    }.items()
}

WESTERN_REGIONS = frozenset({"CA", "OR", "WA", "NV", "AZ", "UT", "CO", "ID", "MT", "WY"})
CENTRAL_REGIONS = frozenset({"TX", "OK", "KS", "NE", "ND", "SD", "MN", "IA", "MO", "AR", "LA"})

SHIPPING_TIERS: dict[str, Decimal] = {
    "western": Decimal("4.99"),
    "central": Decimal("5.99"),
    "eastern": Decimal("6.99"),
}


class PricedItem(Protocol):
    price: Decimal
    quantity: int


@dataclass(frozen=True)
class Totals:
    """Cart totals. Components are unrounded until ``quantized``."""

    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    total: Decimal
    tax_rate: Decimal

    def quantized(self) -> "Totals":
        """Round every component to cents for transport or persistence."""
        return Totals(
            subtotal=round_money(self.subtotal),
            shipping_cost=round_money(self.shipping_cost),
            tax=round_money(self.tax),
            total=round_money(self.subtotal + self.shipping_cost + self.tax),
            tax_rate=self.tax_rate,
        )


def _normalize_region(region: Optional[str]) -> str:
    return (region or "").strip().upper()


def tax_rate(region: Optional[str]) -> Decimal:
    """Sales tax rate for a region, falling back to the default rate."""
    return REGION_TAX_RATES.get(_normalize_region(region), settings.default_tax_rate)


def shipping_zone(region: Optional[str]) -> str:
    code = _normalize_region(region)
    if code in WESTERN_REGIONS:
        return "western"
    if code in CENTRAL_REGIONS:
        return "central"
    return "eastern"


def shipping_cost(
    subtotal: Decimal,
    region: Optional[str],
    free_shipping_threshold: Optional[Decimal] = None,
) -> Decimal:
    """Zone-based shipping, free at or above the threshold."""
    threshold = settings.free_shipping_threshold if free_shipping_threshold is None else free_shipping_threshold
    if subtotal >= threshold:
        return Decimal("0")
    return SHIPPING_TIERS[shipping_zone(region)]


def compute_tax(subtotal: Decimal, shipping: Decimal, region: Optional[str]) -> Decimal:
    return (subtotal + shipping) * tax_rate(region)


def compute_subtotal(items: Sequence[PricedItem]) -> Decimal:
    """Sum of unit price times quantity; rejects non-positive prices and quantities."""
    errors: list[FieldError] = []
    subtotal = Decimal("0")
    for index, item in enumerate(items):
        price = Decimal(item.price)
        if price <= 0:
            errors.append(FieldError(f"items[{index}].price", "Price must be greater than zero"))
        if item.quantity < 1:
            errors.append(FieldError(f"items[{index}].quantity", "Quantity must be at least 1"))
        subtotal += price * item.quantity
    if not items:
        errors.append(FieldError("items", "At least one item required"))
    if errors:
        raise ValidationFailed(errors)
    return subtotal


def compute_totals(
    items: Sequence[PricedItem],
    region: Optional[str],
    free_shipping_threshold: Optional[Decimal] = None,
) -> Totals:
    """Compute unrounded totals for a cart shipped to ``region``."""
    subtotal = compute_subtotal(items)
    shipping = shipping_cost(subtotal, region, free_shipping_threshold)
    tax = compute_tax(subtotal, shipping, region)
    return Totals(
        subtotal=subtotal,
        shipping_cost=shipping,
        tax=tax,
        total=subtotal + shipping + tax,
        tax_rate=tax_rate(region),
    )


def pricing_config() -> dict:
    """Public pricing parameters for the client-side preview."""
    return {
        "currency": settings.currency,
        "country": "US",
        "freeShippingThreshold": float(settings.free_shipping_threshold),
        "defaultTaxRate": float(settings.default_tax_rate),
        "taxRates": {code: float(rate) for code, rate in REGION_TAX_RATES.items()},
        "shippingTiers": {zone: float(cost) for zone, cost in SHIPPING_TIERS.items()},
    }
