"""
Pricing Engine.

Pure functions: no I/O, no randomness, no environment lookups. Cheap enough
to run on every keystroke of the order form (POST /api/quote).

Algorithm per line item:
1. Validate dimensions, quantity, unit and add-on capability.
2. Fixed-price packages: base = fixed price, nothing else applies.
3. Area-priced: base = area x rate, then lamination (per sq ft) and the
   double-sided multiplier on the printed surface (base + lamination),
   then edge finishing (hems, grommets, pole pockets), which is never doubled.
4. Per-item price is floored at the product's minimum charge.
5. Line subtotal = per-item x quantity; the volume tier discount is taken
   off the line subtotal.

Money values are rounded to cents as they are reported; order totals are
sums of the rounded line values.
"""
import math
import numbers
from typing import Iterable, List, Tuple

from constants import (
    ADDON_HEMS, ADDON_GROMMETS, ADDON_LAMINATION, ADDON_DOUBLE_SIDED, ADDON_POLE_POCKETS,
    UNIT_FEET, UNIT_INCHES, UNIT_ALIASES,
)
from errors import InvalidDimension, InvalidQuantity, AddOnNotAllowed, ValidationError
from models import LineItem, PriceBreakdown, OrderTotals
from services.catalog import (
    AreaPriced, Catalog, FixedPriced, PricingRules, ProductDefinition, DEFAULT_CATALOG,
    is_add_on_allowed,
)


def _money(value: float) -> float:
    return round(value, 2)


def normalize_unit(unit) -> str:
    """Map "feet"/"inches"/"ft"/"in" (any case) to "ft" / "in"."""
    normalized = UNIT_ALIASES.get(str(unit or "").strip().lower())
    if not normalized:
        raise ValidationError(f"Unsupported unit: {unit!r}. Use 'ft' or 'in'.", code="invalid_unit")
    return normalized


def to_feet(value: float, unit: str) -> float:
    return value / 12.0 if unit == UNIT_INCHES else value


def to_inches(value: float, unit: str) -> float:
    return value * 12.0 if unit == UNIT_FEET else value


def discount_rate_for(quantity: int, rules: PricingRules = None) -> float:
    """Highest tier whose threshold is <= quantity; 0 below the first tier."""
    tiers = (rules or DEFAULT_CATALOG.rules).discount_tiers
    for min_qty, rate in sorted(tiers, reverse=True):
        if quantity >= min_qty:
            return rate
    return 0.0


def estimate_grommets(width_in: float, height_in: float, spacing_in: float = 24.0, minimum: int = 4) -> int:
    """
    Estimated grommet count for a rectangle with grommets every `spacing_in`
    along each edge, corners shared. Always even and never below `minimum`.
    """
    across_width = max(2, math.ceil(width_in / spacing_in) + 1)
    across_height = max(2, math.ceil(height_in / spacing_in) + 1)
    count = across_width * 2 + across_height * 2 - 4
    return max(minimum, count)


def pole_pocket_feet(width_ft: float, height_ft: float, sides: Iterable[str]) -> float:
    lengths = {"top": width_ft, "bottom": width_ft, "left": height_ft, "right": height_ft}
    return sum(lengths[side] for side in sides)


def _validate_number(value, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise InvalidDimension(f"{label} must be a number.")
    if not math.isfinite(value) or value <= 0:
        raise InvalidDimension(f"{label} must be greater than 0.")
    return float(value)


def validate_line_item(item: LineItem, product: ProductDefinition) -> None:
    """
    Raise the first problem with a line item, or return None.

    Area-priced products reject add-ons they do not offer (buyers must never
    pay for finishing that will not be applied). Fixed-price packages ignore
    add-on flags entirely.
    """
    _validate_number(item.width, "Width")
    _validate_number(item.height, "Height")
    normalize_unit(item.unit)

    if isinstance(item.quantity, bool) or not isinstance(item.quantity, numbers.Integral) or item.quantity < 1:
        raise InvalidQuantity("Quantity must be a whole number of at least 1.")

    if isinstance(product.kind, FixedPriced):
        return

    for add_on in item.add_ons.enabled():
        if not is_add_on_allowed(product, add_on):
            raise AddOnNotAllowed(f"{product.name} does not offer {add_on.replace('_', ' ')}.")

    lamination = item.add_ons.lamination
    if lamination and lamination not in product.lamination_rates:
        raise AddOnNotAllowed(
            f"Unknown lamination '{lamination}' for {product.name}. "
            f"Choose one of: {', '.join(product.lamination_rates)}."
        )

    if item.add_ons.pole_pockets.any():
        _validate_number(item.add_ons.pole_pockets.size_inches, "Pole pocket size")


def price(item: LineItem, catalog: Catalog = None) -> PriceBreakdown:
    """Compute the PriceBreakdown for one line item. Deterministic and side-effect free."""
    catalog = catalog or DEFAULT_CATALOG
    product = catalog.lookup(item.product_code)
    validate_line_item(item, product)
    return _price_validated(item, product, catalog.rules)


def _price_validated(item: LineItem, product: ProductDefinition, rules: PricingRules) -> PriceBreakdown:
    unit = normalize_unit(item.unit)
    width_ft = to_feet(float(item.width), unit)
    height_ft = to_feet(float(item.height), unit)
    area = width_ft * height_ft

    add_on_costs = {}
    grommet_count = 0

    if isinstance(product.kind, FixedPriced):
        base_cost = product.kind.fixed_price
        per_item = base_cost
    else:
        kind: AreaPriced = product.kind
        add_ons = item.add_ons
        base_cost = area * kind.rate_per_sqft

        printed = base_cost
        if add_ons.lamination:
            lamination_cost = area * kind.lamination_rates[add_ons.lamination]
            add_on_costs[ADDON_LAMINATION] = lamination_cost
            printed += lamination_cost

        if add_ons.double_sided:
            add_on_costs[ADDON_DOUBLE_SIDED] = printed * (kind.double_sided_multiplier - 1.0)

        if add_ons.hems:
            perimeter_ft = 2 * (width_ft + height_ft)
            add_on_costs[ADDON_HEMS] = perimeter_ft * rules.hem_rate_per_ft

        if add_ons.grommets:
            grommet_count = estimate_grommets(
                to_inches(float(item.width), unit),
                to_inches(float(item.height), unit),
                spacing_in=rules.grommet_spacing_in,
                minimum=rules.grommet_minimum,
            )
            add_on_costs[ADDON_GROMMETS] = grommet_count * rules.grommet_unit_price

        pockets = add_ons.pole_pockets
        if pockets.any():
            linear_ft = pole_pocket_feet(width_ft, height_ft, pockets.enabled_sides())
            factor = 1.0 if pockets.size_inches >= rules.pole_pocket_small_threshold_in else rules.pole_pocket_small_factor
            add_on_costs[ADDON_POLE_POCKETS] = linear_ft * rules.pole_pocket_rate_per_ft * factor

        accumulated = base_cost + sum(add_on_costs.values())
        per_item = max(accumulated, kind.minimum_charge)

    per_item_price = _money(per_item)
    line_subtotal = _money(per_item_price * item.quantity)
    rate = discount_rate_for(item.quantity, rules)
    discount_amount = _money(line_subtotal * rate)

    return PriceBreakdown(
        area=area,
        base_cost=_money(base_cost),
        add_on_costs={name: _money(cost) for name, cost in sorted(add_on_costs.items())},
        discount_rate=rate,
        discount_amount=discount_amount,
        per_item_price=per_item_price,
        line_subtotal=line_subtotal,
        line_total=_money(line_subtotal - discount_amount),
        grommet_count=grommet_count,
    )


def order_totals(breakdowns: Iterable[PriceBreakdown]) -> OrderTotals:
    """Sum of per-line values. There is no order-level discount."""
    subtotal = discount = total = 0.0
    for b in breakdowns:
        subtotal += b.line_subtotal
        discount += b.discount_amount
        total += b.line_total
    return OrderTotals(subtotal=_money(subtotal), discount=_money(discount), total=_money(total))


def quote(items: Iterable[LineItem], catalog: Catalog = None) -> Tuple[List[PriceBreakdown], OrderTotals]:
    """Price every item and aggregate. Raises on the first invalid item."""
    breakdowns = [price(item, catalog) for item in items]
    return breakdowns, order_totals(breakdowns)
