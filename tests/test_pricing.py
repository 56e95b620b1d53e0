"""
Pricing Engine Tests

Per-item pricing, add-on accumulation, double-sided compounding, volume
tiers, fixed-price packages and input validation.
"""
import math

import pytest

from errors import AddOnNotAllowed, InvalidDimension, InvalidQuantity, UnknownProduct, ValidationError
from models import AddOns, PolePockets
from services.catalog import DEFAULT_CATALOG
from services.pricing import (
    discount_rate_for, estimate_grommets, normalize_unit, order_totals, price, quote,
)
from tests.factories import banner_e2e_item, make_item


class TestBannerScenario:

    def test_six_by_three_banner_with_hems_and_grommets(self):
        """6ft x 3ft, qty 12, hems + grommets -> 5% tier."""
        b = price(banner_e2e_item())

        assert b.area == pytest.approx(18.0)
        assert b.base_cost == pytest.approx(99.00)
        assert b.add_on_costs == {"grommets": pytest.approx(3.50), "hems": pytest.approx(9.00)}
        assert b.grommet_count == 10
        assert b.per_item_price == pytest.approx(111.50)
        assert b.line_subtotal == pytest.approx(1338.00)
        assert b.discount_rate == 0.05
        assert b.discount_amount == pytest.approx(66.90)
        assert b.line_total == pytest.approx(1271.10)

    def test_inches_price_the_same_as_feet(self):
        in_feet = price(make_item(width=6, height=3, unit="ft", add_ons=AddOns(hems=True, grommets=True)))
        in_inches = price(make_item(width=72, height=36, unit="in", add_ons=AddOns(hems=True, grommets=True)))
        assert in_inches == in_feet

    def test_unit_aliases_accepted(self):
        assert price(make_item(unit="feet")) == price(make_item(unit="ft"))
        assert price(make_item(width=72, height=36, unit="inches")) == price(make_item(unit="ft"))


class TestDiscountTiers:

    @pytest.mark.parametrize("quantity,rate", [
        (1, 0.0),
        (9, 0.0),
        (10, 0.05),
        (24, 0.05),
        (25, 0.08),
        (49, 0.08),
        (50, 0.12),
        (500, 0.12),
    ])
    def test_threshold_gets_higher_tier(self, quantity, rate):
        assert discount_rate_for(quantity) == rate

    def test_discount_taken_off_line_subtotal(self):
        b = price(make_item(width=2, height=4, quantity=25))
        # 8 sqft x 5.50 = 44.00 per item
        assert b.per_item_price == pytest.approx(44.00)
        assert b.line_subtotal == pytest.approx(1100.00)
        assert b.discount_amount == pytest.approx(88.00)
        assert b.line_total == pytest.approx(1012.00)


class TestAddOns:

    def test_double_sided_multiplies_base_and_lamination(self):
        """Coroplast 24x36in: area 6, base 54, matte 12, double-sided x1.6 on 66."""
        item = make_item("coroplast", width=24, height=36, unit="in",
                         add_ons=AddOns(lamination="matte", double_sided=True))
        b = price(item)

        assert b.base_cost == pytest.approx(54.00)
        assert b.add_on_costs["lamination"] == pytest.approx(12.00)
        assert b.add_on_costs["double_sided"] == pytest.approx(39.60)
        assert b.per_item_price == pytest.approx(105.60)

    def test_edge_finishing_is_not_doubled(self):
        """Banner 4x2ft: hems and pole pockets are added after the multiplier."""
        add_ons = AddOns(hems=True, double_sided=True, pole_pockets=PolePockets(top=True, bottom=True, size_inches=3))
        b = price(make_item(width=4, height=2, add_ons=add_ons))

        assert b.base_cost == pytest.approx(44.00)
        assert b.add_on_costs["double_sided"] == pytest.approx(26.40)
        assert b.add_on_costs["hems"] == pytest.approx(6.00)
        assert b.add_on_costs["pole_pockets"] == pytest.approx(16.00)
        assert b.per_item_price == pytest.approx(92.40)

    def test_small_pole_pockets_are_discounted(self):
        add_ons = AddOns(pole_pockets=PolePockets(top=True, bottom=True, size_inches=2))
        b = price(make_item(width=4, height=2, add_ons=add_ons))
        assert b.add_on_costs["pole_pockets"] == pytest.approx(13.60)

    def test_side_pockets_use_height(self):
        add_ons = AddOns(pole_pockets=PolePockets(left=True, size_inches=4))
        b = price(make_item(width=4, height=2, add_ons=add_ons))
        assert b.add_on_costs["pole_pockets"] == pytest.approx(4.00)

    def test_pvc_double_sided_uses_its_own_multiplier(self):
        b = price(make_item("pvc6", width=24, height=36, unit="in", add_ons=AddOns(double_sided=True)))
        # 6 sqft x 14 = 84, x1.5
        assert b.per_item_price == pytest.approx(126.00)

    def test_minimum_charge_applies_to_area_priced(self):
        b = price(make_item(width=1, height=1))
        assert b.base_cost == pytest.approx(5.50)
        assert b.per_item_price == pytest.approx(15.00)


class TestGrommets:

    def test_small_banner_gets_corner_grommets(self):
        assert estimate_grommets(24, 24) == 4

    def test_known_size(self):
        assert estimate_grommets(36, 72) == 10

    def test_always_even_and_at_least_minimum(self):
        sizes = [0.5, 1, 12, 23.9, 24, 25, 47, 48, 100, 240]
        for w in sizes:
            for h in sizes:
                count = estimate_grommets(w, h)
                assert count % 2 == 0, (w, h, count)
                assert count >= 4, (w, h, count)


class TestFixedPrice:

    def test_dimensions_and_add_ons_are_ignored(self):
        standard = price(make_item("standup", width=33, height=80, unit="in"))
        odd = price(make_item("standup", width=10, height=10, unit="ft", add_ons=AddOns(hems=True, double_sided=True)))

        assert standard.per_item_price == pytest.approx(180.00)
        assert odd.per_item_price == pytest.approx(180.00)
        assert odd.add_on_costs == {}

    def test_fixed_price_still_gets_volume_discount(self):
        b = price(make_item("aframe", width=24, height=36, unit="in", quantity=10))
        assert b.line_subtotal == pytest.approx(2250.00)
        assert b.line_total == pytest.approx(2137.50)


class TestValidation:

    @pytest.mark.parametrize("width", [0, -1, float("nan"), float("inf"), "abc", None, True])
    def test_invalid_width(self, width):
        with pytest.raises(InvalidDimension):
            price(make_item(width=width))

    @pytest.mark.parametrize("quantity", [0, -3, 2.5, "3", None, True])
    def test_invalid_quantity(self, quantity):
        with pytest.raises(InvalidQuantity):
            price(make_item(quantity=quantity))

    def test_unknown_unit(self):
        with pytest.raises(ValidationError) as exc:
            price(make_item(unit="cm"))
        assert exc.value.code == "invalid_unit"

    def test_unknown_product(self):
        with pytest.raises(UnknownProduct) as exc:
            price(make_item("neon"))
        assert exc.value.code == "unknown_product"
        assert exc.value.http_status == 400

    def test_disallowed_add_on_is_rejected(self):
        with pytest.raises(AddOnNotAllowed):
            price(make_item("pvc6", add_ons=AddOns(hems=True)))
        with pytest.raises(AddOnNotAllowed):
            price(make_item("banner", add_ons=AddOns(lamination="matte")))

    def test_unknown_lamination_variant(self):
        with pytest.raises(AddOnNotAllowed):
            price(make_item("adhesive", add_ons=AddOns(lamination="satin")))

    def test_pole_pocket_size_must_be_positive(self):
        add_ons = AddOns(pole_pockets=PolePockets(top=True, size_inches=0))
        with pytest.raises(InvalidDimension):
            price(make_item(add_ons=add_ons))

    def test_normalize_unit(self):
        assert normalize_unit("Feet") == "ft"
        assert normalize_unit(" INCHES ") == "in"


class TestProperties:

    def test_pricing_is_idempotent(self):
        item = banner_e2e_item()
        assert price(item) == price(item)

    def test_line_total_non_decreasing_in_area(self):
        add_ons = AddOns(hems=True, grommets=True)
        totals = [price(make_item(width=w, height=3, quantity=5, add_ons=add_ons)).line_total
                  for w in (0.5, 1, 2, 3, 5, 8, 13, 21)]
        assert totals == sorted(totals)

    @pytest.mark.parametrize("quantities", [range(1, 50), range(50, 201)])
    def test_line_total_non_decreasing_in_quantity_within_tiers(self, quantities):
        totals = [price(make_item(width=2, height=4, quantity=q)).line_total for q in quantities]
        assert totals == sorted(totals)

    def test_order_totals_are_sums_of_lines(self):
        items = [banner_e2e_item(), make_item("standup", width=33, height=80, unit="in")]
        breakdowns, totals = quote(items, DEFAULT_CATALOG)

        assert totals == order_totals(breakdowns)
        assert totals.subtotal == pytest.approx(1338.00 + 180.00)
        assert totals.discount == pytest.approx(66.90)
        assert totals.total == pytest.approx(1271.10 + 180.00)
        assert math.isclose(totals.subtotal - totals.discount, totals.total)
