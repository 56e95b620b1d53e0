"""Canonical Print Product Catalog

Single source of truth for:
- Products offered and how each is priced (per-area rate or fixed package price)
- Which add-ons each product allows (the only place that decides it)
- Lamination variants and double-sided multipliers
- Quick-pick example sizes shown by the order form (not used by pricing)

The catalog is immutable and built once at import. Changing a price means
editing this module and redeploying.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple, Union

from constants import (
    ADDON_HEMS, ADDON_GROMMETS, ADDON_LAMINATION, ADDON_DOUBLE_SIDED, ADDON_POLE_POCKETS,
    UNIT_FEET, UNIT_INCHES,
)
from errors import UnknownProduct


PRICING_MODE_PER_AREA = "per-area"
PRICING_MODE_FIXED = "fixed"


@dataclass(frozen=True)
class Dimensions:
    width: float
    height: float
    unit: str

    def to_dict(self) -> dict:
        return {"width": self.width, "height": self.height, "unit": self.unit}


@dataclass(frozen=True)
class AreaPriced:
    """Priced by square foot; add-ons accumulate on top of the base cost."""
    rate_per_sqft: float
    add_ons: frozenset = frozenset()
    lamination_rates: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    # Applied to the printed-surface cost (base + lamination) when double-sided is enabled
    double_sided_multiplier: float = 1.0
    minimum_charge: float = 15.0


@dataclass(frozen=True)
class FixedPriced:
    """Package with a flat price. Dimensions and add-ons never affect the price."""
    fixed_price: float
    fixed_dimensions: Optional[Dimensions] = None
    # Informational choices (e.g. frame colour); never price-affecting
    options: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))


ProductKind = Union[AreaPriced, FixedPriced]


@dataclass(frozen=True)
class ProductDefinition:
    code: str
    name: str
    kind: ProductKind
    example_dimensions: Tuple[Dimensions, ...] = ()
    max_files: int = 3
    description: str = ""

    @property
    def pricing_mode(self) -> str:
        return PRICING_MODE_FIXED if isinstance(self.kind, FixedPriced) else PRICING_MODE_PER_AREA

    @property
    def base_rate_per_area(self) -> Optional[float]:
        return self.kind.rate_per_sqft if isinstance(self.kind, AreaPriced) else None

    @property
    def fixed_price(self) -> Optional[float]:
        return self.kind.fixed_price if isinstance(self.kind, FixedPriced) else None

    @property
    def allowed_add_ons(self) -> frozenset:
        return self.kind.add_ons if isinstance(self.kind, AreaPriced) else frozenset()

    @property
    def lamination_rates(self) -> Mapping[str, float]:
        if isinstance(self.kind, AreaPriced):
            return self.kind.lamination_rates
        return MappingProxyType({})

    @property
    def default_lamination(self) -> Optional[str]:
        """First declared lamination variant, used when a form only sends `lamination: true`."""
        for variant in self.lamination_rates:
            return variant
        return None

    @property
    def double_sided_multiplier(self) -> Optional[float]:
        if isinstance(self.kind, AreaPriced) and ADDON_DOUBLE_SIDED in self.kind.add_ons:
            return self.kind.double_sided_multiplier
        return None

    def to_public_dict(self) -> dict:
        """Shape returned by GET /api/products."""
        data = {
            "code": self.code,
            "name": self.name,
            "pricingMode": self.pricing_mode,
            "allowedAddOns": sorted(self.allowed_add_ons),
            "exampleDimensions": [d.to_dict() for d in self.example_dimensions],
            "maxFiles": self.max_files,
            "description": self.description,
        }
        if isinstance(self.kind, AreaPriced):
            data["baseRatePerArea"] = self.kind.rate_per_sqft
            data["minimumCharge"] = self.kind.minimum_charge
            if self.kind.lamination_rates:
                data["laminationRates"] = dict(self.kind.lamination_rates)
            if self.double_sided_multiplier is not None:
                data["doubleSidedMultiplier"] = self.double_sided_multiplier
        else:
            data["fixedPrice"] = self.kind.fixed_price
            if self.kind.fixed_dimensions:
                data["fixedDimensions"] = self.kind.fixed_dimensions.to_dict()
            if self.kind.options:
                data["options"] = {k: list(v) for k, v in self.kind.options.items()}
        return data


def is_add_on_allowed(product: ProductDefinition, add_on: str) -> bool:
    """The one capability check used by pricing, draft edits and intake."""
    return add_on in product.allowed_add_ons


@dataclass(frozen=True)
class PricingRules:
    """Rates shared by every area-priced product."""
    hem_rate_per_ft: float = 0.50
    grommet_unit_price: float = 0.35
    grommet_spacing_in: float = 24.0
    grommet_minimum: int = 4
    pole_pocket_rate_per_ft: float = 2.00
    # Pockets smaller than the threshold are cheaper to sew
    pole_pocket_small_threshold_in: float = 3.0
    pole_pocket_small_factor: float = 0.85
    # (minimum quantity, discount rate), highest threshold first
    discount_tiers: Tuple[Tuple[int, float], ...] = ((50, 0.12), (25, 0.08), (10, 0.05))


class Catalog:
    """Read-only product table keyed by product code."""

    def __init__(self, products: Iterable[ProductDefinition], rules: PricingRules = None):
        by_code = {}
        for product in products:
            if product.code in by_code:
                raise ValueError(f"Duplicate product code in catalog: {product.code}")
            by_code[product.code] = product
        self._products = MappingProxyType(by_code)
        self.rules = rules or PricingRules()

    def lookup(self, code: str) -> ProductDefinition:
        try:
            return self._products[code]
        except (KeyError, TypeError):
            raise UnknownProduct(code)

    def __contains__(self, code) -> bool:
        return code in self._products

    def __iter__(self):
        return iter(self._products.values())

    def __len__(self) -> int:
        return len(self._products)

    @property
    def codes(self) -> Tuple[str, ...]:
        return tuple(self._products)


def _ft(*pairs):
    return tuple(Dimensions(w, h, UNIT_FEET) for w, h in pairs)


def _in(*pairs):
    return tuple(Dimensions(w, h, UNIT_INCHES) for w, h in pairs)


_STANDARD_LAMINATION = MappingProxyType({"matte": 2.00, "gloss": 2.00})
_RIGID_SIZES = _in((18, 24), (24, 36), (36, 48))

PRODUCTS = (
    ProductDefinition(
        code="banner",
        name="13oz Vinyl Banner",
        kind=AreaPriced(
            rate_per_sqft=5.50,
            add_ons=frozenset({ADDON_HEMS, ADDON_GROMMETS, ADDON_DOUBLE_SIDED, ADDON_POLE_POCKETS}),
            double_sided_multiplier=1.6,
        ),
        example_dimensions=_ft((2, 4), (3, 6), (4, 8), (8, 3)),
        description="Outdoor promos. Hem + grommets optional.",
    ),
    ProductDefinition(
        code="adhesive",
        name="Adhesive Vinyl (Sticker)",
        kind=AreaPriced(
            rate_per_sqft=8.00,
            add_ons=frozenset({ADDON_LAMINATION}),
            lamination_rates=_STANDARD_LAMINATION,
        ),
        example_dimensions=_ft((2, 4), (3, 6), (4, 8)),
        description="Windows, walls and vehicles. Lamination optional.",
    ),
    ProductDefinition(
        code="coroplast",
        name="Coroplast Sign 4mm",
        kind=AreaPriced(
            rate_per_sqft=9.00,
            add_ons=frozenset({ADDON_LAMINATION, ADDON_DOUBLE_SIDED}),
            lamination_rates=_STANDARD_LAMINATION,
            double_sided_multiplier=1.6,
        ),
        example_dimensions=_RIGID_SIZES,
        description="Rigid yard signs. Double-sided supported.",
    ),
    ProductDefinition(
        code="pvc6",
        name="PVC 6mm",
        kind=AreaPriced(rate_per_sqft=14.00, add_ons=frozenset({ADDON_DOUBLE_SIDED}), double_sided_multiplier=1.5),
        example_dimensions=_RIGID_SIZES,
    ),
    ProductDefinition(
        code="pvc9",
        name="PVC 9mm",
        kind=AreaPriced(rate_per_sqft=17.00, add_ons=frozenset({ADDON_DOUBLE_SIDED}), double_sided_multiplier=1.5),
        example_dimensions=_RIGID_SIZES,
    ),
    ProductDefinition(
        code="pvc12",
        name="PVC 12mm",
        kind=AreaPriced(rate_per_sqft=20.00, add_ons=frozenset({ADDON_DOUBLE_SIDED}), double_sided_multiplier=1.5),
        example_dimensions=_RIGID_SIZES,
    ),
    ProductDefinition(
        code="pvc15",
        name="PVC 15mm",
        kind=AreaPriced(rate_per_sqft=24.00, add_ons=frozenset({ADDON_DOUBLE_SIDED}), double_sided_multiplier=1.5),
        example_dimensions=_RIGID_SIZES,
    ),
    ProductDefinition(
        code="dibond4",
        name="Dibond 4mm",
        kind=AreaPriced(
            rate_per_sqft=22.00,
            add_ons=frozenset({ADDON_LAMINATION, ADDON_DOUBLE_SIDED}),
            lamination_rates=_STANDARD_LAMINATION,
            double_sided_multiplier=1.5,
        ),
        example_dimensions=_in((24, 36), (36, 48)),
    ),
    ProductDefinition(
        code="standup",
        name='Stand Up Banner (33" x 80")',
        kind=FixedPriced(fixed_price=180.00, fixed_dimensions=Dimensions(33, 80, UNIT_INCHES)),
        example_dimensions=_in((33, 80)),
        max_files=1,
        description="Includes hardware & print. Fixed size.",
    ),
    ProductDefinition(
        code="aframe",
        name='A-Frame Sign (Double-Sided 24" x 36")',
        kind=FixedPriced(
            fixed_price=225.00,
            fixed_dimensions=Dimensions(24, 36, UNIT_INCHES),
            options=MappingProxyType({"color": ("white", "black")}),
        ),
        example_dimensions=_in((24, 36)),
        max_files=2,
        description="Includes frame & two 24x36\" inserts. Choose white or black frame.",
    ),
)

DEFAULT_CATALOG = Catalog(PRODUCTS)


def lookup(code: str, catalog: Catalog = None) -> ProductDefinition:
    """Resolve a product code, raising UnknownProduct if it is not offered."""
    return (catalog or DEFAULT_CATALOG).lookup(code)


def get_product_options(catalog: Catalog = None) -> list:
    """Catalog entries for the order form, in declaration order."""
    return [p.to_public_dict() for p in (catalog or DEFAULT_CATALOG)]
