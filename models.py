"""
Order data model.

Line items, file references, contact info and the immutable Order record.
Wire/record dictionaries use camelCase keys; attributes are snake_case.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional

from constants import (
    ADDON_HEMS, ADDON_GROMMETS, ADDON_LAMINATION, ADDON_DOUBLE_SIDED, ADDON_POLE_POCKETS,
    POLE_POCKET_SIDES, UNIT_FEET,
)
from utils.timestamps import to_iso, parse_iso


@dataclass
class PolePockets:
    top: bool = False
    bottom: bool = False
    left: bool = False
    right: bool = False
    size_inches: float = 3.0

    def enabled_sides(self) -> List[str]:
        return [side for side in POLE_POCKET_SIDES if getattr(self, side)]

    def any(self) -> bool:
        return bool(self.enabled_sides())

    def to_dict(self) -> dict:
        return {
            "top": self.top,
            "bottom": self.bottom,
            "left": self.left,
            "right": self.right,
            "sizeInches": self.size_inches,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolePockets":
        data = data or {}
        return cls(
            top=bool(data.get("top")),
            bottom=bool(data.get("bottom")),
            left=bool(data.get("left")),
            right=bool(data.get("right")),
            size_inches=float(data.get("sizeInches", 3.0)),
        )


@dataclass
class AddOns:
    hems: bool = False
    grommets: bool = False
    lamination: Optional[str] = None
    double_sided: bool = False
    pole_pockets: PolePockets = field(default_factory=PolePockets)

    def enabled(self) -> List[str]:
        """Names of the add-ons the buyer switched on."""
        names = []
        if self.hems:
            names.append(ADDON_HEMS)
        if self.grommets:
            names.append(ADDON_GROMMETS)
        if self.lamination:
            names.append(ADDON_LAMINATION)
        if self.double_sided:
            names.append(ADDON_DOUBLE_SIDED)
        if self.pole_pockets.any():
            names.append(ADDON_POLE_POCKETS)
        return names

    def to_dict(self) -> dict:
        return {
            "hems": self.hems,
            "grommets": self.grommets,
            "lamination": self.lamination,
            "doubleSided": self.double_sided,
            "polePockets": self.pole_pockets.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AddOns":
        data = data or {}
        return cls(
            hems=bool(data.get("hems")),
            grommets=bool(data.get("grommets")),
            lamination=data.get("lamination") or None,
            double_sided=bool(data.get("doubleSided")),
            pole_pockets=PolePockets.from_dict(data.get("polePockets")),
        )


@dataclass(frozen=True)
class FileRef:
    """An uploaded artwork file. Immutable once the transfer completed."""
    item_id: Optional[str]
    original_name: str
    storage_path: str
    size_bytes: Optional[int] = None
    mime_type: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "itemId": self.item_id,
            "originalName": self.original_name,
            "storagePath": self.storage_path,
            "sizeBytes": self.size_bytes,
            "mimeType": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileRef":
        return cls(
            item_id=data.get("itemId"),
            original_name=data.get("originalName") or "",
            storage_path=data["storagePath"],
            size_bytes=data.get("sizeBytes"),
            mime_type=data.get("mimeType"),
        )


@dataclass
class LineItem:
    id: str
    product_code: str
    width: float
    height: float
    unit: str = UNIT_FEET
    quantity: int = 1
    add_ons: AddOns = field(default_factory=AddOns)
    attached_files: List[FileRef] = field(default_factory=list)
    # Informational choices that never affect price (e.g. A-frame colour)
    options: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "productCode": self.product_code,
            "unit": self.unit,
            "width": self.width,
            "height": self.height,
            "quantity": self.quantity,
            "addOns": self.add_ons.to_dict(),
            "attachedFiles": [f.to_dict() for f in self.attached_files],
            "options": dict(self.options),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            id=data["id"],
            product_code=data["productCode"],
            unit=data.get("unit", UNIT_FEET),
            width=data["width"],
            height=data["height"],
            quantity=data.get("quantity", 1),
            add_ons=AddOns.from_dict(data.get("addOns")),
            attached_files=[FileRef.from_dict(f) for f in data.get("attachedFiles") or []],
            options=dict(data.get("options") or {}),
        )


@dataclass(frozen=True)
class PriceBreakdown:
    """Derived from a LineItem + ProductDefinition; never mutated or stored on its own."""
    area: float
    base_cost: float
    add_on_costs: Dict[str, float]
    discount_rate: float
    discount_amount: float
    per_item_price: float
    line_subtotal: float
    line_total: float
    grommet_count: int = 0

    def to_dict(self) -> dict:
        return {
            "area": self.area,
            "baseCost": self.base_cost,
            "addOnCosts": dict(self.add_on_costs),
            "grommetCount": self.grommet_count,
            "discountRate": self.discount_rate,
            "discountAmount": self.discount_amount,
            "perItemPrice": self.per_item_price,
            "lineSubtotal": self.line_subtotal,
            "lineTotal": self.line_total,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PriceBreakdown":
        return cls(
            area=data["area"],
            base_cost=data["baseCost"],
            add_on_costs=dict(data.get("addOnCosts") or {}),
            discount_rate=data["discountRate"],
            discount_amount=data["discountAmount"],
            per_item_price=data["perItemPrice"],
            line_subtotal=data["lineSubtotal"],
            line_total=data["lineTotal"],
            grommet_count=data.get("grommetCount", 0),
        )


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float = 0.0
    discount: float = 0.0
    total: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "OrderTotals":
        return cls(subtotal=data["subtotal"], discount=data["discount"], total=data["total"])


@dataclass
class Contact:
    name: str = ""
    email: str = ""
    phone: Optional[str] = None

    def to_dict(self) -> dict:
        return {"name": self.name, "email": self.email, "phone": self.phone}

    @classmethod
    def from_dict(cls, data: dict) -> "Contact":
        data = data or {}
        phone = (data.get("phone") or "").strip() or None
        return cls(
            name=(data.get("name") or "").strip(),
            email=(data.get("email") or "").strip(),
            phone=phone,
        )


@dataclass(frozen=True)
class OrderLine:
    """A line item snapshot as it was priced at submission time."""
    item: LineItem
    product_name: str
    price: PriceBreakdown

    def to_dict(self) -> dict:
        data = self.item.to_dict()
        data["productName"] = self.product_name
        data["priceBreakdown"] = self.price.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "OrderLine":
        return cls(
            item=LineItem.from_dict(data),
            product_name=data.get("productName") or data["productCode"],
            price=PriceBreakdown.from_dict(data["priceBreakdown"]),
        )


@dataclass(frozen=True)
class Order:
    """
    The committed order. Written once to orders/<orderNo>/order.json and never
    rewritten; later facts (notification outcome) go to separate audit entries.
    """
    order_no: str
    created_at: datetime
    contact: Contact
    lines: List[OrderLine]
    totals: OrderTotals
    payment_instructions: dict
    files: List[FileRef] = field(default_factory=list)
    note: Optional[str] = None
    draft_id: Optional[str] = None

    def to_record(self) -> dict:
        return {
            "orderNo": self.order_no,
            "createdAt": to_iso(self.created_at),
            "draftId": self.draft_id,
            "contact": self.contact.to_dict(),
            "items": [line.to_dict() for line in self.lines],
            "totals": self.totals.to_dict(),
            "note": self.note,
            "paymentInstructions": dict(self.payment_instructions),
            "files": [f.to_dict() for f in self.files],
        }

    @classmethod
    def from_record(cls, data: dict) -> "Order":
        return cls(
            order_no=data["orderNo"],
            created_at=parse_iso(data["createdAt"]),
            contact=Contact.from_dict(data.get("contact")),
            lines=[OrderLine.from_dict(line) for line in data.get("items") or []],
            totals=OrderTotals.from_dict(data["totals"]),
            payment_instructions=dict(data.get("paymentInstructions") or {}),
            files=[FileRef.from_dict(f) for f in data.get("files") or []],
            note=data.get("note"),
            draft_id=data.get("draftId"),
        )
