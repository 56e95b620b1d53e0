"""
Order Draft State.

The buyer's in-progress order: line items, contact info and a note. A draft
has a single owner, so no locking is needed. Every edit is validated through
the pricing engine so an invalid item can never sit in a draft; the draft is
persisted only as part of the Order snapshot written at submission.
"""
import copy
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from errors import ValidationError
from models import AddOns, Contact, FileRef, LineItem, OrderTotals, PriceBreakdown
from services.catalog import Catalog, FixedPriced, DEFAULT_CATALOG
from services.pricing import normalize_unit, quote, validate_line_item


def new_item_id() -> str:
    return uuid.uuid4().hex[:12]


def new_draft_id() -> str:
    return uuid.uuid4().hex


@dataclass
class OrderDraft:
    draft_id: str = field(default_factory=new_draft_id)
    items: List[LineItem] = field(default_factory=list)
    contact: Contact = field(default_factory=Contact)
    note: Optional[str] = None
    # Files not bound to a line item (flat path lists from older clients)
    loose_files: List[FileRef] = field(default_factory=list)
    # The server picked draft_id because the client sent none
    generated_id: bool = field(default=False, compare=False)
    catalog: Catalog = field(default=DEFAULT_CATALOG, repr=False, compare=False)

    # --- Items ---

    def get_item(self, item_id: str) -> LineItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise ValidationError(f"No line item with id {item_id!r} in this order.", code="unknown_item")

    def _index_of(self, item_id: str) -> int:
        return self.items.index(self.get_item(item_id))

    def add_item(self, product_code: str, **fields) -> LineItem:
        """
        Append a new line item. Dimensions default to the product's first
        quick-pick size (or its fixed size for packages).
        """
        product = self.catalog.lookup(product_code)
        if isinstance(product.kind, FixedPriced) and product.kind.fixed_dimensions:
            default_dims = product.kind.fixed_dimensions
        elif product.example_dimensions:
            default_dims = product.example_dimensions[0]
        else:
            default_dims = None

        item = LineItem(
            id=fields.pop("id", None) or new_item_id(),
            product_code=product.code,
            width=fields.pop("width", default_dims.width if default_dims else 1),
            height=fields.pop("height", default_dims.height if default_dims else 1),
            unit=normalize_unit(fields.pop("unit", default_dims.unit if default_dims else "ft")),
            quantity=fields.pop("quantity", 1),
            add_ons=fields.pop("add_ons", None) or AddOns(),
            options=fields.pop("options", None) or {},
        )
        if fields:
            raise TypeError(f"Unexpected line item fields: {', '.join(sorted(fields))}")
        if any(existing.id == item.id for existing in self.items):
            raise ValidationError(f"Duplicate line item id {item.id!r}.", code="duplicate_item")

        validate_line_item(item, product)
        self.items.append(item)
        return item

    def duplicate_item(self, item_id: str) -> LineItem:
        """Deep copy with a fresh id, inserted right after the source. Files are not copied."""
        index = self._index_of(item_id)
        clone = copy.deepcopy(self.items[index])
        clone.id = new_item_id()
        clone.attached_files = []
        self.items.insert(index + 1, clone)
        return clone

    def remove_item(self, item_id: str) -> LineItem:
        index = self._index_of(item_id)
        return self.items.pop(index)

    def update_item(self, item_id: str, **changes) -> LineItem:
        """Apply edits atomically: if the edited item is invalid, the draft is left unchanged."""
        index = self._index_of(item_id)
        candidate = copy.deepcopy(self.items[index])
        for name, value in changes.items():
            if name in ("id", "attached_files") or not hasattr(candidate, name):
                raise TypeError(f"Line item field {name!r} cannot be edited")
            setattr(candidate, name, value)
        candidate.unit = normalize_unit(candidate.unit)

        product = self.catalog.lookup(candidate.product_code)
        validate_line_item(candidate, product)
        if len(candidate.attached_files) > product.max_files:
            raise ValidationError(
                f"{product.name} accepts at most {product.max_files} file(s); remove files before switching.",
                code="too_many_files",
            )
        self.items[index] = candidate
        return candidate

    # --- Files ---

    def attach_file(self, item_id: str, file_ref: FileRef) -> FileRef:
        item = self.get_item(item_id)
        product = self.catalog.lookup(item.product_code)
        if len(item.attached_files) >= product.max_files:
            raise ValidationError(
                f"{product.name} accepts at most {product.max_files} file(s) per line item.",
                code="too_many_files",
            )
        if file_ref.item_id != item_id:
            file_ref = FileRef(
                item_id=item_id,
                original_name=file_ref.original_name,
                storage_path=file_ref.storage_path,
                size_bytes=file_ref.size_bytes,
                mime_type=file_ref.mime_type,
            )
        item.attached_files.append(file_ref)
        return file_ref

    def detach_file(self, item_id: str, storage_path: str) -> FileRef:
        item = self.get_item(item_id)
        for ref in item.attached_files:
            if ref.storage_path == storage_path:
                item.attached_files.remove(ref)
                return ref
        raise ValidationError(f"File {storage_path!r} is not attached to item {item_id!r}.", code="unknown_file")

    def attach_loose_file(self, file_ref: FileRef) -> FileRef:
        if file_ref.item_id is not None:
            raise ValidationError("Loose files must not name a line item.", code="invalid_file_reference")
        self.loose_files.append(file_ref)
        return file_ref

    def file_refs(self) -> List[FileRef]:
        """Every attached file, item files first in item order, then loose files."""
        return [ref for item in self.items for ref in item.attached_files] + list(self.loose_files)

    # --- Contact / note ---

    def set_contact(self, name: str, email: str, phone: Optional[str] = None) -> Contact:
        self.contact = Contact.from_dict({"name": name, "email": email, "phone": phone})
        return self.contact

    def set_note(self, note: Optional[str]) -> None:
        self.note = (note or "").strip() or None

    # --- Pricing ---

    def quote(self) -> Tuple[List[PriceBreakdown], OrderTotals]:
        """Live totals for the current items."""
        return quote(self.items, self.catalog)
