"""
Submission intake adapters.

Every wire format the order endpoint accepts is reduced here to the same
(OrderDraft, orderNo) pair handed to SubmissionWorkflow.submit():

- JSON:            {draftId?, orderNo?, contact, items, note?, uploadedFileReferences}
- JSON legacy:     {meta: {orderNo, customer, items, ...}, uploadedPaths}
- Multipart legacy: a "meta" field (or meta.json part) plus "files" parts,
                   uploaded server-side before the same submission runs.

No business rules live here beyond shape normalisation.
"""
import json
import logging
import numbers
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from constants import (
    ADDON_HEMS, ADDON_GROMMETS, ADDON_LAMINATION, ADDON_DOUBLE_SIDED, ADDON_POLE_POCKETS, POLE_POCKET_SIDES,
)
from errors import ValidationError
from models import AddOns, Contact, LineItem, PolePockets
from services.catalog import Catalog, DEFAULT_CATALOG, FixedPriced, is_add_on_allowed
from services.drafts import OrderDraft, new_draft_id, new_item_id
from services.pricing import normalize_unit
from services.submission import validate_draft
from services.uploads import UploadCoordinator
from utils.filenames import draft_id_from_path, is_safe_segment

logger = logging.getLogger(__name__)

_NO_LAMINATION = {"", "none", "false", "no"}


@dataclass
class IntakeResult:
    draft: OrderDraft
    order_no: Optional[str] = None


def _coerce_number(value):
    """Numeric strings from form posts become floats; anything else is left for validation."""
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return value
    return value


def _coerce_quantity(value):
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _lamination_choice(value, product) -> Optional[str]:
    if value is True:
        return product.default_lamination
    if value is None or value is False:
        return None
    choice = str(value).strip().lower()
    return None if choice in _NO_LAMINATION else choice


def parse_add_ons(data: Optional[dict], product, legacy: bool = False) -> AddOns:
    """
    Accepts both `addOns` ({..., polePockets: {top, ..., sizeInches}}) and the
    legacy `opts` ({..., pocketSides: {top, ...}, pocketSizeIn}) spellings.

    Legacy order forms never cleared switches when the buyer changed product,
    so legacy flags the product does not offer are dropped here instead of
    being rejected by the pricing engine.
    """
    data = data or {}
    if not isinstance(data, dict):
        raise ValidationError("Add-ons must be an object.", code="invalid_add_ons")

    if "pocketSides" in data or "pocketSizeIn" in data:
        sides = data.get("pocketSides") or {}
        size = data.get("pocketSizeIn", 3)
    else:
        sides = data.get("polePockets") or {}
        size = sides.get("sizeInches", 3) if isinstance(sides, dict) else None
    if not isinstance(sides, dict):
        raise ValidationError("Pole pocket sides must be an object.", code="invalid_add_ons")
    pockets = PolePockets(
        size_inches=_coerce_number(size),
        **{side: bool(sides.get(side)) for side in POLE_POCKET_SIDES},
    )

    add_ons = AddOns(
        hems=bool(data.get("hems")),
        grommets=bool(data.get("grommets")),
        lamination=_lamination_choice(data.get("lamination"), product),
        double_sided=bool(data.get("doubleSided")),
        pole_pockets=pockets,
    )

    if legacy and not isinstance(product.kind, FixedPriced):
        dropped = [name for name in add_ons.enabled() if not is_add_on_allowed(product, name)]
        if dropped:
            logger.info(f"[Intake] Dropping legacy add-ons {dropped} not offered for {product.code}")
            add_ons = AddOns(
                hems=add_ons.hems and is_add_on_allowed(product, ADDON_HEMS),
                grommets=add_ons.grommets and is_add_on_allowed(product, ADDON_GROMMETS),
                lamination=add_ons.lamination if is_add_on_allowed(product, ADDON_LAMINATION) else None,
                double_sided=add_ons.double_sided and is_add_on_allowed(product, ADDON_DOUBLE_SIDED),
                pole_pockets=pockets if is_add_on_allowed(product, ADDON_POLE_POCKETS) else PolePockets(),
            )
    return add_ons


def parse_line_item(data: Any, catalog: Catalog = None) -> LineItem:
    catalog = catalog or DEFAULT_CATALOG
    if not isinstance(data, dict):
        raise ValidationError("Each item must be an object.", code="invalid_item")

    product_code = data.get("productCode") or data.get("product")
    if not product_code:
        raise ValidationError("Each item needs a product code.", code="missing_product")
    product = catalog.lookup(product_code)

    item_id = data.get("id")
    item_id = str(item_id) if item_id not in (None, "") else new_item_id()
    if not is_safe_segment(item_id):
        raise ValidationError(f"Invalid item id: {item_id!r}", code="invalid_item_id")

    legacy = "opts" in data and "addOns" not in data
    add_ons = parse_add_ons(data.get("opts") if legacy else data.get("addOns"), product, legacy=legacy)

    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise ValidationError("Item options must be an object.", code="invalid_options")
    if isinstance(product.kind, FixedPriced):
        for key, value in options.items():
            allowed = product.kind.options.get(key)
            if allowed is not None and value not in allowed:
                raise ValidationError(
                    f"{product.name} {key} must be one of: {', '.join(allowed)}.", code="invalid_option"
                )

    dims = product.kind.fixed_dimensions if isinstance(product.kind, FixedPriced) else None
    return LineItem(
        id=item_id,
        product_code=product.code,
        unit=normalize_unit(data.get("unit") or (dims.unit if dims else "ft")),
        width=_coerce_number(data.get("width", dims.width if dims else None)),
        height=_coerce_number(data.get("height", dims.height if dims else None)),
        quantity=_coerce_quantity(data.get("quantity", 1)),
        add_ons=add_ons,
        options={str(k): str(v) for k, v in options.items()},
    )


def _file_entries(refs: Any) -> List[dict]:
    """Flat path lists and per-item {itemId, path} objects, normalised to dicts."""
    if refs is None:
        return []
    if not isinstance(refs, list):
        raise ValidationError("File references must be a list.", code="invalid_file_references")
    entries = []
    for ref in refs:
        if isinstance(ref, str):
            entries.append({"path": ref})
        elif isinstance(ref, dict) and (ref.get("path") or ref.get("storagePath")):
            size = ref.get("size", ref.get("sizeBytes"))
            entries.append({
                "path": ref.get("path") or ref.get("storagePath"),
                "itemId": ref.get("itemId"),
                "name": ref.get("name") or ref.get("originalName"),
                "size": size if isinstance(size, numbers.Integral) and not isinstance(size, bool) else None,
                "type": ref.get("type") or ref.get("mimeType"),
            })
        else:
            raise ValidationError("Each file reference needs a path.", code="invalid_file_reference")

    # Clients resend the whole list on retry; keep the first mention of a path
    seen = set()
    unique = []
    for entry in entries:
        if entry["path"] not in seen:
            seen.add(entry["path"])
            unique.append(entry)
    return unique


def _upload_owner(uploads: UploadCoordinator, draft: OrderDraft, order_no: Optional[str]) -> str:
    if uploads.policy == "direct":
        if not order_no:
            raise ValidationError("orderNo is required when files were uploaded to the order.", code="missing_order_no")
        return order_no
    return draft.draft_id


def _attach_references(draft: OrderDraft, entries: List[dict], uploads: UploadCoordinator, order_no: Optional[str]):
    if not entries:
        return
    owner = _upload_owner(uploads, draft, order_no)
    for entry in entries:
        ref = uploads.record_upload(
            owner,
            entry["path"],
            original_name=entry.get("name"),
            item_id=entry.get("itemId"),
            size_bytes=entry.get("size"),
            mime_type=entry.get("type"),
        )
        if ref.item_id:
            draft.attach_file(ref.item_id, ref)
        else:
            draft.attach_loose_file(ref)


def _build_draft(
    contact: Any,
    items: Any,
    note: Any,
    draft_id: Optional[str],
    catalog: Catalog,
) -> OrderDraft:
    if not isinstance(items, list):
        raise ValidationError("items must be a list.", code="invalid_items")
    if draft_id is not None and not is_safe_segment(draft_id):
        raise ValidationError(f"Invalid draftId: {draft_id!r}", code="invalid_draft_id")

    draft = OrderDraft(draft_id=draft_id or new_draft_id(), generated_id=not draft_id, catalog=catalog)
    draft.contact = Contact.from_dict(contact if isinstance(contact, dict) else {})
    draft.set_note(note if isinstance(note, str) else None)
    for raw in items:
        item = parse_line_item(raw, catalog)
        if any(existing.id == item.id for existing in draft.items):
            raise ValidationError(f"Duplicate line item id {item.id!r}.", code="duplicate_item")
        draft.items.append(item)
    return draft


def _infer_draft_id(entries: List[dict]) -> Optional[str]:
    for entry in entries:
        draft_id = draft_id_from_path(entry["path"])
        if draft_id:
            return draft_id
    return None


def from_json(payload: Any, uploads: UploadCoordinator, catalog: Catalog = None) -> IntakeResult:
    catalog = catalog or DEFAULT_CATALOG
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.", code="invalid_body")

    if "meta" in payload:
        return from_legacy_meta(payload.get("meta"), payload.get("uploadedPaths"), uploads, catalog)

    entries = _file_entries(payload.get("uploadedFileReferences"))
    order_no = payload.get("orderNo") or None
    draft_id = payload.get("draftId") or _infer_draft_id(entries)
    draft = _build_draft(payload.get("contact"), payload.get("items"), payload.get("note"), draft_id, catalog)
    _attach_references(draft, entries, uploads, order_no)
    return IntakeResult(draft=draft, order_no=order_no)


def _legacy_parts(meta: Any) -> Tuple[str, dict]:
    if not isinstance(meta, dict):
        raise ValidationError("Missing meta", code="missing_meta")
    order_no = meta.get("orderNo")
    if not order_no:
        raise ValidationError("meta.orderNo is required.", code="missing_order_no")
    return order_no, meta


def from_legacy_meta(meta: Any, uploaded_paths: Any, uploads: UploadCoordinator, catalog: Catalog = None) -> IntakeResult:
    """The {meta, uploadedPaths} envelope: client-held order number, flat path list."""
    catalog = catalog or DEFAULT_CATALOG
    order_no, meta = _legacy_parts(meta)
    entries = _file_entries(uploaded_paths if uploaded_paths is not None else meta.get("uploadedFileReferences"))
    draft_id = meta.get("draftId") or _infer_draft_id(entries)
    draft = _build_draft(
        meta.get("customer") or meta.get("contact"),
        meta.get("items"),
        meta.get("note"),
        draft_id,
        catalog,
    )
    _attach_references(draft, entries, uploads, order_no)
    return IntakeResult(draft=draft, order_no=order_no)


def _load_meta(form, files) -> Any:
    raw = None
    meta_part = files.get("meta")
    if meta_part is None:
        for part in files.getlist("files"):
            if (part.filename or "").lower() == "meta.json":
                meta_part = part
                break
    if meta_part is not None:
        raw = meta_part.read().decode("utf-8")
    elif form.get("meta"):
        raw = form.get("meta")

    if raw is None:
        raise ValidationError("Missing meta", code="missing_meta")
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ValidationError("meta is not valid JSON.", code="invalid_meta") from e


def from_multipart(form, files, uploads: UploadCoordinator, catalog: Catalog = None) -> IntakeResult:
    """
    Legacy multipart: the file bytes come with the request. They are stored
    server-side in the same namespace a signed upload would have used, then
    the order continues exactly like a JSON submission.

    `form` and `files` are werkzeug MultiDicts (request.form / request.files).
    A part named "files:<itemId>" is bound to that line item.
    """
    catalog = catalog or DEFAULT_CATALOG
    order_no, meta = _legacy_parts(_load_meta(form, files))
    draft = _build_draft(
        meta.get("customer") or meta.get("contact"),
        meta.get("items"),
        meta.get("note"),
        meta.get("draftId"),
        catalog,
    )
    _attach_references(draft, _file_entries(meta.get("uploadedFileReferences")), uploads, order_no)

    pending = []
    for field_name in files:
        if field_name != "files" and not field_name.startswith("files:"):
            continue
        item_id = field_name.split(":", 1)[1] if ":" in field_name else None
        parts = [p for p in files.getlist(field_name) if p.filename and p.filename.lower() != "meta.json"]
        if item_id and parts:
            item = draft.get_item(item_id)
            product = catalog.lookup(item.product_code)
            if len(item.attached_files) + len(parts) > product.max_files:
                raise ValidationError(
                    f"{product.name} accepts at most {product.max_files} file(s) per line item.",
                    code="too_many_files",
                )
        pending.extend((item_id, part) for part in parts)

    # Nothing is stored for a draft that would be rejected anyway
    validate_draft(draft, catalog)

    owner = _upload_owner(uploads, draft, order_no)
    for item_id, part in pending:
        ref = uploads.upload_bytes(owner, part.filename, part.stream, item_id=item_id, content_type=part.mimetype)
        if item_id:
            draft.attach_file(item_id, ref)
        else:
            draft.attach_loose_file(ref)

    return IntakeResult(draft=draft, order_no=order_no)
