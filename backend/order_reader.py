"""
Order Reader.

Stored orders come in two variants. The current checkout writes the frame,
size and image selection at the top level ("flat"); older records keep it on
the first entry of ``items`` or on legacy ``frame``/``size`` sub-records
("nested"). Every admin read path goes through :func:`normalize_order`, which
resolves each canonical field from an ordered table of source paths so the
precedence is visible in one place.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from records import is_present, safe_float, safe_string, serialize_instant, utcnow
from schemas import ORDER_STATUSES, ImagePosition, Order, ShippingDetails

logger = logging.getLogger(__name__)

SHAPE_FLAT = "flat"
SHAPE_NESTED = "nested"

DEFAULT_IMAGE_POSITION = {"x": 0.0, "y": 0.0}
DEFAULT_IMAGE_ZOOM = 100.0
DEFAULT_SIZE_MULTIPLIER = 1.0

# Top-level keys whose presence marks a record as the flat variant.
FLAT_FRAME_KEYS = ("frameId", "frameName", "frameImage", "framePrice")


class MissingOrderIdentifier(ValueError):
    pass


class FieldRule(NamedTuple):
    target: str
    sources: Tuple[str, ...]
    default: object
    kind: str = "text"


# First present source wins. Top-level paths come before items.0 paths, which
# come before the legacy frame/size sub-records.
ORDER_FIELD_RULES: Tuple[FieldRule, ...] = (
    FieldRule("user_id", ("userId",), ""),
    FieldRule(
        "user_email", ("userEmail", "customerEmail", "shippingDetails.email"), ""
    ),
    FieldRule("user_name", ("userName", "shippingDetails.fullName"), ""),
    FieldRule("frame_id", ("frameId", "items.0.frameId", "items.0.productId"), ""),
    FieldRule(
        "frame_name",
        ("frameName", "items.0.frameName", "items.0.name", "frame.name"),
        "",
    ),
    FieldRule(
        "frame_image",
        ("frameImage", "items.0.frameImage", "items.0.imageUrl", "frame.image"),
        "",
    ),
    FieldRule("frame_orientation", ("frameOrientation", "items.0.frameOrientation"), ""),
    FieldRule(
        "frame_price",
        ("framePrice", "items.0.framePrice", "items.0.price"),
        0.0,
        "number",
    ),
    FieldRule("image_url", ("imageUrl", "items.0.imageUrl", "items.0.image"), ""),
    FieldRule("size_id", ("sizeId", "items.0.sizeId"), ""),
    FieldRule(
        "size_name",
        ("sizeName", "items.0.sizeName", "items.0.dimensions", "size.dimensions"),
        "",
    ),
    FieldRule(
        "size_multiplier",
        ("sizeMultiplier", "items.0.sizeMultiplier"),
        DEFAULT_SIZE_MULTIPLIER,
        "number",
    ),
    FieldRule(
        "image_position",
        ("imagePosition", "items.0.imagePosition"),
        DEFAULT_IMAGE_POSITION,
        "position",
    ),
    FieldRule(
        "image_zoom", ("imageZoom", "items.0.imageZoom"), DEFAULT_IMAGE_ZOOM, "number"
    ),
    FieldRule("total_price", ("totalPrice", "total"), 0.0, "number"),
    FieldRule("final_price", ("finalPrice",), 0.0, "number"),
    FieldRule("promo_code", ("promoCode",), ""),
    FieldRule("discount_amount", ("discountAmount",), 0.0, "number"),
)

# Canonical field -> stored top-level key, used when flattening legacy records.
FLATTENED_FIELDS = {
    "frame_id": "frameId",
    "frame_name": "frameName",
    "frame_image": "frameImage",
    "frame_orientation": "frameOrientation",
    "frame_price": "framePrice",
    "image_url": "imageUrl",
    "size_id": "sizeId",
    "size_name": "sizeName",
    "size_multiplier": "sizeMultiplier",
    "image_position": "imagePosition",
    "image_zoom": "imageZoom",
}


class StoredOrder(NamedTuple):
    shape: str
    order_id: str
    document: Dict


def resolve_path(document, path: str):
    current = document
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def coerce_position(value):
    if not isinstance(value, dict):
        return None
    return {
        "x": safe_float(value.get("x"), 0.0),
        "y": safe_float(value.get("y"), 0.0),
    }


def coerce_value(rule: FieldRule, value):
    if rule.kind == "number":
        return safe_float(value, None)
    if rule.kind == "position":
        return coerce_position(value)
    return safe_string(value) or None


def resolve_field(document: Dict, rule: FieldRule):
    """Return ``(value, source_path)``; ``source_path`` is None when defaulted."""
    for source in rule.sources:
        raw_value = resolve_path(document, source)
        if not is_present(raw_value):
            continue
        value = coerce_value(rule, raw_value)
        if value is not None:
            return value, source
    default = dict(rule.default) if isinstance(rule.default, dict) else rule.default
    return default, None


def detect_shape(document: Dict) -> str:
    if any(is_present(document.get(key)) for key in FLAT_FRAME_KEYS):
        return SHAPE_FLAT
    items = document.get("items")
    has_line_item = isinstance(items, list) and items and isinstance(items[0], dict)
    if has_line_item or isinstance(document.get("frame"), dict):
        return SHAPE_NESTED
    return SHAPE_FLAT


def read_stored_order(document) -> StoredOrder:
    if not isinstance(document, dict):
        raise MissingOrderIdentifier("Order record is not a document.")
    raw_identifier = document.get("_id")
    if not is_present(raw_identifier):
        raw_identifier = document.get("id")
    if not is_present(raw_identifier):
        raise MissingOrderIdentifier("Order record has no identifier.")
    return StoredOrder(detect_shape(document), str(raw_identifier), document)


def normalize_shipping(document: Dict) -> ShippingDetails:
    details = document.get("shippingDetails")
    if isinstance(details, dict):
        return ShippingDetails(
            full_name=safe_string(details.get("fullName")),
            email=safe_string(details.get("email")),
            phone=safe_string(details.get("phone")),
            address=safe_string(details.get("address")),
            city=safe_string(details.get("city")),
            state=safe_string(details.get("state")),
            postal_code=safe_string(details.get("postalCode")),
        )

    legacy = document.get("shippingAddress")
    if isinstance(legacy, dict):
        full_name = " ".join(
            part
            for part in (
                safe_string(legacy.get("firstName")),
                safe_string(legacy.get("lastName")),
            )
            if part
        )
        return ShippingDetails(
            full_name=full_name,
            address=safe_string(legacy.get("address")),
            city=safe_string(legacy.get("city")),
            state=safe_string(legacy.get("state")),
            postal_code=safe_string(legacy.get("zipCode")),
        )

    return ShippingDetails()


def normalize_status(order_id: str, value) -> str:
    status = safe_string(value).lower()
    if status in ORDER_STATUSES:
        return status
    if status:
        logger.warning("Order %s has unknown status %r; treating as pending", order_id, value)
    return "pending"


def normalize_order(document, now: Optional[datetime] = None) -> Order:
    stored = read_stored_order(document)
    read_at = now or utcnow()

    fields = {}
    for rule in ORDER_FIELD_RULES:
        fields[rule.target], _ = resolve_field(stored.document, rule)

    fields["image_position"] = ImagePosition(**fields["image_position"])

    return Order(
        id=stored.order_id,
        shipping_details=normalize_shipping(stored.document),
        status=normalize_status(stored.order_id, stored.document.get("status")),
        created_at=serialize_instant(stored.document.get("createdAt"), read_at),
        updated_at=serialize_instant(stored.document.get("updatedAt"), read_at),
        record_shape=stored.shape,
        **fields,
    )


def normalize_orders(documents: Iterable, now: Optional[datetime] = None) -> List[Order]:
    read_at = now or utcnow()
    orders: List[Order] = []
    for document in documents:
        try:
            orders.append(normalize_order(document, read_at))
        except MissingOrderIdentifier as exc:
            logger.warning("Skipping order record: %s", exc)
    orders.sort(key=lambda order: order.created_at, reverse=True)
    return orders


def migrate_order_document(document) -> Dict:
    """Build the ``$set`` update that rewrites a nested record in the flat variant.

    Only values actually found in the record are written; defaults stay
    implicit. Flat records produce an empty update.
    """
    stored = read_stored_order(document)
    if stored.shape != SHAPE_NESTED:
        return {}

    update: Dict[str, object] = {}
    for rule in ORDER_FIELD_RULES:
        stored_key = FLATTENED_FIELDS.get(rule.target)
        if not stored_key:
            continue
        value, source = resolve_field(stored.document, rule)
        if source is not None and source != stored_key:
            update[stored_key] = value
    return update


def filter_orders(
    orders: Iterable[Order], search: Optional[str] = None, status: Optional[str] = None
) -> List[Order]:
    needle = safe_string(search).lower()
    wanted_status = safe_string(status).lower()
    if wanted_status == "all":
        wanted_status = ""

    matches: List[Order] = []
    for order in orders:
        if needle:
            haystack = (
                order.id,
                order.user_name,
                order.user_email,
                order.shipping_details.email,
                order.status,
            )
            if not any(needle in value.lower() for value in haystack):
                continue
        if wanted_status and order.status != wanted_status:
            continue
        matches.append(order)
    return matches


def order_statuses(orders: Iterable[Order]) -> List[str]:
    statuses = ["all"]
    for order in orders:
        if order.status not in statuses:
            statuses.append(order.status)
    return statuses
