"""
Canonical record shapes for FrameCraft admin reads.

Every field is populated, either from the stored record or from an explicit
default, so views never need to null-check. Wire names are camelCase to match
the documents the storefront writes.
"""

from typing import Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ORDER_STATUSES: Tuple[str, ...] = (
    "pending",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
)

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
RecordShape = Literal["flat", "nested"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImagePosition(CamelModel):
    x: float = 0.0
    y: float = 0.0


class ShippingDetails(CamelModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""


class Order(CamelModel):
    id: str
    user_id: str = ""
    user_email: str = ""
    user_name: str = ""

    frame_id: str = ""
    frame_name: str = ""
    frame_image: str = ""
    frame_orientation: str = ""
    frame_price: float = 0.0

    size_id: str = ""
    size_name: str = ""
    size_multiplier: float = 1.0

    total_price: float = 0.0
    final_price: float = 0.0

    image_url: str = ""
    image_position: ImagePosition = Field(default_factory=ImagePosition)
    image_zoom: float = 100.0

    shipping_details: ShippingDetails = Field(default_factory=ShippingDetails)
    promo_code: str = ""
    discount_amount: float = 0.0

    status: OrderStatus = "pending"
    created_at: str
    updated_at: str

    record_shape: RecordShape = "flat"

    def to_json(self):
        return self.model_dump(by_alias=True)
