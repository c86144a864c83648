from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

PurchaseStatus = Literal["pending_delivery", "completed", "failed", "refunded"]


class ShopPurchase(Document):
    account_id: int
    item_ref: PydanticObjectId | None = None
    set_ref: PydanticObjectId | None = None
    character_guid: int
    character_name: str
    realm_id: int
    is_gift: bool = False
    gift_to_character_name: str | None = None
    gift_message: str | None = None
    price_paid: int
    original_price: int
    discount_applied: int = 0
    category: str | None = None
    service_type: str | None = None
    item_entries: list[int] = Field(default_factory=list)  # snapshot at purchase time
    is_refundable: bool = False
    status: PurchaseStatus = "pending_delivery"
    delivery_attempts: int = 0
    last_delivery_error: str | None = None
    delivery_lock_until: datetime | None = None  # lease held by the caller currently sending
    delivered_at: datetime | None = None
    refunded_at: datetime | None = None
    refunded_by: int | None = None  # None on self-refund
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "shop_purchases"
        indexes = [
            [("account_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", 1)],
        ]

    @property
    def recipient_name(self) -> str:
        if self.is_gift and self.gift_to_character_name:
            return self.gift_to_character_name
        return self.character_name

    @property
    def is_service(self) -> bool:
        return self.category == "services" or self.service_type is not None
