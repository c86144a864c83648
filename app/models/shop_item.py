from datetime import datetime
from typing import Literal

from beanie import Document
from pydantic import Field

Faction = Literal["alliance", "horde", "both"]

DEFAULT_LOCALE = "en"


def localized(names: dict[str, str], locale: str) -> str:
    """Pick the locale's text, falling back to English then to any entry."""
    return names.get(locale) or names.get(DEFAULT_LOCALE) or next(iter(names.values()), "")


def discounted_price(price: int, discount_percentage: int) -> int:
    if discount_percentage <= 0:
        return price
    return price * (100 - discount_percentage) // 100


class ShopItem(Document):
    category: str  # "services", "mounts", "bags", ...
    service_type: str | None = None  # set for services, e.g. "xp_boost_24h"
    item_entry: int | None = None  # in-world item template id
    names: dict[str, str] = Field(default_factory=dict)  # locale -> name
    price: int
    discount_percentage: int = 0
    realm_ids: list[int] | None = None
    race_ids: list[int] | None = None
    class_ids: list[int] | None = None
    faction: Faction = "both"
    min_level: int = 0
    is_refundable: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "shop_items"
        indexes = [[("category", 1), ("is_active", 1)]]

    @property
    def is_service(self) -> bool:
        return self.category == "services" or self.service_type is not None

    @property
    def price_after_discount(self) -> int:
        return discounted_price(self.price, self.discount_percentage)

    def name(self, locale: str = DEFAULT_LOCALE) -> str:
        return localized(self.names, locale)
