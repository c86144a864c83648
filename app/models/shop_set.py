from datetime import datetime

from beanie import Document
from pydantic import Field

from app.models.shop_item import DEFAULT_LOCALE, Faction, discounted_price, localized


class ShopSet(Document):
    """Bundle of in-world items sold together (e.g. a transmog set)."""
    names: dict[str, str] = Field(default_factory=dict)
    item_entries: list[int] = Field(default_factory=list)
    price: int
    discount_percentage: int = 0
    class_ids: list[int] | None = None
    faction: Faction = "both"
    min_level: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "shop_sets"

    @property
    def price_after_discount(self) -> int:
        return discounted_price(self.price, self.discount_percentage)

    def name(self, locale: str = DEFAULT_LOCALE) -> str:
        return localized(self.names, locale)
