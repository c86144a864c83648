from beanie import Document, Indexed


class VoteSite(Document):
    slug: Indexed(str, unique=True)
    name: str
    vote_url: str
    image_url: str | None = None
    reward_units: int
    cooldown_hours: int = 12
    pingback_key: str | None = None
    is_active: bool = True
    sort_order: int = 0

    class Settings:
        name = "vote_sites"
