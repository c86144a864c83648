from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob
from app.models.shard_balance import ShardBalance
from app.models.shard_ledger import ShardLedgerEntry
from app.models.shard_transaction import ShardTransaction
from app.models.shop_admin import ShopAdmin
from app.models.shop_ban import ShopBan
from app.models.shop_item import ShopItem
from app.models.shop_purchase import ShopPurchase
from app.models.shop_set import ShopSet
from app.models.vote_cooldown import VoteCooldown
from app.models.vote_log import VoteLog
from app.models.vote_site import VoteSite

__all__ = [
    "AuditLog",
    "FailedJob",
    "ShardBalance",
    "ShardLedgerEntry",
    "ShardTransaction",
    "ShopAdmin",
    "ShopBan",
    "ShopItem",
    "ShopPurchase",
    "ShopSet",
    "VoteCooldown",
    "VoteLog",
    "VoteSite",
]
