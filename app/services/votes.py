"""Vote rewards: per-site cooldowns, reward credits, and vote-site pingbacks."""

import json
from datetime import datetime, timedelta
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from app.core.audit import log_event
from app.core.exceptions import NotFoundError, PolicyBlockedError
from app.core.logging import get_logger
from app.core.security import secrets_match
from app.db.transaction import run_atomic
from app.models.vote_cooldown import VoteCooldown
from app.models.vote_log import VoteLog
from app.models.vote_site import VoteSite
from app.services import accounts, ledger

log = get_logger(__name__)

GTOP100_SLUG = "gtop100"


async def _get_site(site_id: PydanticObjectId) -> VoteSite:
    site = await VoteSite.get(site_id)
    if not site or not site.is_active:
        raise NotFoundError("Vote site not found", code="siteNotFound")
    return site


async def last_successful_vote(account_id: int, site_id: PydanticObjectId) -> datetime | None:
    last = (
        await VoteLog.find(
            VoteLog.account_id == account_id,
            VoteLog.site_id == site_id,
            VoteLog.success == True,  # noqa: E712
        )
        .sort(-VoteLog.created_at)
        .first_or_none()
    )
    return last.created_at if last else None


def cooldown_elapsed(last_voted_at: datetime | None, cooldown_hours: int, now: datetime) -> bool:
    return last_voted_at is None or now - last_voted_at >= timedelta(hours=cooldown_hours)


async def can_vote(account_id: int, site_id: PydanticObjectId, now: datetime | None = None) -> bool:
    """True if the account has no successful vote on the site within its cooldown."""
    site = await _get_site(site_id)
    last = await last_successful_vote(account_id, site.id)
    return cooldown_elapsed(last, site.cooldown_hours, now or datetime.utcnow())


def _cooldown_blocked(last_voted_at: datetime | None) -> PolicyBlockedError:
    return PolicyBlockedError(
        "cooldown",
        "Already voted on this site recently",
        status_code=429,
        details={"last_voted_at": last_voted_at.isoformat() if last_voted_at else None},
    )


async def _insert_vote(
    session,
    account_id: int,
    site_id: PydanticObjectId,
    site: VoteSite | None,
    success: bool,
    reason: str | None,
    voter_ip: str | None,
) -> VoteLog:
    reward = site.reward_units if site and success else 0
    entry = VoteLog(
        account_id=account_id,
        site_id=site_id,
        voter_ip=voter_ip,
        success=success,
        reason=reason,
        rewarded=reward > 0,
    )
    await entry.insert(session=session)
    if success:
        await VoteCooldown.get_motor_collection().update_one(
            {"account_id": account_id, "site_id": site_id},
            {"$max": {"last_voted_at": entry.created_at}},
            upsert=True,
            session=session,
        )
    if reward > 0:
        await ledger.credit(
            account_id,
            reward,
            "vote_reward",
            reference_type="vote_log",
            reference_id=str(entry.id),
            session=session,
        )
        await log_event(
            None,
            "vote_reward",
            "vote_log",
            str(entry.id),
            {"account_id": account_id, "site": site.slug, "reward": reward},
            session=session,
        )
    return entry


async def record_vote(
    account_id: int,
    site_id: PydanticObjectId,
    success: bool,
    reason: str | None = None,
    voter_ip: str | None = None,
) -> VoteLog:
    """Log a vote; a successful one also credits the site's reward, atomically."""
    site = await VoteSite.get(site_id)

    async def body(session) -> VoteLog:
        return await _insert_vote(session, account_id, site_id, site, success, reason, voter_ip)

    entry = await run_atomic(body)
    log.info("vote_recorded", account_id=account_id, site_id=str(site_id), success=success, rewarded=entry.rewarded)
    return entry


async def sites_with_status(account_id: int, now: datetime | None = None) -> list[dict]:
    now = now or datetime.utcnow()
    sites = await VoteSite.find(VoteSite.is_active == True).sort(+VoteSite.sort_order).to_list()  # noqa: E712
    out = []
    for site in sites:
        last = await last_successful_vote(account_id, site.id)
        out.append(
            {
                "id": str(site.id),
                "slug": site.slug,
                "name": site.name,
                "vote_url": site.vote_url,
                "image_url": site.image_url,
                "reward_units": site.reward_units,
                "cooldown_hours": site.cooldown_hours,
                "last_voted_at": last.isoformat() if last else None,
                "can_vote": cooldown_elapsed(last, site.cooldown_hours, now),
            }
        )
    return out


async def _claim_cooldown(session, account_id: int, site: VoteSite, now: datetime) -> None:
    """Move the account's cooldown mark to `now`, or refuse if it is still running.

    A running cooldown makes the filter miss, so the upsert collides with the
    existing (account, site) row on its unique index.
    """
    threshold = now - timedelta(hours=site.cooldown_hours)
    try:
        await VoteCooldown.get_motor_collection().update_one(
            {"account_id": account_id, "site_id": site.id, "last_voted_at": {"$lte": threshold}},
            {"$set": {"last_voted_at": now}},
            upsert=True,
            session=session,
        )
    except DuplicateKeyError:
        raise _cooldown_blocked(None) from None


async def claim_vote(account_id: int, site_id: PydanticObjectId, voter_ip: str | None = None) -> dict:
    """Self-reported vote from the website; refused while the site's cooldown runs."""
    site = await _get_site(site_id)
    now = datetime.utcnow()
    last = await last_successful_vote(account_id, site.id)
    if not cooldown_elapsed(last, site.cooldown_hours, now):
        raise _cooldown_blocked(last)

    async def body(session) -> VoteLog:
        await _claim_cooldown(session, account_id, site, now)
        return await _insert_vote(session, account_id, site.id, site, True, None, voter_ip)

    entry = await run_atomic(body)
    log.info("vote_claimed", account_id=account_id, site_id=str(site.id), reward=site.reward_units)
    return {
        "success": True,
        "reward_units": site.reward_units,
        "last_voted_at": entry.created_at.isoformat(),
    }


def parse_gtop100_entries(common: Any) -> list[dict[str, Any]]:
    """Flatten gtop100's `Common` field into one dict per vote.

    It arrives as a list of lists of single-key objects, e.g.
    `[[{"pb_id": 1}, {"ip": "1.2.3.4"}, {"success": 0}, {"pb_name": "bob"}]]`,
    sometimes JSON-encoded as a string when posted as a form.
    """
    if isinstance(common, str):
        try:
            common = json.loads(common)
        except ValueError:
            return []
    if not isinstance(common, list):
        return []
    entries = []
    for group in common:
        if not isinstance(group, list):
            continue
        merged: dict[str, Any] = {}
        for part in group:
            if isinstance(part, dict):
                merged.update(part)
        entries.append(merged)
    return entries


async def handle_gtop100_pingback(payload: dict[str, Any]) -> int:
    """Record the votes in a gtop100 pingback; returns how many were recorded.

    Bad keys and unknown usernames are logged and skipped, never raised: the
    caller always acknowledges so the vote site does not retry.
    """
    site = await VoteSite.find_one(VoteSite.slug == GTOP100_SLUG, VoteSite.is_active == True)  # noqa: E712
    key = payload.get("pingbackkey")
    if not site or not isinstance(key, str) or not secrets_match(key, site.pingback_key):
        log.warning("gtop100_pingback_rejected", reason="invalid_key")
        return 0

    recorded = 0
    for entry in parse_gtop100_entries(payload.get("Common")):
        username = entry.get("pb_name")
        if not username:
            continue
        account = await accounts.find_account_by_username(str(username))
        if account is None:
            log.warning("gtop100_pingback_unknown_account", username=username)
            continue
        # gtop100 reports success as 0.
        success = entry.get("success") in (0, "0")
        await record_vote(
            account.id,
            site.id,
            success,
            reason=entry.get("reason") or None,
            voter_ip=entry.get("ip") or None,
        )
        recorded += 1
    return recorded
