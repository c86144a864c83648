"""Cron: retry purchases stuck in pending_delivery."""

from app.core.config import get_settings
from app.services.delivery import sweep_pending_deliveries


def sweep_minutes() -> set[int]:
    """Minutes of the hour at which the sweep runs."""
    interval = max(1, min(get_settings().delivery_sweep_interval_minutes, 60))
    return set(range(0, 60, interval))


async def run_delivery_sweep() -> dict[str, int]:
    """One pass over pending deliveries; purchases past the attempt cap are failed."""
    return await sweep_pending_deliveries(get_settings().max_delivery_attempts)
