from typing import Any, Callable, Dict, List
from shopfront.background_workers.base_worker import PeriodicWorker
from shopfront.background_workers.constants import logger
from shopfront.config.settings import config_settings
from shopfront.inventory.services import cleanup_expired_reservations
from shopfront.user_activity.services import anonymize_old_activities, cleanup_old_activities


async def sweep_expired_reservations(session) -> Dict[str, Any]:
    """Expire overdue active reservations and hand their stock back."""
    return await cleanup_expired_reservations(session)


async def activity_maintenance(session) -> Dict[str, int]:
    deleted = await cleanup_old_activities(session, config_settings.ACTIVITY_RETENTION_DAYS)
    anonymized = await anonymize_old_activities(session, config_settings.ACTIVITY_ANONYMIZE_AFTER_DAYS)
    await session.commit()
    return {"deleted": deleted, "anonymized": anonymized}


def build_workers(session_factory: Callable[[], Any]) -> List[PeriodicWorker]:
    workers = [
        PeriodicWorker("reservation-sweeper", sweep_expired_reservations, session_factory,
                       config_settings.RESERVATION_SWEEP_INTERVAL_SECONDS),
        PeriodicWorker("activity-maintenance", activity_maintenance, session_factory,
                       config_settings.ACTIVITY_MAINTENANCE_INTERVAL_SECONDS),
    ]
    logger.debug("workers.built", extra={"workers": [w.name for w in workers]})
    return workers


async def shutdown_workers(workers: List[PeriodicWorker]):
    for w in workers:
        await w.shutdown()
