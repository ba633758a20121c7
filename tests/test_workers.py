import asyncio
from datetime import timedelta
import pytest
from sqlalchemy import select, update
from shopfront.background_workers.base_worker import PeriodicWorker
from shopfront.background_workers.jobs import activity_maintenance, build_workers, sweep_expired_reservations
from shopfront.common.utils import now
from shopfront.inventory.services import reserve_stock
from shopfront.schema.full_schema import Inventory, StockReservation, UserActivity
from shopfront.user_activity.services import record_activity


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_worker_runs_until_shutdown(session_factory):
    calls = []

    async def job(session):
        calls.append(session)

    worker = PeriodicWorker("test-worker", job, session_factory, interval=0.01)
    worker.start()
    await _wait_for(lambda: worker.runs >= 3)
    await worker.shutdown()

    seen = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == seen
    assert worker.runs == seen
    # every run gets its own session
    assert len({id(s) for s in calls}) == seen


@pytest.mark.asyncio
async def test_failing_run_does_not_stop_loop(session_factory):
    attempts = []

    async def flaky(session):
        attempts.append(1)
        if len(attempts) == 1:
            raise RuntimeError("boom")

    worker = PeriodicWorker("flaky", flaky, session_factory, interval=0.01)
    worker.start()
    await _wait_for(lambda: worker.runs >= 2)
    await worker.shutdown()

    assert len(attempts) >= 3
    assert worker.runs == len(attempts) - 1


@pytest.mark.asyncio
async def test_shutdown_cancels_stuck_run(session_factory):
    started = asyncio.Event()

    async def stuck(session):
        started.set()
        await asyncio.sleep(60)

    worker = PeriodicWorker("stuck", stuck, session_factory, interval=1)
    worker.start()
    await started.wait()
    await worker.shutdown(wait_timeout=0.05)

    assert worker._task is None
    assert worker.runs == 0


@pytest.mark.asyncio
async def test_sweeper_expires_overdue_reservations(session_factory, make_product):
    product = await make_product(quantity=10)

    async with session_factory() as session:
        reservation = await reserve_stock(session, product["id"], 4, "ORD-SWEEP")
        await session.commit()
        await session.execute(update(StockReservation).where(StockReservation.id == reservation.id)
                              .values(expires_at=now() - timedelta(minutes=1)))
        await session.commit()

    worker = PeriodicWorker("reservation-sweeper", sweep_expired_reservations, session_factory, interval=60)
    result = await worker.run_once()
    assert result["processed_count"] == 1
    assert result["expired_reservations"][0]["order_ref"] == "ORD-SWEEP"

    async with session_factory() as session:
        inventory = (await session.execute(select(Inventory).where(Inventory.product_id == product["id"]))).scalar_one()
        assert (inventory.quantity, inventory.reserved) == (10, 0)
        status = (await session.execute(select(StockReservation.status))).scalar_one()
        assert status == "expired"


@pytest.mark.asyncio
async def test_activity_maintenance_prunes_and_scrubs(session_factory):
    async with session_factory() as session:
        for days_old in (120, 45, 1):
            activity = await record_activity(session, activity_type=f"visit-{days_old}", ip_address="198.51.100.7",
                                             user_agent="Mozilla/5.0")
            activity.timestamp = now() - timedelta(days=days_old)
        await session.commit()

    worker = PeriodicWorker("activity-maintenance", activity_maintenance, session_factory, interval=60)
    result = await worker.run_once()
    assert result == {"deleted": 1, "anonymized": 1}

    async with session_factory() as session:
        rows = {a.activity_type: a for a in (await session.execute(select(UserActivity))).scalars().all()}
    assert set(rows) == {"visit-45", "visit-1"}
    assert rows["visit-45"].ip_address is None
    assert rows["visit-1"].ip_address == "198.51.100.0"


def test_build_workers_names():
    workers = build_workers(lambda: None)
    assert [w.name for w in workers] == ["reservation-sweeper", "activity-maintenance"]
    assert all(w._task is None for w in workers)
