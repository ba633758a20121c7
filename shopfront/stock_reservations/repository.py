from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
from sqlalchemy import case, desc, func, select, update
from shopfront.schema.full_schema import InventoryHistory, ReservationStatus, StockReservation


async def reservation_by_public_id(session, reservation_pid: UUID, *, lock: bool = False) -> Optional[StockReservation]:
    stmt = select(StockReservation).where(StockReservation.public_id == reservation_pid)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


async def lock_reservation(session, reservation_id: int) -> Optional[StockReservation]:
    stmt = (
        select(StockReservation)
        .where(StockReservation.id == reservation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def list_reservations(session, *, page: int, page_size: int, status: Optional[str] = None,
                            product_id: Optional[int] = None, order_ref: Optional[str] = None,
                            customer_id: Optional[int] = None) -> Tuple[List[StockReservation], int]:
    conds = []
    if status:
        conds.append(StockReservation.status == status)
    if product_id is not None:
        conds.append(StockReservation.product_id == product_id)
    if order_ref:
        conds.append(StockReservation.order_ref == order_ref)
    if customer_id is not None:
        conds.append(StockReservation.customer_id == customer_id)

    total = (await session.execute(select(func.count(StockReservation.id)).where(*conds))).scalar_one()
    stmt = (
        select(StockReservation)
        .where(*conds)
        .order_by(desc(StockReservation.created_at), desc(StockReservation.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list((await session.execute(stmt)).scalars().all()), total


async def expired_active_ids(session, as_of: datetime) -> List[int]:
    stmt = (
        select(StockReservation.id)
        .where(StockReservation.status == ReservationStatus.ACTIVE.value, StockReservation.expires_at < as_of)
        .order_by(StockReservation.expires_at)
    )
    return list((await session.execute(stmt)).scalars().all())


async def active_expiring_between(session, start: Optional[datetime], end: datetime) -> List[StockReservation]:
    conds = [StockReservation.status == ReservationStatus.ACTIVE.value, StockReservation.expires_at < end]
    if start is not None:
        conds.append(StockReservation.expires_at >= start)
    stmt = select(StockReservation).where(*conds).order_by(StockReservation.expires_at)
    return list((await session.execute(stmt)).scalars().all())


async def reservation_counts(session, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
    conds = []
    if start:
        conds.append(StockReservation.created_at >= start)
    if end:
        conds.append(StockReservation.created_at <= end)

    def _count(state: ReservationStatus):
        return func.coalesce(func.sum(case((StockReservation.status == state.value, 1), else_=0)), 0)

    stmt = select(
        func.count(StockReservation.id),
        _count(ReservationStatus.ACTIVE),
        _count(ReservationStatus.COMPLETED),
        _count(ReservationStatus.CANCELLED),
        _count(ReservationStatus.EXPIRED),
        func.coalesce(func.sum(StockReservation.quantity), 0),
    ).where(*conds)

    total, active, completed, cancelled, expired, qty = (await session.execute(stmt)).one()
    return {
        "total": int(total),
        "active": int(active),
        "completed": int(completed),
        "cancelled": int(cancelled),
        "expired": int(expired),
        "total_quantity": int(qty),
    }


async def detach_reservation_history(session, reservation_id: int) -> int:
    stmt = (
        update(InventoryHistory)
        .where(InventoryHistory.reservation_id == reservation_id)
        .values(reservation_id=None)
        .execution_options(synchronize_session=False)
    )
    return (await session.execute(stmt)).rowcount
