from typing import Dict, Optional
from sqlalchemy import case, func, select, update
from shopfront.schema.full_schema import Address, CheckoutSession, Guest, GuestStatus, StockReservation


async def guest_by_session_id(session, session_id: str, *, lock: bool = False) -> Optional[Guest]:
    stmt = select(Guest).where(Guest.session_id == session_id)
    if lock:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()


async def migrate_guest_records(session, session_id: str, user_id: int) -> Dict[str, int]:
    """Hand everything a guest session owns over to a registered user."""
    addresses = await session.execute(
        update(Address)
        .where(Address.session_id == session_id, Address.user_id.is_(None))
        .values(user_id=user_id, session_id=None)
        .execution_options(synchronize_session=False)
    )
    reservations = await session.execute(
        update(StockReservation)
        .where(StockReservation.session_id == session_id, StockReservation.customer_id.is_(None))
        .values(customer_id=user_id)
        .execution_options(synchronize_session=False)
    )
    checkouts = await session.execute(
        update(CheckoutSession)
        .where(CheckoutSession.session_id == session_id, CheckoutSession.user_id.is_(None))
        .values(user_id=user_id)
        .execution_options(synchronize_session=False)
    )
    return {
        "addresses": addresses.rowcount or 0,
        "reservations": reservations.rowcount or 0,
        "checkout_sessions": checkouts.rowcount or 0,
    }


async def guest_counts(session) -> Dict[str, int]:
    def _count(state: GuestStatus):
        return func.coalesce(func.sum(case((Guest.status == state.value, 1), else_=0)), 0)

    stmt = select(func.count(Guest.id), _count(GuestStatus.ACTIVE), _count(GuestStatus.CONVERTED), _count(GuestStatus.ABANDONED))
    total, active, converted, abandoned = (await session.execute(stmt)).one()
    return {"total": int(total), "active": int(active), "converted": int(converted), "abandoned": int(abandoned)}
