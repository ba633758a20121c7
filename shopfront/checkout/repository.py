from typing import Optional
from uuid import UUID
from sqlalchemy import select
from shopfront.schema.full_schema import CheckoutSession


async def checkout_by_public_id(session, checkout_pid: UUID, *, lock: bool = False) -> Optional[CheckoutSession]:
    stmt = select(CheckoutSession).where(CheckoutSession.public_id == checkout_pid)
    if lock:
        stmt = stmt.with_for_update()
    return (await session.execute(stmt)).scalar_one_or_none()
