from typing import Dict, List, Optional, Tuple
from uuid import UUID
from sqlalchemy import desc, func, or_, select, update
from shopfront.schema.full_schema import Address


def owner_filter(user_id: Optional[int], session_id: Optional[str]):
    # signed-in users own by user id, guests by their session id
    if user_id is not None:
        return Address.user_id == user_id
    return Address.session_id == session_id


async def address_by_public_id(session, address_pid: UUID) -> Optional[Address]:
    return (await session.execute(select(Address).where(Address.public_id == address_pid))).scalar_one_or_none()


async def list_owned(session, owner, *, page: Optional[int] = None, page_size: Optional[int] = None,
                     address_type: Optional[str] = None) -> Tuple[List[Address], int]:
    conds = [owner]
    if address_type and address_type != "both":
        conds.append(Address.type == address_type)

    total = (await session.execute(select(func.count(Address.id)).where(*conds))).scalar_one()
    stmt = select(Address).where(*conds).order_by(desc(Address.is_default), desc(Address.created_at), desc(Address.id))
    if page and page_size:
        stmt = stmt.offset((page - 1) * page_size).limit(page_size)
    return list((await session.execute(stmt)).scalars().all()), total


async def default_for_type(session, owner, address_type: str) -> Optional[Address]:
    stmt = (
        select(Address)
        .where(owner, Address.type == address_type, Address.is_default.is_(True))
        .order_by(desc(Address.updated_at))
        .limit(1)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def count_of_type(session, owner, address_type: str) -> int:
    stmt = select(func.count(Address.id)).where(owner, Address.type == address_type)
    return (await session.execute(stmt)).scalar_one()


async def unset_defaults(session, owner, address_type: str, keep_id: Optional[int] = None) -> None:
    conds = [owner, Address.type == address_type, Address.is_default.is_(True)]
    if keep_id is not None:
        conds.append(Address.id != keep_id)
    stmt = update(Address).where(*conds).values(is_default=False).execution_options(synchronize_session="fetch")
    await session.execute(stmt)


async def most_recent_of_type(session, owner, address_type: str, exclude_id: Optional[int] = None) -> Optional[Address]:
    conds = [owner, Address.type == address_type]
    if exclude_id is not None:
        conds.append(Address.id != exclude_id)
    stmt = select(Address).where(*conds).order_by(desc(Address.created_at), desc(Address.id)).limit(1)
    return (await session.execute(stmt)).scalar_one_or_none()


async def search_owned(session, owner, q: str) -> List[Address]:
    like = f"%{q.strip()}%"
    stmt = (
        select(Address)
        .where(owner, or_(
            Address.first_name.ilike(like),
            Address.last_name.ilike(like),
            Address.city.ilike(like),
            Address.address1.ilike(like),
            Address.postal_code.ilike(like),
        ))
        .order_by(desc(Address.is_default), desc(Address.created_at))
    )
    return list((await session.execute(stmt)).scalars().all())


async def _grouped(session, column) -> Dict[str, int]:
    stmt = select(column, func.count(Address.id)).group_by(column).order_by(desc(func.count(Address.id)))
    return {row[0]: row[1] for row in (await session.execute(stmt)).all()}


async def address_analytics(session, recent_limit: int) -> Dict:
    total = (await session.execute(select(func.count(Address.id)))).scalar_one()
    defaults = (await session.execute(select(func.count(Address.id)).where(Address.is_default.is_(True)))).scalar_one()
    recent = (await session.execute(
        select(Address).order_by(desc(Address.created_at), desc(Address.id)).limit(recent_limit)
    )).scalars().all()

    return {
        "total": total,
        "by_type": await _grouped(session, Address.type),
        "by_country": await _grouped(session, Address.country),
        "by_state": await _grouped(session, Address.state),
        "by_city": await _grouped(session, Address.city),
        "defaults": defaults,
        "recently_added": list(recent),
    }
