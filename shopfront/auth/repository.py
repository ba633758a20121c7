from uuid import UUID
from typing import Dict, List, Optional
from sqlalchemy import func, or_, select
from shopfront.schema.full_schema import Credential, Role, UserRole, Users
from shopfront.auth.utils import hash_password


async def user_id_by_public_id(session, user_pid) -> Optional[int]:
    try:
        pid = UUID(str(user_pid))
    except ValueError:
        # malformed uuid in the token subject
        return None
    stmt = select(Users.id).where(Users.public_id == pid, Users.deleted_at.is_(None))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def user_by_identifier(session, identifier: str) -> Optional[Users]:
    ident = identifier.strip().lower()
    stmt = select(Users).where(
        or_(func.lower(Users.email) == ident, func.lower(Users.username) == ident),
        Users.deleted_at.is_(None),
    )
    res = await session.execute(stmt)
    return res.scalars().first()


async def user_by_id(session, user_id: int) -> Optional[Users]:
    res = await session.execute(select(Users).where(Users.id == user_id, Users.deleted_at.is_(None)))
    return res.scalar_one_or_none()


async def username_taken(session, username: str) -> bool:
    stmt = select(Users.id).where(func.lower(Users.username) == username.strip().lower()).limit(1)
    return (await session.execute(stmt)).first() is not None


async def email_registered(session, email: str) -> bool:
    stmt = select(Users.id).where(func.lower(Users.email) == email.strip().lower()).limit(1)
    return (await session.execute(stmt)).first() is not None


async def password_hash_for(session, user_id: int) -> Optional[str]:
    stmt = select(Credential.password_hash).where(Credential.user_id == user_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def role_names_for(session, user_id: int) -> List[str]:
    stmt = (
        select(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
        .order_by(Role.name)
    )
    return list((await session.execute(stmt)).scalars().all())


async def get_or_create_role(session, name: str) -> Role:
    role = (await session.execute(select(Role).where(Role.name == name))).scalar_one_or_none()
    if not role:
        role = Role(name=name)
        session.add(role)
        await session.flush()
    return role


async def insert_user(session, *, username: str, email: str, password: str,
                      first_name: Optional[str] = None, last_name: Optional[str] = None,
                      role_names: List[str]) -> Users:
    user = Users(username=username, email=email.lower(), first_name=first_name, last_name=last_name)
    session.add(user)
    await session.flush()

    session.add(Credential(user_id=user.id, password_hash=hash_password(password)))
    for name in role_names:
        role = await get_or_create_role(session, name)
        session.add(UserRole(user_id=user.id, role_id=role.id))
    await session.flush()
    return user


async def public_ids_for(session, user_ids) -> Dict[int, UUID]:
    ids = {uid for uid in user_ids if uid is not None}
    if not ids:
        return {}
    res = await session.execute(select(Users.id, Users.public_id).where(Users.id.in_(ids)))
    return {row[0]: row[1] for row in res.all()}
