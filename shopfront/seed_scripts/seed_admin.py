import asyncio
from dotenv import load_dotenv
from shopfront.auth.constants import ADMIN_ROLE, SERVICE_ROLE
from shopfront.auth.repository import get_or_create_role, insert_user, role_names_for, user_by_identifier
from shopfront.config.settings import config_settings
from shopfront.db.connection import async_engine, async_session
from shopfront.schema.full_schema import UserRole

load_dotenv()

DEFAULT_ROLES = (config_settings.DEFAULT_ROLE, ADMIN_ROLE, SERVICE_ROLE)


async def seed_roles(session):
    for name in DEFAULT_ROLES:
        await get_or_create_role(session, name)
    await session.commit()


async def create_admin(session, email: str, password: str):
    user = await user_by_identifier(session, email)
    if not user:
        user = await insert_user(
            session,
            username=email.split("@")[0],
            email=email,
            password=password,
            first_name="Admin",
            role_names=[config_settings.DEFAULT_ROLE, ADMIN_ROLE],
        )
        await session.commit()
        print(f"Created admin user public_id={user.public_id}")
        return user

    if ADMIN_ROLE not in await role_names_for(session, user.id):
        role = await get_or_create_role(session, ADMIN_ROLE)
        session.add(UserRole(user_id=user.id, role_id=role.id))
        await session.commit()
        print("Assigned admin role to existing user")
    else:
        print("User already has admin role")
    return user


async def main():
    email = config_settings.SEED_ADMIN_EMAIL
    password = config_settings.SEED_ADMIN_PASSWORD
    if not email or not password:
        raise SystemExit("Set SEED_ADMIN_EMAIL and SEED_ADMIN_PASSWORD before running")

    try:
        async with async_session() as session:
            await seed_roles(session)
            await create_admin(session, email, password)
    finally:
        await async_engine.dispose()
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
