import asyncio
from sqlmodel import SQLModel
from shopfront import logger
from shopfront.db.connection import async_engine
import shopfront.schema.full_schema  # noqa: F401  registers the tables on SQLModel.metadata


async def init_db(engine=async_engine):
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("db.init.done", extra={"tables": len(SQLModel.metadata.tables)})


async def main():
    try:
        await init_db()
    finally:
        await async_engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
