from typing import Dict, List, Optional, Tuple
from uuid import UUID
from fastapi import HTTPException, status
from sqlalchemy import desc, func, or_, select
from sqlalchemy.orm import selectinload
from shopfront.schema.full_schema import Product, ProductCategory
from shopfront.products.constants import logger


async def get_or_create_category(session, name: str) -> ProductCategory:
    name = name.strip()
    category = (await session.execute(select(ProductCategory).where(ProductCategory.name == name))).scalar_one_or_none()
    if not category:
        category = ProductCategory(name=name)
        session.add(category)
        await session.flush()
    return category


async def category_id_by_name(session, name: str) -> Optional[int]:
    stmt = select(ProductCategory.id).where(ProductCategory.name == name.strip())
    return (await session.execute(stmt)).scalar_one_or_none()


async def product_name_exists(session, name: str) -> bool:
    stmt = select(Product.id).where(func.lower(Product.name) == name.strip().lower()).limit(1)
    return (await session.execute(stmt)).first() is not None


async def find_product_by_pid(session, product_pid: UUID) -> Product:
    stmt = (
        select(Product)
        .options(selectinload(Product.inventory))
        .where(Product.public_id == product_pid, Product.deleted_at.is_(None))
    )
    product = (await session.execute(stmt)).scalar_one_or_none()

    if not product:
        logger.warning("product.not_found", extra={"product_public_id": str(product_pid)})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


async def fetch_products(session, *, page: int, page_size: int, q: Optional[str] = None,
                         category_id: Optional[int] = None) -> Tuple[List[Product], int]:
    conds = [Product.deleted_at.is_(None)]
    if q:
        like = f"%{q.strip()}%"
        conds.append(or_(Product.name.ilike(like), Product.sku.ilike(like)))
    if category_id is not None:
        conds.append(Product.category_id == category_id)

    total = (await session.execute(select(func.count(Product.id)).where(*conds))).scalar_one()
    stmt = (
        select(Product)
        .options(selectinload(Product.inventory))
        .where(*conds)
        .order_by(desc(Product.created_at), desc(Product.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list((await session.execute(stmt)).scalars().all()), total


async def category_names_for(session, category_ids) -> Dict[int, str]:
    ids = {cid for cid in category_ids if cid is not None}
    if not ids:
        return {}
    res = await session.execute(select(ProductCategory.id, ProductCategory.name).where(ProductCategory.id.in_(ids)))
    return {row[0]: row[1] for row in res.all()}
