from typing import Any, Dict, Optional
from fastapi import HTTPException, status
from shopfront.common.utils import iso
from shopfront.products.constants import logger
from shopfront.products.models import ProductCreateIn
from shopfront.products.repository import get_or_create_category, product_name_exists
from shopfront.schema.full_schema import Inventory, Product


async def create_product(session, payload: ProductCreateIn, user_pid: Optional[str] = None) -> Product:
    if await product_name_exists(session, payload.name):
        logger.warning("product.duplicate_name", extra={"product_name": payload.name, "user": user_pid})
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Product with same name already exists")

    category_id = None
    if payload.category:
        category_id = (await get_or_create_category(session, payload.category)).id

    product = Product(
        name=payload.name.strip(),
        sku=payload.sku,
        description=payload.description,
        price=payload.price,
        category_id=category_id,
        specs=payload.specs,
    )
    session.add(product)
    await session.flush()
    return product


def product_to_dict(product: Product, inventory: Optional[Inventory] = None,
                    category_name: Optional[str] = None) -> Dict[str, Any]:
    # inventory is passed in explicitly; lazy loads are not allowed on the async session
    out = {
        "id": str(product.public_id),
        "name": product.name,
        "sku": product.sku,
        "description": product.description,
        "price": product.price,
        "category": category_name,
        "specs": product.specs,
        "created_at": iso(product.created_at),
        "inventory": None,
    }
    if inventory is not None:
        out["inventory"] = {
            "id": str(inventory.public_id),
            "quantity": inventory.quantity,
            "reserved": inventory.reserved,
            "available": inventory.available,
            "low_stock_threshold": inventory.low_stock_threshold,
            "is_low_stock": inventory.is_low_stock,
        }
    return out
