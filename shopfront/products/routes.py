from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.dependencies import Requester, require_admin
from shopfront.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from shopfront.common.utils import page_meta, success_response, validate_uuid
from shopfront.db.dependencies import get_session
from shopfront.products.constants import logger
from shopfront.products.models import ProductCreateIn
from shopfront.products.repository import category_id_by_name, category_names_for, fetch_products, find_product_by_pid
from shopfront.products.services import create_product, product_to_dict

prods_public_router = APIRouter()
prods_admin_router = APIRouter()


@prods_admin_router.post("", status_code=status.HTTP_201_CREATED)
async def create_product_route(payload: ProductCreateIn,
                               requester: Requester = Depends(require_admin),
                               session: AsyncSession = Depends(get_session)):

    logger.info("product.create.attempt", extra={"user": requester.user_public_id})

    product = await create_product(session, payload, requester.user_public_id)
    await session.commit()

    logger.info("product.create.success", extra={"product_id": str(product.public_id), "user": requester.user_public_id})
    return success_response({"message": "product created", "product": product_to_dict(product, None, payload.category)},
                            status_code=status.HTTP_201_CREATED)


@prods_public_router.get("")
async def get_products(q: Optional[str] = Query(None),
                       category: Optional[str] = Query(None),
                       page: int = Query(1, ge=1),
                       page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                       session: AsyncSession = Depends(get_session)):

    category_id = None
    if category:
        category_id = await category_id_by_name(session, category)
        if category_id is None:
            return success_response({"items": [], "pagination": page_meta(page, page_size, 0)})

    rows, total = await fetch_products(session, page=page, page_size=page_size, q=q, category_id=category_id)
    categories = await category_names_for(session, [p.category_id for p in rows])

    return success_response({
        "items": [product_to_dict(p, p.inventory, categories.get(p.category_id)) for p in rows],
        "pagination": page_meta(page, page_size, total),
    })


@prods_public_router.get("/{product_public_id}")
async def get_product_details(product_public_id: str, session: AsyncSession = Depends(get_session)):

    product = await find_product_by_pid(session, validate_uuid(product_public_id, "Invalid product id"))
    categories = await category_names_for(session, [product.category_id])

    return success_response({"product": product_to_dict(product, product.inventory, categories.get(product.category_id))})
