from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.dependencies import Requester, require_admin, require_authenticated
from shopfront.auth.repository import public_ids_for, user_id_by_public_id
from shopfront.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from shopfront.common.utils import page_meta, success_response, validate_uuid
from shopfront.db.dependencies import get_session
from shopfront.inventory.constants import logger
from shopfront.inventory.models import BulkThresholdIn, InitializeInventoryIn, ReasonIn, ReserveIn, UpdateQuantityIn
from shopfront.inventory.repository import (count_active_reservations, detach_history, inventory_by_product_id,
                                            inventory_by_public_id, list_history, list_inventories, list_low_stock,
                                            product_id_by_public_id, product_public_ids_for)
from shopfront.inventory.services import (bulk_update_thresholds, get_inventory_analytics, history_to_dict,
                                          initialize_inventory, inventory_to_dict, release_reservation,
                                          reservation_to_dict, reserve_stock, update_inventory)
from shopfront.schema.full_schema import HistoryAction, InventorySource, Product
from shopfront.stock_reservations.repository import reservation_by_public_id

inventory_router = APIRouter()


async def _inventory_or_404(session, inventory_id: str, *, lock: bool = False):
    inventory = await inventory_by_public_id(session, validate_uuid(inventory_id, "Invalid inventory id"), lock=lock)
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found")
    return inventory


@inventory_router.post("/initialize", status_code=status.HTTP_201_CREATED)
async def initialize(payload: InitializeInventoryIn,
                     requester: Requester = Depends(require_authenticated),
                     session: AsyncSession = Depends(get_session)):

    product_id = await product_id_by_public_id(session, validate_uuid(payload.product_id, "Invalid product id"))
    inventory = await initialize_inventory(session, product_id, payload.initial_quantity, requester.user_id,
                                           payload.low_stock_threshold)
    await session.commit()

    return success_response({"message": "Inventory initialized", "inventory": inventory_to_dict(inventory)},
                            status_code=status.HTTP_201_CREATED)


@inventory_router.post("/reserve", status_code=status.HTTP_201_CREATED)
async def reserve(payload: ReserveIn,
                  requester: Requester = Depends(require_authenticated),
                  session: AsyncSession = Depends(get_session)):

    product_pid = validate_uuid(payload.product_id, "Invalid product id")
    product_id = await product_id_by_public_id(session, product_pid)

    customer_id = requester.user_id
    if payload.customer_id:
        customer_id = await user_id_by_public_id(session, payload.customer_id)
        if customer_id is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")

    logger.info("inventory.reserve.attempt", extra={"order_ref": payload.order_ref, "quantity": payload.quantity})

    reservation = await reserve_stock(session, product_id, payload.quantity, payload.order_ref,
                                      customer_id=customer_id, session_id=payload.session_id,
                                      expiration_minutes=payload.expiration_minutes,
                                      metadata=payload.metadata, user_id=requester.user_id)
    await session.commit()

    customers = await public_ids_for(session, [customer_id])
    return success_response({"reservation": reservation_to_dict(reservation, product_pid, customers.get(customer_id))},
                            status_code=status.HTTP_201_CREATED)


@inventory_router.put("/reservations/{reservation_id}/release")
async def release(reservation_id: str, payload: Optional[ReasonIn] = None,
                  requester: Requester = Depends(require_authenticated),
                  session: AsyncSession = Depends(get_session)):

    reservation = await reservation_by_public_id(session, validate_uuid(reservation_id, "Invalid reservation id"))
    if not reservation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")

    reservation = await release_reservation(session, reservation.id, payload.reason if payload else None, requester.user_id)
    await session.commit()

    products = await product_public_ids_for(session, [reservation.product_id])
    return success_response({"message": "Reservation released",
                             "reservation": reservation_to_dict(reservation, products.get(reservation.product_id))})


@inventory_router.get("")
async def get_inventories(page: int = Query(1, ge=1),
                          page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                          requester: Requester = Depends(require_authenticated),
                          session: AsyncSession = Depends(get_session)):

    rows, total = await list_inventories(session, page=page, page_size=page_size)
    return success_response({
        "items": [inventory_to_dict(inv, product) for inv, product in rows],
        "pagination": page_meta(page, page_size, total),
    })


@inventory_router.get("/low-stock")
async def get_low_stock(page: int = Query(1, ge=1),
                        page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                        requester: Requester = Depends(require_authenticated),
                        session: AsyncSession = Depends(get_session)):

    rows, total = await list_low_stock(session, page=page, page_size=page_size)
    return success_response({
        "items": [inventory_to_dict(inv, product) for inv, product in rows],
        "pagination": page_meta(page, page_size, total),
    })


@inventory_router.get("/analytics")
async def analytics(category: Optional[str] = Query(None),
                    requester: Requester = Depends(require_authenticated),
                    session: AsyncSession = Depends(get_session)):
    return success_response({"analytics": await get_inventory_analytics(session, category)})


@inventory_router.put("/thresholds/bulk-update")
async def bulk_thresholds(payload: BulkThresholdIn,
                          requester: Requester = Depends(require_authenticated),
                          session: AsyncSession = Depends(get_session)):
    return success_response(await bulk_update_thresholds(session, payload.updates, requester.user_id))


@inventory_router.get("/product/{product_id}")
async def get_by_product(product_id: str,
                         requester: Requester = Depends(require_authenticated),
                         session: AsyncSession = Depends(get_session)):

    pid = await product_id_by_public_id(session, validate_uuid(product_id, "Invalid product id"))
    inventory = await inventory_by_product_id(session, pid)
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found for product")

    product = await session.get(Product, pid)
    return success_response({"inventory": inventory_to_dict(inventory, product)})


@inventory_router.get("/product/{product_id}/history")
async def get_history(product_id: str,
                      action: Optional[HistoryAction] = Query(None),
                      source: Optional[InventorySource] = Query(None),
                      start_date: Optional[datetime] = Query(None),
                      end_date: Optional[datetime] = Query(None),
                      page: int = Query(1, ge=1),
                      page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                      requester: Requester = Depends(require_authenticated),
                      session: AsyncSession = Depends(get_session)):

    pid = await product_id_by_public_id(session, validate_uuid(product_id, "Invalid product id"))
    rows, total = await list_history(session, pid, page=page, page_size=page_size,
                                     action=action.value if action else None,
                                     source=source.value if source else None,
                                     start=start_date, end=end_date)
    return success_response({
        "items": [history_to_dict(h) for h in rows],
        "pagination": page_meta(page, page_size, total),
    })


@inventory_router.post("/{inventory_id}/update-quantity")
async def update_quantity(inventory_id: str, payload: UpdateQuantityIn,
                          requester: Requester = Depends(require_authenticated),
                          session: AsyncSession = Depends(get_session)):

    inventory = await _inventory_or_404(session, inventory_id)

    logger.info("inventory.update.attempt", extra={"inventory_id": inventory_id, "change": payload.quantity_change})

    inventory = await update_inventory(session, inventory.id, payload.quantity_change, payload.reason,
                                       payload.source.value, payload.order_ref, requester.user_id)
    await session.commit()

    return success_response({"message": "Inventory updated", "inventory": inventory_to_dict(inventory)})


@inventory_router.get("/{inventory_id}")
async def get_inventory(inventory_id: str,
                        requester: Requester = Depends(require_authenticated),
                        session: AsyncSession = Depends(get_session)):

    inventory = await _inventory_or_404(session, inventory_id)
    product = await session.get(Product, inventory.product_id)
    return success_response({"inventory": inventory_to_dict(inventory, product)})


@inventory_router.delete("/{inventory_id}")
async def delete_inventory(inventory_id: str,
                           requester: Requester = Depends(require_admin),
                           session: AsyncSession = Depends(get_session)):

    inventory = await _inventory_or_404(session, inventory_id, lock=True)
    if await count_active_reservations(session, inventory.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Cannot delete inventory with active reservations")

    kept = await detach_history(session, inventory.id)
    await session.delete(inventory)
    await session.commit()

    logger.info("inventory.delete.success", extra={"inventory_id": inventory_id, "history_kept": kept, "user_public_id": requester.user_public_id})
    return success_response({"message": "Inventory deleted successfully"})
