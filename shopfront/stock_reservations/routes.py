from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.dependencies import Requester, require_authenticated
from shopfront.auth.repository import public_ids_for, user_id_by_public_id
from shopfront.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from shopfront.common.utils import page_meta, success_response, validate_uuid
from shopfront.db.dependencies import get_session
from shopfront.inventory.models import ReasonIn, ReserveIn
from shopfront.inventory.repository import product_id_by_public_id, product_public_ids_for
from shopfront.inventory.services import (cleanup_expired_reservations, complete_reservation, expire_reservation,
                                          release_reservation, reservation_to_dict)
from shopfront.schema.full_schema import ReservationStatus, StockReservation
from shopfront.stock_reservations.constants import DEFAULT_EXPIRING_SOON_HOURS, logger
from shopfront.stock_reservations.models import BulkReservationIn, ReservationUpdateIn
from shopfront.stock_reservations.repository import list_reservations, reservation_by_public_id
from shopfront.stock_reservations.services import (bulk_transition, create_reservation, delete_reservation,
                                                   expired_reservations, expiring_soon, reservation_analytics,
                                                   update_reservation)

reservations_router = APIRouter()


async def _serialize(session, reservations: List[StockReservation]):
    products = await product_public_ids_for(session, [r.product_id for r in reservations])
    customers = await public_ids_for(session, [r.customer_id for r in reservations])
    return [reservation_to_dict(r, products.get(r.product_id), customers.get(r.customer_id)) for r in reservations]


async def _reservation_or_404(session, reservation_id: str, lock: bool = False) -> StockReservation:
    reservation = await reservation_by_public_id(session, validate_uuid(reservation_id, "Invalid reservation id"), lock=lock)
    if not reservation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    return reservation


@reservations_router.post("", status_code=status.HTTP_201_CREATED)
async def create(payload: ReserveIn,
                 requester: Requester = Depends(require_authenticated),
                 session: AsyncSession = Depends(get_session)):

    product_id = await product_id_by_public_id(session, validate_uuid(payload.product_id, "Invalid product id"))

    customer_id = requester.user_id
    if payload.customer_id:
        customer_id = await user_id_by_public_id(session, payload.customer_id)
        if customer_id is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")

    logger.info("reservation.create.attempt", extra={"order_ref": payload.order_ref, "quantity": payload.quantity})

    reservation = await create_reservation(session, product_id, payload.quantity, payload.order_ref,
                                           customer_id=customer_id, session_id=payload.session_id,
                                           expiration_minutes=payload.expiration_minutes,
                                           metadata=payload.metadata, user_id=requester.user_id)
    await session.commit()

    [out] = await _serialize(session, [reservation])
    return success_response({"reservation": out}, status_code=status.HTTP_201_CREATED)


@reservations_router.get("")
async def get_reservations(status_filter: Optional[ReservationStatus] = Query(None, alias="status"),
                           product_id: Optional[str] = Query(None),
                           order_ref: Optional[str] = Query(None),
                           page: int = Query(1, ge=1),
                           page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                           requester: Requester = Depends(require_authenticated),
                           session: AsyncSession = Depends(get_session)):

    product_row = None
    if product_id:
        product_row = await product_id_by_public_id(session, validate_uuid(product_id, "Invalid product id"))

    rows, total = await list_reservations(session, page=page, page_size=page_size,
                                          status=status_filter.value if status_filter else None,
                                          product_id=product_row, order_ref=order_ref)
    return success_response({"items": await _serialize(session, rows), "pagination": page_meta(page, page_size, total)})


@reservations_router.get("/analytics")
async def analytics(start_date: Optional[datetime] = Query(None),
                    end_date: Optional[datetime] = Query(None),
                    requester: Requester = Depends(require_authenticated),
                    session: AsyncSession = Depends(get_session)):
    return success_response({"analytics": await reservation_analytics(session, start_date, end_date)})


@reservations_router.get("/expired")
async def get_expired(requester: Requester = Depends(require_authenticated),
                      session: AsyncSession = Depends(get_session)):
    rows = await expired_reservations(session)
    return success_response({"items": await _serialize(session, rows), "count": len(rows)})


@reservations_router.get("/expiring-soon")
async def get_expiring_soon(hours: int = Query(DEFAULT_EXPIRING_SOON_HOURS, ge=1),
                            requester: Requester = Depends(require_authenticated),
                            session: AsyncSession = Depends(get_session)):
    rows = await expiring_soon(session, hours)
    return success_response({"items": await _serialize(session, rows), "count": len(rows), "hours": hours})


@reservations_router.delete("/cleanup/expired")
async def cleanup_expired(requester: Requester = Depends(require_authenticated),
                          session: AsyncSession = Depends(get_session)):
    result = await cleanup_expired_reservations(session)
    count = result["processed_count"]
    return success_response({"message": f"Expired {count} reservations", "count": count,
                             "results": result["expired_reservations"]})


@reservations_router.post("/bulk-complete")
async def bulk_complete(payload: BulkReservationIn,
                        requester: Requester = Depends(require_authenticated),
                        session: AsyncSession = Depends(get_session)):
    return success_response(await bulk_transition(session, payload.reservation_ids, ReservationStatus.COMPLETED,
                                                  payload.reason, requester.user_id))


@reservations_router.post("/bulk-cancel")
async def bulk_cancel(payload: BulkReservationIn,
                      requester: Requester = Depends(require_authenticated),
                      session: AsyncSession = Depends(get_session)):
    return success_response(await bulk_transition(session, payload.reservation_ids, ReservationStatus.CANCELLED,
                                                  payload.reason, requester.user_id))


@reservations_router.get("/{reservation_id}")
async def get_reservation(reservation_id: str,
                          requester: Requester = Depends(require_authenticated),
                          session: AsyncSession = Depends(get_session)):
    reservation = await _reservation_or_404(session, reservation_id)
    [out] = await _serialize(session, [reservation])
    return success_response({"reservation": out})


@reservations_router.put("/{reservation_id}")
async def update(reservation_id: str, payload: ReservationUpdateIn,
                 requester: Requester = Depends(require_authenticated),
                 session: AsyncSession = Depends(get_session)):
    reservation = await _reservation_or_404(session, reservation_id, lock=True)
    reservation = await update_reservation(session, reservation, payload.model_dump(exclude_unset=True))
    await session.commit()

    [out] = await _serialize(session, [reservation])
    return success_response({"reservation": out})


@reservations_router.delete("/{reservation_id}")
async def delete(reservation_id: str,
                 requester: Requester = Depends(require_authenticated),
                 session: AsyncSession = Depends(get_session)):
    reservation = await _reservation_or_404(session, reservation_id, lock=True)
    await delete_reservation(session, reservation)
    await session.commit()
    return success_response({"message": "Reservation deleted", "reservation_id": reservation_id})


_ACTIONS = {
    "complete": complete_reservation,
    "cancel": release_reservation,
    "expire": expire_reservation,
}


async def _apply(action: str, reservation_id: str, payload: Optional[ReasonIn], requester: Requester, session):
    reservation = await _reservation_or_404(session, reservation_id)
    reservation = await _ACTIONS[action](session, reservation.id, payload.reason if payload else None, requester.user_id)
    await session.commit()

    [out] = await _serialize(session, [reservation])
    return success_response({"message": f"Reservation {reservation.status}", "reservation": out})


@reservations_router.post("/{reservation_id}/complete")
async def complete(reservation_id: str, payload: Optional[ReasonIn] = None,
                   requester: Requester = Depends(require_authenticated),
                   session: AsyncSession = Depends(get_session)):
    return await _apply("complete", reservation_id, payload, requester, session)


@reservations_router.post("/{reservation_id}/cancel")
async def cancel(reservation_id: str, payload: Optional[ReasonIn] = None,
                 requester: Requester = Depends(require_authenticated),
                 session: AsyncSession = Depends(get_session)):
    return await _apply("cancel", reservation_id, payload, requester, session)


@reservations_router.post("/{reservation_id}/expire")
async def expire(reservation_id: str, payload: Optional[ReasonIn] = None,
                 requester: Requester = Depends(require_authenticated),
                 session: AsyncSession = Depends(get_session)):
    return await _apply("expire", reservation_id, payload, requester, session)
