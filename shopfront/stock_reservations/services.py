from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from fastapi import HTTPException, status
from shopfront.common.utils import as_utc, now, round2, validate_uuid
from shopfront.inventory.constants import CANCELLED_REASON, EXPIRED_REASON, ORDER_FULFILLED_REASON
from shopfront.inventory.repository import inventory_by_product_id
from shopfront.inventory.services import initialize_inventory, reserve_stock, transition_reservation
from shopfront.schema.full_schema import ReservationStatus, StockReservation
from shopfront.stock_reservations.constants import logger
from shopfront.stock_reservations.repository import (active_expiring_between, detach_reservation_history,
                                                     reservation_by_public_id, reservation_counts)


async def create_reservation(session, product_id: int, quantity: int, order_ref: str, *,
                             customer_id: Optional[int] = None, session_id: Optional[str] = None,
                             expiration_minutes: int, metadata: Optional[Dict[str, Any]] = None,
                             user_id: Optional[int] = None) -> StockReservation:
    """Like ``reserve_stock``, but creates an empty inventory row for products that have none."""
    inventory = await inventory_by_product_id(session, product_id, lock=True)
    if not inventory:
        logger.info("reservation.create.auto_initialize", extra={"product_row": product_id})
        await initialize_inventory(session, product_id, 0, user_id)
        inventory = await inventory_by_product_id(session, product_id, lock=True)

    if inventory.available < quantity:
        logger.warning("reservation.create.insufficient", extra={"available": inventory.available, "requested": quantity})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Insufficient stock. Available: {inventory.available}, Requested: {quantity}")

    return await reserve_stock(session, product_id, quantity, order_ref, customer_id=customer_id,
                               session_id=session_id, expiration_minutes=expiration_minutes,
                               metadata=metadata, user_id=user_id)


async def bulk_transition(session, reservation_ids: List[str], target: ReservationStatus,
                          reason: Optional[str] = None, user_id: Optional[int] = None) -> Dict[str, Any]:
    """Apply one transition to many reservations; each id commits or rolls back on its own."""
    results = []
    for raw_id in reservation_ids:
        try:
            reservation = await reservation_by_public_id(session, validate_uuid(raw_id, "Invalid reservation id"))
            if not reservation:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
            reservation = await transition_reservation(session, reservation.id, target,
                                                       reason or _default_reason(target), user_id)
            await session.commit()
        except HTTPException as e:
            await session.rollback()
            results.append({"reservation_id": raw_id, "success": False, "error": e.detail})
            continue

        results.append({"reservation_id": raw_id, "success": True, "status": reservation.status})

    count = sum(1 for r in results if r["success"])
    logger.info("reservation.bulk.done", extra={"to_status": target.value, "requested": len(reservation_ids), "count": count})
    return {"results": results, "count": count}


def _default_reason(target: ReservationStatus) -> str:
    return {
        ReservationStatus.COMPLETED: ORDER_FULFILLED_REASON,
        ReservationStatus.CANCELLED: CANCELLED_REASON,
        ReservationStatus.EXPIRED: EXPIRED_REASON,
    }[target]


async def reservation_analytics(session, start: Optional[datetime] = None, end: Optional[datetime] = None) -> Dict[str, Any]:
    counts = await reservation_counts(session, start, end)
    total = counts["total"]
    return {
        **counts,
        "average_quantity": round2(counts["total_quantity"] / total) if total else 0,
        "period": {"start": start.isoformat() if start else None, "end": end.isoformat() if end else None},
    }


async def expired_reservations(session) -> List[StockReservation]:
    return await active_expiring_between(session, None, now())


async def expiring_soon(session, hours: int) -> List[StockReservation]:
    current = now()
    return await active_expiring_between(session, current, current + timedelta(hours=hours))


async def update_reservation(session, reservation: StockReservation, updates: Dict[str, Any]) -> StockReservation:
    expires_at = updates.get("expires_at")
    if expires_at is not None:
        if reservation.status != ReservationStatus.ACTIVE.value:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Reservation is not active")
        expires_at = as_utc(expires_at)
        if expires_at <= now():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="expires_at must be in the future")
        reservation.expires_at = expires_at

    if updates.get("reason") is not None:
        reservation.reason = updates["reason"]
    if "metadata" in updates:
        reservation.meta = {**(reservation.meta or {}), **(updates["metadata"] or {})}

    reservation.updated_at = now()
    await session.flush()

    logger.info("reservation.update.success", extra={"reservation_id": str(reservation.public_id), "fields": sorted(updates)})
    return reservation


async def delete_reservation(session, reservation: StockReservation) -> None:
    # an active hold still counts in inventory.reserved
    if reservation.status == ReservationStatus.ACTIVE.value:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT,
                            detail="Cannot delete an active reservation, cancel it first")

    await detach_reservation_history(session, reservation.id)
    await session.delete(reservation)
    await session.flush()

    logger.info("reservation.delete.success", extra={"reservation_id": str(reservation.public_id), "status": reservation.status})
