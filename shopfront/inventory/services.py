from datetime import timedelta
from typing import Any, Dict, List, Optional
from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from shopfront.common.utils import iso, now, percentage, round2, validate_uuid
from shopfront.inventory.alerts import crossed_into_low_stock, emit_low_stock_alert
from shopfront.inventory.constants import (DEFAULT_LOW_STOCK_THRESHOLD, EXPIRED_REASON, INITIAL_SETUP_REASON,
                                           MANUAL_RELEASE_REASON, ORDER_FULFILLED_REASON,
                                           RESERVATION_EXPIRATION_MINUTES, TOP_LOW_STOCK_LIMIT, logger)
from shopfront.inventory.repository import (add_history, inventory_by_product_id, inventory_by_public_id,
                                            inventory_totals, lock_inventory, product_name_for,
                                            top_low_stock, write_stock_levels)
from shopfront.schema.full_schema import (HistoryAction, Inventory, InventoryHistory, InventorySource, Product,
                                          ReservationStatus, StockReservation)
from shopfront.stock_reservations.repository import expired_active_ids, lock_reservation


async def initialize_inventory(session, product_id: int, initial_quantity: int = 0, user_id: Optional[int] = None,
                               low_stock_threshold: Optional[int] = None) -> Inventory:
    if initial_quantity < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Initial quantity cannot be negative")

    if await inventory_by_product_id(session, product_id):
        logger.warning("inventory.initialize.duplicate", extra={"product_id": product_id})
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Inventory record already exists for this product")

    threshold = DEFAULT_LOW_STOCK_THRESHOLD if low_stock_threshold is None else low_stock_threshold
    inventory = Inventory(
        product_id=product_id,
        quantity=initial_quantity,
        reserved=0,
        low_stock_threshold=threshold,
        is_low_stock=initial_quantity <= threshold,
        updated_by=user_id,
    )
    session.add(inventory)
    await session.flush()

    if initial_quantity > 0:
        add_history(session, inventory, action=HistoryAction.INITIALIZE.value, quantity_before=0, reserved_before=0,
                    reason=INITIAL_SETUP_REASON, source=InventorySource.SYSTEM.value, changed_by=user_id)
        await session.flush()

    logger.info("inventory.initialize.success", extra={"inventory_id": str(inventory.public_id), "quantity": initial_quantity})
    return inventory


async def update_inventory(session, inventory_id: int, quantity_change: int, reason: str,
                           source: str = InventorySource.MANUAL.value, order_ref: Optional[str] = None,
                           user_id: Optional[int] = None) -> Inventory:
    if quantity_change == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Quantity change must be non-zero")
    if not reason or not reason.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Reason is required")

    inventory = await lock_inventory(session, inventory_id)
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found")

    new_quantity = inventory.quantity + quantity_change
    if new_quantity < 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insufficient inventory. Cannot reduce below zero.")
    if new_quantity < inventory.reserved:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot reduce inventory below reserved quantity")

    was_low = inventory.is_low_stock
    quantity_before, reserved_before = inventory.quantity, inventory.reserved

    await write_stock_levels(session, inventory, quantity=new_quantity, reserved=inventory.reserved, user_id=user_id)
    add_history(
        session, inventory,
        action=(HistoryAction.INCREASE if quantity_change > 0 else HistoryAction.DECREASE).value,
        quantity_before=quantity_before, reserved_before=reserved_before,
        reason=reason.strip(), source=source, order_ref=order_ref, changed_by=user_id,
    )
    await session.flush()

    if crossed_into_low_stock(was_low, inventory):
        emit_low_stock_alert(inventory, await product_name_for(session, inventory.product_id))

    logger.info("inventory.update.success", extra={"inventory_id": str(inventory.public_id), "change": quantity_change})
    return inventory


async def reserve_stock(session, product_id: int, quantity: int, order_ref: str, customer_id: Optional[int] = None,
                        session_id: Optional[str] = None, expiration_minutes: int = RESERVATION_EXPIRATION_MINUTES,
                        metadata: Optional[Dict[str, Any]] = None, user_id: Optional[int] = None) -> StockReservation:
    """
    Hold ``quantity`` units for an order. The reservation row, the reserved counter and
    the history entry are written in the caller's transaction under the inventory row lock,
    so a failed reservation leaves nothing behind once the caller rolls back.
    """
    if quantity <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Reservation quantity must be positive")

    inventory = await inventory_by_product_id(session, product_id, lock=True)
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found for product")

    if inventory.available < quantity:
        logger.warning("inventory.reserve.insufficient",
                       extra={"inventory_id": str(inventory.public_id), "available": inventory.available, "requested": quantity})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Insufficient available inventory for reservation")

    was_low = inventory.is_low_stock
    quantity_before, reserved_before = inventory.quantity, inventory.reserved

    reservation = StockReservation(
        product_id=product_id,
        inventory_id=inventory.id,
        quantity=quantity,
        order_ref=order_ref,
        customer_id=customer_id,
        session_id=session_id,
        status=ReservationStatus.ACTIVE.value,
        expires_at=now() + timedelta(minutes=expiration_minutes),
        meta=metadata,
    )
    session.add(reservation)
    await session.flush()

    await write_stock_levels(session, inventory, quantity=inventory.quantity, reserved=inventory.reserved + quantity,
                             user_id=user_id, min_available=quantity)
    add_history(
        session, inventory, action=HistoryAction.RESERVE.value,
        quantity_before=quantity_before, reserved_before=reserved_before,
        reason=f"Stock reserved for order {order_ref}", source=InventorySource.ORDER.value,
        order_ref=order_ref, reservation_id=reservation.id, changed_by=user_id,
    )
    await session.flush()

    if crossed_into_low_stock(was_low, inventory):
        emit_low_stock_alert(inventory, await product_name_for(session, product_id))

    logger.info("inventory.reserve.success",
                extra={"reservation_id": str(reservation.public_id), "order_ref": order_ref, "quantity": quantity})
    return reservation


# target status -> history action, history source
_TRANSITIONS = {
    ReservationStatus.COMPLETED: (HistoryAction.DECREASE, InventorySource.ORDER),
    ReservationStatus.CANCELLED: (HistoryAction.RELEASE, InventorySource.ORDER),
    ReservationStatus.EXPIRED: (HistoryAction.RELEASE, InventorySource.SYSTEM),
}


async def transition_reservation(session, reservation_id: int, target: ReservationStatus, reason: str,
                                 user_id: Optional[int] = None) -> StockReservation:
    """Move an active reservation to a terminal status and apply its stock effect."""
    reservation = await lock_reservation(session, reservation_id)
    if not reservation:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    if reservation.status != ReservationStatus.ACTIVE.value:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Reservation is not active")

    inventory = await lock_inventory(session, reservation.inventory_id)
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found for reservation")

    q = reservation.quantity
    was_low = inventory.is_low_stock
    quantity_before, reserved_before = inventory.quantity, inventory.reserved

    new_reserved = max(0, inventory.reserved - q)
    new_quantity = inventory.quantity
    if target == ReservationStatus.COMPLETED:
        new_quantity = inventory.quantity - q
        if new_quantity < new_reserved:
            logger.error("inventory.complete.invariant_violation",
                         extra={"reservation_id": str(reservation.public_id), "quantity": inventory.quantity, "reserved": inventory.reserved})
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Inventory cannot cover this reservation")

    await write_stock_levels(session, inventory, quantity=new_quantity, reserved=new_reserved, user_id=user_id)

    action, source = _TRANSITIONS[target]
    add_history(
        session, inventory, action=action.value,
        quantity_before=quantity_before, reserved_before=reserved_before,
        reason=reason, source=source.value, order_ref=reservation.order_ref,
        reservation_id=reservation.id, changed_by=user_id,
    )

    stamp = now()
    reservation.status = target.value
    reservation.reason = reason
    reservation.updated_at = stamp
    if target == ReservationStatus.COMPLETED:
        reservation.completed_at = stamp
    await session.flush()

    if crossed_into_low_stock(was_low, inventory):
        emit_low_stock_alert(inventory, await product_name_for(session, inventory.product_id))

    logger.info("reservation.transition.success",
                extra={"reservation_id": str(reservation.public_id), "to_status": target.value, "quantity": q})
    return reservation


async def release_reservation(session, reservation_id: int, reason: Optional[str] = None,
                              user_id: Optional[int] = None) -> StockReservation:
    return await transition_reservation(session, reservation_id, ReservationStatus.CANCELLED,
                                        reason or MANUAL_RELEASE_REASON, user_id)


async def complete_reservation(session, reservation_id: int, reason: Optional[str] = None,
                               user_id: Optional[int] = None) -> StockReservation:
    return await transition_reservation(session, reservation_id, ReservationStatus.COMPLETED,
                                        reason or ORDER_FULFILLED_REASON, user_id)


async def expire_reservation(session, reservation_id: int, reason: Optional[str] = None,
                             user_id: Optional[int] = None) -> StockReservation:
    return await transition_reservation(session, reservation_id, ReservationStatus.EXPIRED,
                                        reason or EXPIRED_REASON, user_id)


async def cleanup_expired_reservations(session) -> Dict[str, Any]:
    """Expire every overdue active reservation, one transaction each."""
    expired: List[Dict[str, Any]] = []

    for reservation_id in await expired_active_ids(session, now()):
        try:
            reservation = await expire_reservation(session, reservation_id)
            await session.commit()
        except (HTTPException, SQLAlchemyError) as e:
            await session.rollback()
            logger.warning("reservation.expire.failed",
                           extra={"reservation_row": reservation_id, "error": getattr(e, "detail", str(e))})
            continue

        expired.append({
            "reservation_id": str(reservation.public_id),
            "order_ref": reservation.order_ref,
            "quantity": reservation.quantity,
            "status": reservation.status,
        })

    if expired:
        logger.info("reservation.cleanup.done", extra={"processed_count": len(expired)})
    return {"processed_count": len(expired), "expired_reservations": expired}


async def get_inventory_analytics(session, category: Optional[str] = None) -> Dict[str, Any]:
    totals = await inventory_totals(session, category)
    low_rows = await top_low_stock(session, category, TOP_LOW_STOCK_LIMIT)

    total_products = totals["total_products"]
    return {
        **totals,
        "total_available": totals["total_quantity"] - totals["total_reserved"],
        "average_inventory": round2(totals["total_quantity"] / total_products) if total_products else 0,
        "low_stock_percentage": round2(percentage(totals["low_stock_count"], total_products)),
        "out_of_stock_percentage": round2(percentage(totals["out_of_stock_count"], total_products)),
        "top_low_stock_products": [
            {
                "inventory_id": str(inv.public_id),
                "product_id": str(product.public_id),
                "product_name": product.name,
                "quantity": inv.quantity,
                "available": inv.available,
                "low_stock_threshold": inv.low_stock_threshold,
                "shortfall": max(0, inv.low_stock_threshold - inv.quantity),
            }
            for inv, product in low_rows
        ],
    }


async def bulk_update_thresholds(session, updates, user_id: Optional[int] = None) -> Dict[str, Any]:
    """Each item commits or rolls back on its own."""
    results = []
    for item in updates:
        try:
            inventory = await inventory_by_public_id(session, validate_uuid(item.inventory_id, "Invalid inventory id"), lock=True)
            if not inventory:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found")

            was_low = inventory.is_low_stock
            inventory.low_stock_threshold = item.low_stock_threshold
            inventory.is_low_stock = inventory.quantity <= item.low_stock_threshold
            inventory.updated_by = user_id
            inventory.updated_at = now()
            await session.commit()
        except HTTPException as e:
            await session.rollback()
            results.append({"inventory_id": item.inventory_id, "success": False, "error": e.detail})
            continue

        if crossed_into_low_stock(was_low, inventory):
            emit_low_stock_alert(inventory)
        results.append({"inventory_id": item.inventory_id, "success": True})

    successful = sum(1 for r in results if r["success"])
    logger.info("inventory.thresholds.bulk_update", extra={"total": len(results), "successful": successful})
    return {"results": results, "total": len(results), "successful": successful, "failed": len(results) - successful}


def inventory_to_dict(inventory: Inventory, product: Optional[Product] = None) -> Dict[str, Any]:
    out = {
        "id": str(inventory.public_id),
        "quantity": inventory.quantity,
        "reserved": inventory.reserved,
        "available": inventory.available,
        "low_stock_threshold": inventory.low_stock_threshold,
        "is_low_stock": inventory.is_low_stock,
        "last_updated": iso(inventory.last_updated),
        "created_at": iso(inventory.created_at),
    }
    if product is not None:
        out["product"] = {"id": str(product.public_id), "name": product.name, "sku": product.sku, "price": product.price}
    return out


def history_to_dict(entry: InventoryHistory) -> Dict[str, Any]:
    return {
        "id": str(entry.public_id),
        "action": entry.action,
        "quantity_before": entry.quantity_before,
        "quantity_after": entry.quantity_after,
        "quantity_changed": entry.quantity_changed,
        "reserved_before": entry.reserved_before,
        "reserved_after": entry.reserved_after,
        "reason": entry.reason,
        "source": entry.source,
        "order_ref": entry.order_ref,
        "timestamp": iso(entry.timestamp),
        "metadata": entry.meta,
    }


def reservation_to_dict(reservation: StockReservation, product_pid=None, customer_pid=None) -> Dict[str, Any]:
    return {
        "id": str(reservation.public_id),
        "product_id": str(product_pid) if product_pid else None,
        "quantity": reservation.quantity,
        "order_ref": reservation.order_ref,
        "customer_id": str(customer_pid) if customer_pid else None,
        "session_id": reservation.session_id,
        "status": reservation.status,
        "expires_at": iso(reservation.expires_at),
        "completed_at": iso(reservation.completed_at),
        "reason": reservation.reason,
        "metadata": reservation.meta,
        "created_at": iso(reservation.created_at),
    }
