from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID
from fastapi import HTTPException, status
from sqlalchemy import and_, case, desc, func, select, update
from shopfront.common.utils import now
from shopfront.inventory.constants import logger
from shopfront.schema.full_schema import (Inventory, InventoryHistory, Product, ProductCategory,
                                          ReservationStatus, StockReservation)


async def product_id_by_public_id(session, product_pid: UUID) -> int:
    stmt = select(Product.id).where(Product.public_id == product_pid, Product.deleted_at.is_(None))
    product_id = (await session.execute(stmt)).scalar_one_or_none()
    if product_id is None:
        logger.warning("inventory.product.not_found", extra={"product_public_id": str(product_pid)})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product_id


async def product_public_ids_for(session, product_ids) -> Dict[int, UUID]:
    ids = {pid for pid in product_ids if pid is not None}
    if not ids:
        return {}
    res = await session.execute(select(Product.id, Product.public_id).where(Product.id.in_(ids)))
    return {row[0]: row[1] for row in res.all()}


async def product_name_for(session, product_id: int) -> Optional[str]:
    return (await session.execute(select(Product.name).where(Product.id == product_id))).scalar_one_or_none()


async def inventory_by_product_id(session, product_id: int, *, lock: bool = False) -> Optional[Inventory]:
    stmt = select(Inventory).where(Inventory.product_id == product_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


async def inventory_by_public_id(session, inventory_pid: UUID, *, lock: bool = False) -> Optional[Inventory]:
    stmt = select(Inventory).where(Inventory.public_id == inventory_pid)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return (await session.execute(stmt)).scalar_one_or_none()


async def lock_inventory(session, inventory_id: int) -> Optional[Inventory]:
    """SELECT ... FOR UPDATE on one inventory row, refreshing any copy already in the session."""
    stmt = (
        select(Inventory)
        .where(Inventory.id == inventory_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def write_stock_levels(session, inventory: Inventory, *, quantity: int, reserved: int,
                             user_id: Optional[int] = None, min_available: Optional[int] = None) -> None:
    """
    Guarded write of new quantity/reserved values.

    The WHERE clause pins the values read under the row lock, so a write based on a
    stale read matches zero rows and is rejected instead of silently overwriting.
    """
    conds = [
        Inventory.id == inventory.id,
        Inventory.quantity == inventory.quantity,
        Inventory.reserved == inventory.reserved,
    ]
    if min_available is not None:
        conds.append(Inventory.quantity - Inventory.reserved >= min_available)

    stamp = now()
    stmt = (
        update(Inventory)
        .where(and_(*conds))
        .values(
            quantity=quantity,
            reserved=reserved,
            is_low_stock=quantity <= inventory.low_stock_threshold,
            last_updated=stamp,
            updated_at=stamp,
            updated_by=user_id if user_id is not None else inventory.updated_by,
        )
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        logger.warning("inventory.write.conflict", extra={"inventory_id": str(inventory.public_id)})
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Inventory was modified concurrently, retry the request")

    await session.refresh(inventory)


def add_history(session, inventory: Inventory, *, action: str, quantity_before: int, reserved_before: int,
                reason: str, source: str, order_ref: Optional[str] = None, reservation_id: Optional[int] = None,
                changed_by: Optional[int] = None, meta: Optional[Dict[str, Any]] = None) -> InventoryHistory:
    entry = InventoryHistory(
        product_id=inventory.product_id,
        inventory_id=inventory.id,
        reservation_id=reservation_id,
        action=action,
        quantity_before=quantity_before,
        quantity_after=inventory.quantity,
        quantity_changed=inventory.quantity - quantity_before,
        reserved_before=reserved_before,
        reserved_after=inventory.reserved,
        reason=reason,
        source=source,
        order_ref=order_ref,
        changed_by=changed_by,
        meta=meta,
    )
    session.add(entry)
    return entry


async def count_active_reservations(session, inventory_id: int) -> int:
    stmt = select(func.count(StockReservation.id)).where(
        StockReservation.inventory_id == inventory_id,
        StockReservation.status == ReservationStatus.ACTIVE.value,
    )
    return (await session.execute(stmt)).scalar_one()


async def list_inventories(session, *, page: int, page_size: int) -> Tuple[List[Tuple[Inventory, Product]], int]:
    total = (await session.execute(select(func.count(Inventory.id)))).scalar_one()
    stmt = (
        select(Inventory, Product)
        .join(Product, Product.id == Inventory.product_id)
        .order_by(desc(Inventory.updated_at), desc(Inventory.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [tuple(row) for row in (await session.execute(stmt)).all()], total


async def list_low_stock(session, *, page: int, page_size: int) -> Tuple[List[Tuple[Inventory, Product]], int]:
    total = (await session.execute(select(func.count(Inventory.id)).where(Inventory.is_low_stock.is_(True)))).scalar_one()
    stmt = (
        select(Inventory, Product)
        .join(Product, Product.id == Inventory.product_id)
        .where(Inventory.is_low_stock.is_(True))
        .order_by(Inventory.quantity, Inventory.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [tuple(row) for row in (await session.execute(stmt)).all()], total


async def list_history(session, product_id: int, *, page: int, page_size: int, action: Optional[str] = None,
                       source: Optional[str] = None, start: Optional[datetime] = None,
                       end: Optional[datetime] = None) -> Tuple[List[InventoryHistory], int]:
    conds = [InventoryHistory.product_id == product_id]
    if action:
        conds.append(InventoryHistory.action == action)
    if source:
        conds.append(InventoryHistory.source == source)
    if start:
        conds.append(InventoryHistory.timestamp >= start)
    if end:
        conds.append(InventoryHistory.timestamp <= end)

    total = (await session.execute(select(func.count(InventoryHistory.id)).where(*conds))).scalar_one()
    stmt = (
        select(InventoryHistory)
        .where(*conds)
        .order_by(desc(InventoryHistory.timestamp), desc(InventoryHistory.id))
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list((await session.execute(stmt)).scalars().all()), total


def _category_scope(stmt, category: Optional[str]):
    if category:
        stmt = stmt.join(ProductCategory, ProductCategory.id == Product.category_id).where(ProductCategory.name == category)
    return stmt


async def inventory_totals(session, category: Optional[str] = None) -> Dict[str, Any]:
    stmt = select(
        func.count(Inventory.id),
        func.coalesce(func.sum(case((Inventory.is_low_stock.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(case((Inventory.quantity == 0, 1), else_=0)), 0),
        func.coalesce(func.sum(Inventory.quantity), 0),
        func.coalesce(func.sum(Inventory.reserved), 0),
        func.coalesce(func.sum(Inventory.quantity * Product.price), 0),
    ).select_from(Inventory).join(Product, Product.id == Inventory.product_id)
    stmt = _category_scope(stmt, category)

    total, low, out, qty, reserved, value = (await session.execute(stmt)).one()
    return {
        "total_products": int(total),
        "low_stock_count": int(low),
        "out_of_stock_count": int(out),
        "total_quantity": int(qty),
        "total_reserved": int(reserved),
        "total_value": int(value),
    }


async def top_low_stock(session, category: Optional[str] = None, limit: int = 10) -> List[Tuple[Inventory, Product]]:
    stmt = (
        select(Inventory, Product)
        .join(Product, Product.id == Inventory.product_id)
        .where(Inventory.is_low_stock.is_(True))
    )
    stmt = _category_scope(stmt, category).order_by(Inventory.quantity, Inventory.id).limit(limit)
    return [tuple(row) for row in (await session.execute(stmt)).all()]


async def detach_history(session, inventory_id: int) -> int:
    """Unlink audit rows from an inventory about to be deleted; they stay queryable by product."""
    stmt = (
        update(InventoryHistory)
        .where(InventoryHistory.inventory_id == inventory_id)
        .values(inventory_id=None)
        .execution_options(synchronize_session=False)
    )
    return (await session.execute(stmt)).rowcount
