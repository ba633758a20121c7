from typing import Optional
from shopfront.inventory.constants import logger
from shopfront.schema.full_schema import Inventory


def crossed_into_low_stock(was_low: bool, inventory: Inventory) -> bool:
    return inventory.is_low_stock and not was_low


def emit_low_stock_alert(inventory: Inventory, product_name: Optional[str] = None) -> None:
    logger.warning(
        "inventory.low_stock.alert",
        extra={
            "inventory_id": str(inventory.public_id),
            "product_name": product_name,
            "quantity": inventory.quantity,
            "available": inventory.available,
            "threshold": inventory.low_stock_threshold,
            "out_of_stock": inventory.quantity == 0,
        },
    )
