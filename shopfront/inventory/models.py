from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator
from shopfront.inventory.constants import RESERVATION_EXPIRATION_MINUTES
from shopfront.schema.full_schema import InventorySource


class InitializeInventoryIn(BaseModel):
    product_id: str
    initial_quantity: int = Field(0, ge=0)
    low_stock_threshold: Optional[int] = Field(None, ge=0)


class UpdateQuantityIn(BaseModel):
    quantity_change: int
    reason: str = Field(..., min_length=1)
    source: InventorySource = InventorySource.MANUAL
    order_ref: Optional[str] = Field(None, max_length=128)

    @field_validator("quantity_change")
    @classmethod
    def non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity_change must be non-zero")
        return v

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason is required")
        return v


class ReserveIn(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)
    order_ref: str = Field(..., min_length=1, max_length=128)
    customer_id: Optional[str] = None
    session_id: Optional[str] = Field(None, max_length=128)
    expiration_minutes: int = Field(RESERVATION_EXPIRATION_MINUTES, ge=1)
    metadata: Optional[Dict[str, Any]] = None


class ReasonIn(BaseModel):
    reason: Optional[str] = None


class ThresholdItemIn(BaseModel):
    inventory_id: str
    low_stock_threshold: int = Field(..., ge=0)


class BulkThresholdIn(BaseModel):
    updates: List[ThresholdItemIn] = Field(..., min_length=1)
