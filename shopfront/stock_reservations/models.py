from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class BulkReservationIn(BaseModel):
    reservation_ids: List[str] = Field(..., min_length=1)
    reason: Optional[str] = None


class ReservationUpdateIn(BaseModel):
    """Bookkeeping fields only; status and quantity change through complete/cancel/expire."""
    reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None

    model_config = {"extra": "forbid"}
