from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ProductCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=128)
    description: Optional[str] = None
    price: int = Field(..., ge=0, description="Price in minor units")
    category: Optional[str] = Field(None, max_length=128)
    specs: Optional[Dict[str, Any]] = None

    model_config = {"extra": "forbid"}
