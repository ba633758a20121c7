from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class GuestIn(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=128)
    cart_ref: str = Field(..., min_length=1, max_length=128)
    email: str = Field(..., max_length=320)
    first_name: Optional[str] = Field(None, max_length=128)
    last_name: Optional[str] = Field(None, max_length=128)
    phone: Optional[str] = Field(None, max_length=20)
    metadata: Optional[Dict[str, Any]] = None


class GuestUpdateIn(BaseModel):
    email: Optional[str] = Field(None, max_length=320)
    cart_ref: Optional[str] = Field(None, min_length=1, max_length=128)
    first_name: Optional[str] = Field(None, max_length=128)
    last_name: Optional[str] = Field(None, max_length=128)
    phone: Optional[str] = Field(None, max_length=20)
    status: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = {"extra": "forbid"}


class ConvertGuestIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=128)
    first_name: Optional[str] = Field(None, max_length=128)
    last_name: Optional[str] = Field(None, max_length=128)
