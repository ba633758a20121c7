from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ActivityIn(BaseModel):
    activity_type: str = Field(..., min_length=1, max_length=64)
    activity_data: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = Field(None, max_length=128)
    session_duration: Optional[int] = Field(None, ge=0)
    success: bool = True
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ActivityUpdateIn(BaseModel):
    activity_data: Optional[Dict[str, Any]] = None
    session_duration: Optional[int] = Field(None, ge=0)
    success: Optional[bool] = None
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = {"extra": "forbid"}


class BehaviorIn(BaseModel):
    behavior_type: str = Field(..., min_length=1, max_length=64)
    session_id: str = Field(..., min_length=1, max_length=128)
    page_url: Optional[str] = Field(None, max_length=2048)
    time_spent: int = Field(0, ge=0)
    metadata: Optional[Dict[str, Any]] = None
