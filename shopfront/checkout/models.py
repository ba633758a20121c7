from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class CheckoutSessionIn(BaseModel):
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StepDataIn(BaseModel):
    step: str
    data: Dict[str, Any] = Field(default_factory=dict)


class JumpIn(BaseModel):
    step: str
