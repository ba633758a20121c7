from typing import  Optional
from pydantic import BaseModel, Field


class SignupIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=64, examples=["jane_doe"])
    email: str = Field(..., max_length=320, examples=["user@example.com"])
    password: str = Field(..., max_length=128)
    first_name: Optional[str] = Field(None, max_length=128)
    last_name: Optional[str] = Field(None, max_length=128)

    model_config = {"extra": "forbid"}


class SignIn(BaseModel):
    identifier: str = Field(..., description="username or email")
    password: str = Field(...)
