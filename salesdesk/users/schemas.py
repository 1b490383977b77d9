from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


RoleName = Literal["executive", "sales", "finance", "operations"]


class UserCreate(BaseModel):
    id: str | None = Field(default=None, min_length=1, max_length=255)
    email: EmailStr
    full_name: str | None = Field(default=None, max_length=255)
    role: RoleName = "sales"


class ProfileUpdate(BaseModel):
    """Self-service edit; any other key (``role`` included) is rejected."""

    model_config = ConfigDict(extra="forbid")

    full_name: str | None = Field(default=None, max_length=255)


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: str | None
    role: RoleName | str
    created_at: datetime
    updated_at: datetime
