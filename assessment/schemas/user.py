"""User & authentication schemas."""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr

from assessment.db.models import RoleEnum


class UserCreate(BaseModel):
    """POST /api/users/register"""

    email: EmailStr
    password: str
    full_name: str
    role: RoleEnum = RoleEnum.STUDENT


class UserLogin(BaseModel):
    """POST /api/users/login"""

    email: EmailStr
    password: str


class UserRead(BaseModel):
    """User returned from API; never exposes password."""

    id: uuid.UUID
    email: str
    full_name: str
    role: RoleEnum
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    """Combined auth response: token + user profile."""

    access_token: str
    token_type: str = "bearer"
    user: UserRead
