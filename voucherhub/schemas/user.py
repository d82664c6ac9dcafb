"""
User Schemas

Request/response models for user operations.
"""
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from datetime import datetime
from voucherhub.models.user import UserRole, UserStatus
from voucherhub.schemas.tenant import reject_null


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)


class UserCreate(UserBase):
    """Schema for creating a tenant user."""
    password: str = Field(..., min_length=8, max_length=100)
    role: UserRole = UserRole.THIRD_PARTY
    agency_id: Optional[str] = None


class UserUpdate(BaseModel):
    """Schema for updating a user. All fields optional."""
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: Optional[UserRole] = None
    status: Optional[UserStatus] = None
    agency_id: Optional[str] = None

    @field_validator("role", "status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class UserResponse(UserBase):
    """User response schema (excludes sensitive data)."""
    id: str
    tenant_id: Optional[str]
    agency_id: Optional[str]
    role: UserRole
    status: UserStatus
    created_at: datetime
    last_login_at: Optional[datetime]

    class Config:
        from_attributes = True  # Allows creating from ORM models
