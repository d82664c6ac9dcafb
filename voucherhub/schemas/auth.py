"""
Authentication Schemas

Request/response models for authentication endpoints.
The session token itself travels only in the HTTP-only cookie, never in a
response body.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
from voucherhub.schemas.user import UserResponse


class LoginRequest(BaseModel):
    """Login request body."""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=200)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "admin@acme.org",
                "password": "correct horse battery staple"
            }
        }


class SessionResponse(BaseModel):
    """The authenticated user and the organization the request resolved to."""
    user: UserResponse
    tenant_id: Optional[str] = None
    tenant_slug: Optional[str] = None
    permissions: list[str] = []
