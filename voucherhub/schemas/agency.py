"""
Agency and Center Schemas
"""
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, Dict
from datetime import datetime
from voucherhub.schemas.tenant import reject_null


class AgencyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    contact_phone: Optional[str] = Field(None, max_length=50)
    contact_email: Optional[EmailStr] = None


class AgencyUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    contact_phone: Optional[str] = Field(None, max_length=50)
    contact_email: Optional[EmailStr] = None

    @field_validator("name")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class AgencyResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    contact_phone: Optional[str]
    contact_email: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class CenterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    address: Optional[str] = None
    postcode: Optional[str] = Field(None, max_length=20)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    opening_hours: Optional[Dict[str, str]] = None
    can_deliver: bool = False


class CenterUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    address: Optional[str] = None
    postcode: Optional[str] = Field(None, max_length=20)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    opening_hours: Optional[Dict[str, str]] = None
    can_deliver: Optional[bool] = None

    @field_validator("name", "can_deliver")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class CenterResponse(BaseModel):
    id: str
    tenant_id: str
    name: str
    address: Optional[str]
    postcode: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    opening_hours: Optional[Dict[str, str]]
    can_deliver: bool
    created_at: datetime

    class Config:
        from_attributes = True
