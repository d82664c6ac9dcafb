"""
Client Schemas

UK postcode format is checked here; a client with no fixed address has no
postcode at all.
"""
import re
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, Dict
from datetime import datetime
from voucherhub.schemas.tenant import reject_null

UK_POSTCODE = re.compile(r"^[A-Za-z]{1,2}[0-9][0-9A-Za-z]?\s?[0-9][A-Za-z]{2}$")


def normalize_postcode(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip()).upper()


class ClientCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    surname: str = Field(..., min_length=1, max_length=100)
    postcode: Optional[str] = None
    no_fixed_address: bool = False
    address: Optional[str] = None
    year_of_birth: Optional[int] = Field(None, ge=1900, le=2100)
    household_adults: Optional[Dict[str, int]] = None
    household_children: Optional[Dict[str, int]] = None

    @model_validator(mode="after")
    def check_postcode(self):
        if self.no_fixed_address:
            self.postcode = None
            return self
        if not self.postcode or not self.postcode.strip():
            raise ValueError("Postcode is required unless the client has no fixed address")
        postcode = normalize_postcode(self.postcode)
        if not UK_POSTCODE.match(postcode):
            raise ValueError("Invalid postcode format")
        self.postcode = postcode
        return self


class ClientUpdate(BaseModel):
    """
    Partial update. Whether the result still has a postcode or no fixed
    address is checked against the stored row by the endpoint.
    """
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    surname: Optional[str] = Field(None, min_length=1, max_length=100)
    postcode: Optional[str] = None
    no_fixed_address: Optional[bool] = None
    address: Optional[str] = None
    year_of_birth: Optional[int] = Field(None, ge=1900, le=2100)
    household_adults: Optional[Dict[str, int]] = None
    household_children: Optional[Dict[str, int]] = None

    @field_validator("first_name", "surname", "no_fixed_address")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)

    @field_validator("postcode")
    @classmethod
    def check_postcode(cls, value):
        if value is None or not value.strip():
            return None
        postcode = normalize_postcode(value)
        if not UK_POSTCODE.match(postcode):
            raise ValueError("Invalid postcode format")
        return postcode


class ClientResponse(BaseModel):
    id: str
    tenant_id: str
    first_name: str
    surname: str
    postcode: Optional[str]
    no_fixed_address: bool
    address: Optional[str]
    year_of_birth: Optional[int]
    household_adults: Optional[Dict[str, int]]
    household_children: Optional[Dict[str, int]]
    created_at: datetime

    class Config:
        from_attributes = True


class ClientSearchResult(ClientResponse):
    """Search hit enriched with voucher history."""
    last_voucher_issued: Optional[datetime] = None
    vouchers_in_last_6_months: int = 0
