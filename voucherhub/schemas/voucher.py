"""
Voucher Schemas

Request/response models for the voucher life cycle and redemptions.
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal
from voucherhub.models.voucher import VoucherStatus

NOTES_MAX_LENGTH = 400


class VoucherIssue(BaseModel):
    """Schema for issuing a voucher."""
    client_id: str
    agency_id: str
    food_bank_center_id: Optional[str] = None
    # Defaults: now, and now + VOUCHER_VALIDITY_DAYS
    issue_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)
    collection_notes: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)
    # Required once a client has 3+ vouchers in the last 6 months
    more_than_3_reason: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class VoucherRedeem(BaseModel):
    center_id: str
    failure_reason: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)
    weight_kg: Optional[Decimal] = Field(None, ge=0, max_digits=8, decimal_places=2)


class VoucherUnfulfilled(BaseModel):
    reason: Optional[str] = Field(None, max_length=NOTES_MAX_LENGTH)


class VoucherFilters(BaseModel):
    """Query filters for listing vouchers."""
    status: Optional[VoucherStatus] = None
    # "valid": issued and not past expiry; "expired": expired, or issued and past expiry
    validity: Optional[str] = Field(None, pattern="^(valid|expired)$")
    client_id: Optional[str] = None
    code: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


class VoucherResponse(BaseModel):
    id: str
    code: str
    tenant_id: str
    client_id: str
    agency_id: str
    food_bank_center_id: Optional[str]
    issued_by_id: str
    status: VoucherStatus
    issue_date: datetime
    expiry_date: datetime
    notes: Optional[str]
    collection_notes: Optional[str]
    unfulfilled_reason: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class RedemptionResponse(BaseModel):
    id: str
    voucher_id: str
    redeemed_by_id: str
    center_id: str
    redeemed_at: datetime
    failure_reason: Optional[str]
    weight_kg: Optional[Decimal]

    class Config:
        from_attributes = True


class VoucherRedeemResponse(BaseModel):
    voucher: VoucherResponse
    redemption: RedemptionResponse
