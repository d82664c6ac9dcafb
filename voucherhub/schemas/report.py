"""
Report Schemas
"""
from pydantic import BaseModel
from typing import List
from datetime import date


class AgencyActivity(BaseModel):
    agency_id: str
    agency_name: str
    issued: int = 0
    redeemed: int = 0


class CenterActivity(BaseModel):
    center_id: str
    center_name: str
    redeemed: int


class ReportResponse(BaseModel):
    from_date: date
    to_date: date
    # Every voucher issued in the range, whatever its status now
    issued_count: int
    redeemed_count: int
    expired_count: int
    unfulfilled_count: int
    outstanding_count: int
    by_agency: List[AgencyActivity]
    by_center: List[CenterActivity]
