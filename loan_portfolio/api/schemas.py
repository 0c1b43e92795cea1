"""
Pydantic schemas for API requests
"""

from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


# Customer schemas
class CreateCustomerRequest(BaseModel):
    name: str
    mobile: str
    email: str


class UpdateCustomerRequest(BaseModel):
    name: Optional[str] = None
    mobile: Optional[str] = None
    email: Optional[str] = None


# Loan schemas
class CreateLoanRequest(BaseModel):
    customer_id: str
    principal: Decimal = Field(..., description="Amount lent")
    interest_rate: Decimal = Field(..., description="Annual interest rate in percent")
    start_date: str  # ISO date string
    end_date: str  # ISO date string
    interest_frequency: str = Field(..., description="monthly, quarterly, half-yearly or yearly")
    remarks: Optional[str] = None
    contract_note: Optional[str] = None


class UpdateLoanRequest(BaseModel):
    principal: Optional[Decimal] = None
    interest_rate: Optional[Decimal] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    interest_frequency: Optional[str] = None
    remarks: Optional[str] = None
    contract_note: Optional[str] = None


class MarkInterestPaidRequest(BaseModel):
    payment_id: str
    paid_on: str  # ISO date string
    remarks: Optional[str] = None
    manual_amount: Optional[Decimal] = Field(None, description="Amount received, if not the scheduled amount")
