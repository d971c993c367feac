"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from ..loan_status import LoanStatus
from ..pagination import Page
from ..rbac import Role
from ..repayments import RepaymentMethod
from ..schedule import TermUnit


# Loan schemas
class CreateLoanRequest(BaseModel):
    customer_id: str
    loan_type_id: Optional[str] = None
    principal_amount: Decimal = Field(..., gt=0, description="Decimal amount")
    term_count: int = Field(..., gt=0, description="Number of installments")
    term_unit: TermUnit
    start_date: date
    processing_fee_amount: Decimal = Field(Decimal("0"), ge=0)
    penalty_fee_per_day_amount: Decimal = Field(Decimal("0"), ge=0)
    interest_rate: Decimal = Field(Decimal("0"), ge=0, le=100, description="Annual flat rate in percent")
    notes: Optional[str] = None


class UpdateLoanRequest(BaseModel):
    loan_type_id: Optional[str] = None
    principal_amount: Optional[Decimal] = Field(None, gt=0)
    term_count: Optional[int] = Field(None, gt=0)
    term_unit: Optional[TermUnit] = None
    start_date: Optional[date] = None
    processing_fee_amount: Optional[Decimal] = Field(None, ge=0)
    penalty_fee_per_day_amount: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class UpdateLoanStatusRequest(BaseModel):
    status: LoanStatus
    notes: Optional[str] = None


class DisburseLoanRequest(BaseModel):
    disbursed_at: Optional[datetime] = None


class AssignLoanRequest(BaseModel):
    assigned_officer_id: str
    reason: Optional[str] = None


# Repayment schemas
class CreateRepaymentRequest(BaseModel):
    loan_id: str
    amount: Decimal = Field(..., gt=0, description="Decimal amount")
    method: RepaymentMethod
    paid_at: Optional[datetime] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class UpdateRepaymentRequest(BaseModel):
    method: Optional[RepaymentMethod] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


# Loan type schemas
class CreateLoanTypeRequest(BaseModel):
    name: str = Field(..., min_length=3)
    description: Optional[str] = None
    min_amount: Decimal = Field(..., gt=0)
    max_amount: Decimal = Field(..., gt=0)

    @model_validator(mode="after")
    def check_range(self):
        if self.max_amount <= self.min_amount:
            raise ValueError("Maximum amount must be greater than minimum amount")
        return self


class UpdateLoanTypeRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=3)
    description: Optional[str] = None
    min_amount: Optional[Decimal] = Field(None, gt=0)
    max_amount: Optional[Decimal] = Field(None, gt=0)
    is_active: Optional[bool] = None


# Branch schemas
class CreateBranchRequest(BaseModel):
    name: str = Field(..., min_length=1)
    code: str = Field(..., min_length=2, max_length=10)
    manager_id: Optional[str] = None


class UpdateBranchRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    code: Optional[str] = Field(None, min_length=2, max_length=10)
    manager_id: Optional[str] = None


# Customer schemas
class CreateCustomerRequest(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    branch_id: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    current_officer_id: Optional[str] = None


class UpdateCustomerRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    branch_id: Optional[str] = None
    current_officer_id: Optional[str] = None


class ReassignCustomerRequest(BaseModel):
    new_branch_id: Optional[str] = None
    new_officer_id: Optional[str] = None
    reason: Optional[str] = None


# User schemas
class CreateUserRequest(BaseModel):
    email: str
    full_name: str = Field(..., min_length=1)
    role: Role
    branch_id: Optional[str] = None
    phone: Optional[str] = None


class UpdateUserRequest(BaseModel):
    email: Optional[str] = None
    full_name: Optional[str] = Field(None, min_length=1)
    role: Optional[Role] = None
    branch_id: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None


# Response envelope
def success_response(
    data: Any = None,
    message: Optional[str] = None,
    page: Optional[Page] = None
) -> Dict[str, Any]:
    """Wrap a payload in the standard ``{"success": true, ...}`` envelope"""
    response: Dict[str, Any] = {"success": True}
    if message:
        response["message"] = message
    if page is not None:
        response["data"] = [_as_payload(item) for item in page.items]
        response["pagination"] = page.meta()
    elif data is not None:
        response["data"] = _as_payload(data)
    return response


def _as_payload(value: Any) -> Any:
    if isinstance(value, list):
        return [_as_payload(item) for item in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value
