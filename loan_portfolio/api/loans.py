"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, Query, status

from .auth import PortfolioSystem, get_portfolio_system, get_current_user
from .schemas import CreateLoanRequest, UpdateLoanRequest, MarkInterestPaidRequest
from ..exceptions import ValidationError
from ..loans import Loan, LoanStatus
from ..reporting import serialize_loan


router = APIRouter()


def _loan_response(system: PortfolioSystem, loan: Loan) -> dict:
    days_left = system.loan_manager.days_left_to_restore(loan) if loan.is_deleted else None
    return serialize_loan(loan, system.clock.today(), days_left)


def _parse_status(value: Optional[str]) -> Optional[LoanStatus]:
    if value is None or value == "all":
        return None
    try:
        return LoanStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid loan status: {value}")


def _parse_version(if_match: Optional[str]) -> Optional[int]:
    """Read a loan version from an If-Match header such as "3" or W/"3" """
    if if_match is None:
        return None
    value = if_match.strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"Invalid If-Match header: {if_match}")


@router.get("")
async def list_loans(
    status_filter: Optional[str] = Query(None, alias="status"),
    include_deleted: bool = False,
    customer_id: Optional[str] = None,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """List the caller's loans"""
    loans = system.loan_manager.list_loans(
        user_id=user_id,
        status=_parse_status(status_filter),
        include_deleted=include_deleted,
        customer_id=customer_id
    )
    return [_loan_response(system, loan) for loan in loans]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Create a loan and generate its interest schedule"""
    loan = system.loan_manager.create_loan(
        customer_id=request.customer_id,
        principal=request.principal,
        interest_rate=request.interest_rate,
        start_date=request.start_date,
        end_date=request.end_date,
        interest_frequency=request.interest_frequency,
        user_id=user_id,
        remarks=request.remarks,
        contract_note=request.contract_note
    )
    return _loan_response(system, loan)


@router.get("/trash")
async def list_deleted_loans(
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Soft-deleted loans with the days left to restore them"""
    loans = system.loan_manager.list_loans(user_id=user_id, status=LoanStatus.DELETED)
    return [_loan_response(system, loan) for loan in loans]


@router.post("/permanently-delete-old")
async def purge_deleted_loans(
    days_to_expire: Optional[int] = None,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Permanently delete soft-deleted loans past the restore window"""
    removed = system.loan_manager.purge_expired_deleted_loans(
        user_id=user_id, days_to_expire=days_to_expire
    )
    return {"deleted_count": removed, "message": f"Permanently deleted {removed} loans"}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Get loan by ID"""
    return _loan_response(system, system.loan_manager.get_loan(loan_id, user_id))


@router.put("/{loan_id}")
@router.patch("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    if_match: Optional[str] = Header(None),
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Update loan terms; pending installments are rescheduled when terms change"""
    loan = system.loan_manager.update_loan(
        loan_id,
        request.model_dump(exclude_unset=True),
        user_id=user_id,
        expected_version=_parse_version(if_match)
    )
    return _loan_response(system, loan)


@router.patch("/{loan_id}/mark-interest-paid")
async def mark_interest_paid(
    loan_id: str,
    request: MarkInterestPaidRequest,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Mark one interest installment paid"""
    loan = system.loan_manager.mark_interest_paid(
        loan_id,
        payment_id=request.payment_id,
        paid_on=request.paid_on,
        remarks=request.remarks,
        manual_amount=request.manual_amount,
        user_id=user_id
    )
    return _loan_response(system, loan)


@router.patch("/{loan_id}/mark-principal-paid")
async def mark_principal_paid(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Record principal repayment and close the loan"""
    return _loan_response(system, system.loan_manager.mark_principal_paid(loan_id, user_id))


@router.patch("/{loan_id}/close")
async def close_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Close an active loan"""
    return _loan_response(system, system.loan_manager.close_loan(loan_id, user_id))


@router.delete("/{loan_id}")
async def soft_delete_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Move a loan to the trash"""
    return _loan_response(system, system.loan_manager.soft_delete_loan(loan_id, user_id))


@router.patch("/{loan_id}/restore")
async def restore_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Restore a soft-deleted loan"""
    return _loan_response(system, system.loan_manager.restore_loan(loan_id, user_id))


@router.delete("/{loan_id}/permanently-delete")
async def permanently_delete_loan(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Irreversibly delete a loan from the trash"""
    system.loan_manager.permanently_delete_loan(loan_id, user_id)
    return {"message": "Loan permanently deleted"}
