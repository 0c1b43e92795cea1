"""
Reporting endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from .auth import PortfolioSystem, get_portfolio_system, get_current_user
from ..exceptions import ValidationError
from ..reporting import ReportFormat, serialize_loan, serialize_customer
from ..storage import to_document


router = APIRouter()

MEDIA_TYPES = {
    ReportFormat.CSV: "text/csv",
    ReportFormat.JSON: "application/json",
}


def _parse_format(value: str) -> ReportFormat:
    try:
        return ReportFormat(value.lower())
    except ValueError:
        raise ValidationError(f"Unsupported export format: {value}")


def _download(content: str, report_format: ReportFormat, filename: str) -> Response:
    return Response(
        content=content,
        media_type=MEDIA_TYPES[report_format],
        headers={"Content-Disposition": f'attachment; filename="{filename}.{report_format.value}"'}
    )


def _status_param(value: Optional[str]) -> Optional[str]:
    if value and value not in ("all", "active", "closed", "deleted"):
        raise ValidationError(f"Invalid loan status: {value}")
    return value


@router.get("/stats")
async def portfolio_stats(
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Dashboard counters"""
    return to_document(system.reporting_engine.portfolio_stats(user_id))


@router.get("/upcoming-payments")
async def upcoming_payments(
    days: Optional[int] = Query(None, ge=0),
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Pending installments falling due soon"""
    if days is None:
        days = system.settings.upcoming_payment_days
    return to_document(system.reporting_engine.upcoming_payments(user_id, days))


@router.get("/all-loans-data")
async def all_loans_data(
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Every loan joined with its customer"""
    today = system.clock.today()
    rows = system.reporting_engine.loans_report(user_id, _status_param(status_filter))
    return [
        {"loan": serialize_loan(row["loan"], today), "customer": serialize_customer(row["customer"])}
        for row in rows
    ]


@router.get("/single-loan-data/{loan_id}")
async def single_loan_data(
    loan_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """One loan with its customer and interest totals"""
    report = system.reporting_engine.loan_report(loan_id, user_id)
    return {
        "loan": serialize_loan(report["loan"], system.clock.today()),
        "customer": serialize_customer(report["customer"]),
        "totals": to_document(report["totals"])
    }


@router.get("/all-customers-data")
async def all_customers_data(
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Customers with loan counts"""
    rows = system.reporting_engine.customers_report(user_id)
    return [
        dict(to_document({k: v for k, v in row.items() if k != "customer"}),
             customer=serialize_customer(row["customer"]))
        for row in rows
    ]


@router.get("/loans/export")
async def export_loans(
    format: str = "csv",
    status_filter: Optional[str] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Download the loan portfolio as CSV or JSON"""
    report_format = _parse_format(format)
    rows = system.reporting_engine.loans_report(user_id, _status_param(status_filter))
    content = system.reporting_engine.export_loans(rows, report_format)
    return _download(content, report_format, "loans")


@router.get("/loans/{loan_id}/export")
async def export_loan(
    loan_id: str,
    format: str = "csv",
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Download the installment schedule of one loan"""
    report_format = _parse_format(format)
    report = system.reporting_engine.loan_report(loan_id, user_id)
    content = system.reporting_engine.export_loan_payments(
        report["loan"], report["customer"], report_format
    )
    return _download(content, report_format, f"loan-{loan_id}")
