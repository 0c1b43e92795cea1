"""
Reporting Module

Portfolio statistics, upcoming payment reminders, report datasets and
CSV/JSON exports for the dashboard.
"""

from decimal import Decimal
from datetime import date, timedelta
from typing import Dict, List, Optional, Any, Union
from enum import Enum
import csv
import io
import json

from .clock import Clock
from .customers import CustomerManager, Customer
from .loans import LoanManager, Loan, LoanStatus
from .storage import to_document
from .logging_config import get_logger


logger = get_logger(__name__)

EXPORT_COLUMNS = [
    'Customer Name', 'Mobile', 'Email', 'Principal', 'Interest Rate',
    'Start Date', 'End Date', 'Payment Frequency', 'Status', 'Principal Paid',
    'Pending Payments', 'Completed Payments'
]

PAYMENT_COLUMNS = [
    'Due Date', 'Period Start', 'Period End', 'Amount', 'Status',
    'Paid On', 'Amount Paid', 'Remarks'
]


class ReportFormat(Enum):
    """Output formats for exports"""
    CSV = "csv"
    JSON = "json"


def serialize_payment(payment, today: date) -> Dict[str, Any]:
    data = payment.to_dict()
    data['status'] = payment.effective_status(today).value
    return data


def serialize_loan(loan: Loan, today: date,
                   days_left_to_restore: Optional[int] = None) -> Dict[str, Any]:
    """JSON view of a loan with display-derived installment status"""
    data = loan.to_dict()
    data['interest_payments'] = [serialize_payment(p, today) for p in loan.interest_payments]
    if days_left_to_restore is not None:
        data['days_left_to_restore'] = days_left_to_restore
    return data


def serialize_customer(customer: Optional[Customer]) -> Optional[Dict[str, Any]]:
    return customer.to_dict() if customer else None


def interest_totals(loans: List[Loan]) -> Dict[str, Decimal]:
    total = paid = pending = Decimal('0')
    for loan in loans:
        total += loan.total_interest
        paid += loan.paid_interest
        pending += loan.pending_interest
    return {
        'total_interest': total,
        'paid_interest': paid,
        'pending_interest': pending
    }


class ReportingEngine:
    """
    Read-only views over the loans and customers of one user
    """

    def __init__(self, loan_manager: LoanManager, customer_manager: CustomerManager,
                 clock: Clock):
        self.loan_manager = loan_manager
        self.customer_manager = customer_manager
        self.clock = clock

    def portfolio_stats(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        """Dashboard counters for the active portfolio"""
        active_loans = self.loan_manager.list_loans(user_id=user_id, status=LoanStatus.ACTIVE)
        customers = self.customer_manager.list_customers(user_id)

        return {
            'active_loans': len(active_loans),
            'total_customers': len(customers),
            'total_principal': sum((loan.principal for loan in active_loans), Decimal('0')),
            'pending_interest': sum((loan.pending_interest for loan in active_loans), Decimal('0'))
        }

    def upcoming_payments(self, user_id: Optional[str] = None, days: int = 30) -> List[Dict[str, Any]]:
        """
        Pending installments of active loans due within the next `days` days

        Args:
            user_id: Owner of the loans
            days: Look-ahead window, today inclusive

        Returns:
            Rows of loan, customer and installment data sorted by due date
        """
        today = self.clock.today()
        horizon = today + timedelta(days=days)
        rows = []

        for loan in self.loan_manager.list_loans(user_id=user_id, status=LoanStatus.ACTIVE):
            customer = self.customer_manager.find_customer(loan.customer_id)
            for payment in loan.pending_payments:
                if today <= payment.due_date <= horizon:
                    rows.append({
                        'loan_id': loan.id,
                        'customer_id': loan.customer_id,
                        'customer_name': customer.name if customer else None,
                        'payment_id': payment.id,
                        'due_date': payment.due_date,
                        'amount': payment.amount,
                        'period_start': payment.period_start,
                        'period_end': payment.period_end
                    })

        rows.sort(key=lambda row: row['due_date'])
        return rows

    def loans_report(self, user_id: Optional[str] = None,
                     status: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Every loan joined with its customer; loans whose customer no longer
        exists are skipped. status 'all' (or None) disables the filter, so
        soft-deleted loans are included.
        """
        status_filter = None
        if status and status != 'all':
            status_filter = LoanStatus(status)

        rows = []
        loans = self.loan_manager.list_loans(user_id=user_id, status=status_filter,
                                             include_deleted=True)
        for loan in loans:
            customer = self.customer_manager.find_customer(loan.customer_id)
            if customer is None:
                logger.warning("Skipping loan %s with missing customer %s", loan.id, loan.customer_id)
                continue
            rows.append({'loan': loan, 'customer': customer})
        return rows

    def loan_report(self, loan_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        loan = self.loan_manager.get_loan(loan_id, user_id)
        customer = self.customer_manager.find_customer(loan.customer_id)
        return {
            'loan': loan,
            'customer': customer,
            'totals': interest_totals([loan])
        }

    def customers_report(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Customers with a count of their loans by status"""
        loans = self.loan_manager.list_loans(user_id=user_id, include_deleted=True)
        rows = []
        for customer in self.customer_manager.list_customers(user_id):
            own = [loan for loan in loans if loan.customer_id == customer.id]
            rows.append({
                'customer': customer,
                'active_loans': sum(1 for loan in own if loan.status == LoanStatus.ACTIVE),
                'closed_loans': sum(1 for loan in own if loan.status == LoanStatus.CLOSED),
                'total_principal': sum((loan.principal for loan in own
                                        if loan.status == LoanStatus.ACTIVE), Decimal('0'))
            })
        return rows

    def export_loans(self, rows: List[Dict[str, Any]], format: ReportFormat) -> Union[Dict, str]:
        """
        Export loan rows from loans_report as a spreadsheet-style table
        followed by interest summary totals
        """
        table = [self._loan_row(row['loan'], row.get('customer')) for row in rows]
        totals = interest_totals([row['loan'] for row in rows])
        summary = [
            ('Total Interest', totals['total_interest']),
            ('Paid Interest', totals['paid_interest']),
            ('Pending Interest', totals['pending_interest'])
        ]

        if format == ReportFormat.JSON:
            return json.dumps({
                'generated_at': self.clock.now(),
                'loans': table,
                'summary': dict(summary)
            }, indent=2, default=str)

        elif format == ReportFormat.CSV:
            output = io.StringIO()
            writer = csv.DictWriter(output, fieldnames=EXPORT_COLUMNS)
            writer.writeheader()
            for row in table:
                writer.writerow(row)

            # Blank separator row, then label/value pairs
            plain = csv.writer(output)
            plain.writerow([])
            for label, value in summary:
                plain.writerow([label, str(value)])

            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")

    def export_loan_payments(self, loan: Loan, customer: Optional[Customer],
                             format: ReportFormat) -> Union[Dict, str]:
        """Export the installment schedule of a single loan"""
        today = self.clock.today()
        table = [
            {
                'Due Date': p.due_date.isoformat(),
                'Period Start': p.period_start.isoformat(),
                'Period End': p.period_end.isoformat(),
                'Amount': str(p.amount),
                'Status': p.effective_status(today).value,
                'Paid On': p.paid_on.isoformat() if p.paid_on else '',
                'Amount Paid': str(p.amount_paid) if p.amount_paid is not None else '',
                'Remarks': p.remarks or ''
            }
            for p in loan.interest_payments
        ]
        totals = interest_totals([loan])

        if format == ReportFormat.JSON:
            return json.dumps({
                'loan': self._loan_row(loan, customer),
                'payments': table,
                'summary': to_document(totals)
            }, indent=2, default=str)

        elif format == ReportFormat.CSV:
            output = io.StringIO()
            writer = csv.DictWriter(output, fieldnames=PAYMENT_COLUMNS)
            writer.writeheader()
            for row in table:
                writer.writerow(row)

            plain = csv.writer(output)
            plain.writerow([])
            plain.writerow(['Total Interest', str(totals['total_interest'])])
            plain.writerow(['Paid Interest', str(totals['paid_interest'])])
            plain.writerow(['Pending Interest', str(totals['pending_interest'])])

            csv_content = output.getvalue()
            output.close()
            return csv_content

        else:
            raise ValueError(f"Unsupported export format: {format}")

    def _loan_row(self, loan: Loan, customer: Optional[Customer]) -> Dict[str, str]:
        return {
            'Customer Name': customer.name if customer else '',
            'Mobile': customer.mobile if customer else '',
            'Email': customer.email if customer else '',
            'Principal': str(loan.principal),
            'Interest Rate': f"{loan.interest_rate}%",
            'Start Date': loan.start_date.isoformat(),
            'End Date': loan.end_date.isoformat(),
            'Payment Frequency': loan.interest_frequency.value,
            'Status': loan.status.value,
            'Principal Paid': 'Yes' if loan.principal_paid else 'No',
            'Pending Payments': str(len(loan.pending_payments)),
            'Completed Payments': str(len(loan.paid_payments))
        }
