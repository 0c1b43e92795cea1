"""
Interest Schedule Module

Generates the interest installment schedule of a loan. Interest is simple and
fixed per period: the annual interest on the principal divided evenly across
the payment periods in a year, rounded half-up to two decimal places.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid
import calendar

from .exceptions import ValidationError
from .storage import to_document, parse_date, parse_decimal


CENT = Decimal('0.01')


class InterestFrequency(Enum):
    """How often interest falls due"""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half-yearly"
    YEARLY = "yearly"

    @property
    def periods_per_year(self) -> int:
        return {
            InterestFrequency.MONTHLY: 12,
            InterestFrequency.QUARTERLY: 4,
            InterestFrequency.HALF_YEARLY: 2,
            InterestFrequency.YEARLY: 1
        }[self]

    @property
    def months_per_period(self) -> int:
        return 12 // self.periods_per_year


class PaymentStatus(Enum):
    """Installment status; OVERDUE is derived and never stored"""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass
class InterestPayment:
    """One scheduled interest installment"""
    id: str
    due_date: date
    amount: Decimal
    period_start: date
    period_end: date
    status: PaymentStatus = PaymentStatus.PENDING
    paid_on: Optional[date] = None
    remarks: Optional[str] = None
    amount_paid: Optional[Decimal] = None
    is_manual_amount: bool = False

    @property
    def is_paid(self) -> bool:
        return self.status == PaymentStatus.PAID

    def effective_status(self, today: date) -> PaymentStatus:
        """Pending installments past their due date report as overdue"""
        if self.status == PaymentStatus.PENDING and self.due_date < today:
            return PaymentStatus.OVERDUE
        return self.status

    def to_dict(self) -> Dict[str, Any]:
        return to_document(asdict(self))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InterestPayment':
        status = PaymentStatus(data.get('status', PaymentStatus.PENDING.value))
        if status == PaymentStatus.OVERDUE:
            status = PaymentStatus.PENDING
        due_date = parse_date(data['due_date'])
        return cls(
            id=data['id'],
            due_date=due_date,
            amount=parse_decimal(data['amount']),
            period_start=parse_date(data.get('period_start')) or due_date,
            period_end=parse_date(data.get('period_end')) or due_date,
            status=status,
            paid_on=parse_date(data.get('paid_on')),
            remarks=data.get('remarks'),
            amount_paid=parse_decimal(data.get('amount_paid')),
            is_manual_amount=bool(data.get('is_manual_amount', False))
        )


def round2(value: Decimal) -> Decimal:
    """Round to cents, half-up"""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of the target month"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def periodic_interest(principal: Decimal, annual_rate_percent: Decimal,
                      frequency: InterestFrequency) -> Decimal:
    """Interest charged for one full period"""
    annual_interest = principal * annual_rate_percent / Decimal('100')
    return round2(annual_interest / Decimal(frequency.periods_per_year))


def validate_terms(principal: Decimal, annual_rate_percent: Decimal,
                   start_date: date, end_date: date) -> None:
    """Raise ValidationError unless the loan terms can produce a schedule"""
    if principal is None or principal <= 0:
        raise ValidationError("Principal must be greater than zero")
    if annual_rate_percent is None or annual_rate_percent <= 0:
        raise ValidationError("Interest rate must be greater than zero")
    if start_date is None or end_date is None:
        raise ValidationError("Start date and end date are required")
    if start_date >= end_date:
        raise ValidationError("End date must be after start date")


def generate_interest_payments(
    principal: Decimal,
    annual_rate_percent: Decimal,
    start_date: date,
    end_date: date,
    frequency: InterestFrequency
) -> List[InterestPayment]:
    """
    Generate the interest installments covering [start_date, end_date].

    Periods advance by the frequency's month increment from start_date and are
    contiguous. The last period is clamped to end_date and may be shorter than
    the others, but it is still charged the full per-period amount.

    Args:
        principal: Loan principal
        annual_rate_percent: Annual rate as a percentage (12 means 12%)
        start_date: First day of the first period
        end_date: Last period end and final due date
        frequency: Interest frequency

    Returns:
        Pending InterestPayment objects ordered by period
    """
    principal = parse_decimal(principal)
    annual_rate_percent = parse_decimal(annual_rate_percent)
    validate_terms(principal, annual_rate_percent, start_date, end_date)
    if not isinstance(frequency, InterestFrequency):
        try:
            frequency = InterestFrequency(frequency)
        except ValueError:
            raise ValidationError(f"Unsupported interest frequency: {frequency}")

    amount = periodic_interest(principal, annual_rate_percent, frequency)
    payments = []

    current_date = start_date
    period_start = start_date
    while current_date < end_date:
        next_date = add_months(current_date, frequency.months_per_period)
        period_end = min(next_date, end_date)

        payments.append(InterestPayment(
            id=str(uuid.uuid4()),
            due_date=period_end,
            amount=amount,
            period_start=period_start,
            period_end=period_end
        ))

        if period_end >= end_date:
            break

        current_date = next_date
        period_start = period_end

    return payments
