"""
Customer Management Module

Manages the borrowers a lender tracks. Customers belong to the user account
that created them and cannot be deleted while they have active loans.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Any
import uuid
import re

from .clock import Clock
from .storage import StorageInterface, StorageRecord, parse_datetime
from .audit import AuditTrail, AuditEventType
from .exceptions import (
    ValidationError, NotFoundError, AuthorizationError, CustomerHasActiveLoansError
)
from .logging_config import get_logger, log_action


logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
UPDATABLE_FIELDS = ('name', 'mobile', 'email')


@dataclass
class Customer(StorageRecord):
    """Borrower contact record"""
    name: str
    mobile: str
    email: str
    user_id: Optional[str] = None

    def __post_init__(self):
        validate_customer_fields(self.name, self.mobile, self.email)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Customer':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data.get('updated_at') or data['created_at']),
            name=data['name'],
            mobile=data['mobile'],
            email=data['email'],
            user_id=data.get('user_id')
        )


def validate_customer_fields(name: str, mobile: str, email: str) -> None:
    missing = [label for label, value in (('name', name), ('email', email), ('mobile', mobile))
               if not value or not str(value).strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")


class CustomerManager:
    """
    Customer directory consulted by the loan lifecycle
    """

    def __init__(self, storage: StorageInterface, clock: Clock,
                 audit_trail: Optional[AuditTrail] = None):
        self.storage = storage
        self.clock = clock
        self.audit_trail = audit_trail
        self.customers_table = "customers"
        self.loans_table = "loans"

    def create_customer(self, name: str, mobile: str, email: str,
                        user_id: Optional[str] = None) -> Customer:
        """
        Create a new customer

        Args:
            name: Customer name
            mobile: Mobile number
            email: Email address
            user_id: Owning user account

        Returns:
            Created Customer
        """
        now = self.clock.now()
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=(name or "").strip(),
            mobile=(mobile or "").strip(),
            email=(email or "").strip(),
            user_id=user_id
        )
        self.storage.save(self.customers_table, customer.id, customer.to_dict())

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_CREATED,
                entity_type="customer",
                entity_id=customer.id,
                metadata={"name": customer.name},
                user_id=user_id
            )
        log_action(logger, "info", "Customer created", user_id=user_id,
                   action="create_customer", customer_id=customer.id)
        return customer

    def exists(self, customer_id: str, user_id: Optional[str] = None) -> bool:
        data = self.storage.load(self.customers_table, customer_id)
        if data is None:
            return False
        return user_id is None or data.get('user_id') == user_id

    def get_customer(self, customer_id: str, user_id: Optional[str] = None) -> Customer:
        """Get customer by ID, raising NotFoundError when absent"""
        data = self.storage.load(self.customers_table, customer_id)
        if data is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        customer = Customer.from_dict(data)
        if user_id is not None and customer.user_id != user_id:
            raise AuthorizationError("Unauthorized to access this customer")
        return customer

    def find_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID or None, without ownership checks"""
        data = self.storage.load(self.customers_table, customer_id)
        return Customer.from_dict(data) if data else None

    def list_customers(self, user_id: Optional[str] = None) -> List[Customer]:
        """Customers of a user ordered by name"""
        filters = {"user_id": user_id} if user_id is not None else {}
        customers = [Customer.from_dict(d) for d in self.storage.find(self.customers_table, filters)]
        customers.sort(key=lambda c: c.name.lower())
        return customers

    def update_customer(self, customer_id: str, changes: Dict[str, Any],
                        user_id: Optional[str] = None) -> Customer:
        """Edit name, mobile or email"""
        customer = self.get_customer(customer_id, user_id)

        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update customer fields: {', '.join(sorted(unknown))}")

        for field_name, value in changes.items():
            if value is not None:
                setattr(customer, field_name, str(value).strip())
        validate_customer_fields(customer.name, customer.mobile, customer.email)

        customer.updated_at = self.clock.now()
        self.storage.save(self.customers_table, customer.id, customer.to_dict())

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_UPDATED,
                entity_type="customer",
                entity_id=customer.id,
                metadata={"fields": sorted(changes)},
                user_id=user_id
            )
        log_action(logger, "info", "Customer updated", user_id=user_id,
                   action="update_customer", customer_id=customer.id)
        return customer

    def delete_customer(self, customer_id: str, user_id: Optional[str] = None) -> None:
        """
        Permanently delete a customer

        Raises:
            CustomerHasActiveLoansError: an active loan still references the customer
        """
        customer = self.get_customer(customer_id, user_id)

        filters = {"customer_id": customer_id, "status": "active"}
        if customer.user_id is not None:
            filters["user_id"] = customer.user_id
        if self.storage.find(self.loans_table, filters):
            raise CustomerHasActiveLoansError("Cannot delete customer. They have active loans.")

        self.storage.delete(self.customers_table, customer_id)

        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=AuditEventType.CUSTOMER_DELETED,
                entity_type="customer",
                entity_id=customer_id,
                metadata={"name": customer.name},
                user_id=user_id
            )
        log_action(logger, "info", "Customer deleted", user_id=user_id,
                   action="delete_customer", customer_id=customer_id)
