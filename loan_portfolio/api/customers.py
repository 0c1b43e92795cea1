"""
Customer management endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import PortfolioSystem, get_portfolio_system, get_current_user
from .schemas import CreateCustomerRequest, UpdateCustomerRequest


router = APIRouter()


@router.get("")
async def list_customers(
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """List the caller's customers ordered by name"""
    customers = system.customer_manager.list_customers(user_id)
    return [customer.to_dict() for customer in customers]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    request: CreateCustomerRequest,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Create a new customer"""
    customer = system.customer_manager.create_customer(
        name=request.name,
        mobile=request.mobile,
        email=request.email,
        user_id=user_id
    )
    return customer.to_dict()


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Get customer by ID"""
    return system.customer_manager.get_customer(customer_id, user_id).to_dict()


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    request: UpdateCustomerRequest,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Update customer contact details"""
    customer = system.customer_manager.update_customer(
        customer_id, request.model_dump(exclude_none=True), user_id
    )
    return customer.to_dict()


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: str,
    user_id: str = Depends(get_current_user),
    system: PortfolioSystem = Depends(get_portfolio_system)
):
    """Delete a customer without active loans"""
    system.customer_manager.delete_customer(customer_id, user_id)
    return {"message": "Customer deleted successfully"}
