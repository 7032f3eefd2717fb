"""
Customer management endpoints
"""

from fastapi import APIRouter, Depends, Query, status

from .deps import BankingSystem, get_banking_system, require_authority
from .schemas import CreateCustomerRequest, CustomerResponse, ok
from ..customers import CustomerStatus
from ..rbac import Authority, Principal


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_customer(
    request: CreateCustomerRequest,
    principal: Principal = Depends(require_authority(Authority.CUSTOMER_CREATE)),
    system: BankingSystem = Depends(get_banking_system),
):
    """Create a new customer"""
    profile = request.model_dump(exclude_none=True)
    customer = system.customer_manager.create_customer(
        customer_type=profile.pop("customer_type"),
        branch_id=profile.pop("branch_id", None),
        created_by=principal.user_id,
        **profile,
    )
    return ok(CustomerResponse.model_validate(customer), "Customer created successfully / 客户创建成功")


@router.get("/{customer_id}")
def get_customer(
    customer_id: str,
    principal: Principal = Depends(require_authority(Authority.CUSTOMER_VIEW)),
    system: BankingSystem = Depends(get_banking_system),
):
    """Get customer details"""
    return ok(CustomerResponse.model_validate(system.customer_manager.get_customer(customer_id)))


@router.put("/{customer_id}/status")
def update_customer_status(
    customer_id: str,
    status: CustomerStatus = Query(...),
    principal: Principal = Depends(require_authority(Authority.CUSTOMER_UPDATE)),
    system: BankingSystem = Depends(get_banking_system),
):
    """Change customer status; only ACTIVE customers can open accounts"""
    customer = system.customer_manager.update_status(customer_id, status, updated_by=principal.user_id)
    return ok(CustomerResponse.model_validate(customer), "Customer status updated / 客户状态已更新")


@router.post("/{customer_id}/verify-kyc")
def verify_customer_kyc(
    customer_id: str,
    principal: Principal = Depends(require_authority(Authority.CUSTOMER_UPDATE)),
    system: BankingSystem = Depends(get_banking_system),
):
    customer = system.customer_manager.verify_kyc(customer_id, verified_by=principal.user_id)
    return ok(CustomerResponse.model_validate(customer), "KYC verified / KYC已验证")
