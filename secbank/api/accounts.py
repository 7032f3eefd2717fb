"""
CASA account management endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .deps import BankingSystem, get_banking_system, require_authority
from .schemas import (
    AccountPageResponse,
    AccountResponse,
    AccountStatsResponse,
    BranchAccountStatsResponse,
    OpenAccountRequest,
    UpdateAccountRequest,
    ok,
)
from ..accounts import AccountStatus
from ..rbac import Authority, Principal


router = APIRouter()

can_view = require_authority(Authority.CASA_ACCOUNT_VIEW)
can_create = require_authority(Authority.CASA_ACCOUNT_CREATE)
can_update = require_authority(Authority.CASA_ACCOUNT_UPDATE)
can_close = require_authority(Authority.CASA_ACCOUNT_CLOSE)


@router.get("")
def list_accounts(
    keyword: Optional[str] = None,
    status: Optional[AccountStatus] = None,
    branch_id: Optional[str] = Query(None, alias="branchId"),
    account_type_id: Optional[str] = Query(None, alias="accountTypeId"),
    customer_id: Optional[str] = Query(None, alias="customerId"),
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(can_view),
    system: BankingSystem = Depends(get_banking_system),
):
    """Search accounts with filters and zero-based paging"""
    result = system.account_manager.find_accounts(
        keyword=keyword, status=status, branch_id=branch_id,
        account_type_id=account_type_id, customer_id=customer_id,
        page=page, size=size,
    )
    return ok(AccountPageResponse(
        content=[AccountResponse.model_validate(a) for a in result.items],
        total_elements=result.total,
        total_pages=result.total_pages,
        page=result.page,
        size=result.size,
    ))


@router.get("/stats")
def get_account_stats(
    principal: Principal = Depends(can_view),
    system: BankingSystem = Depends(get_banking_system),
):
    """Portfolio counts per status and active balance total"""
    return ok(AccountStatsResponse.model_validate(system.account_manager.get_stats()))


@router.get("/stats/branch/{branch_id}")
def get_branch_account_stats(
    branch_id: str,
    principal: Principal = Depends(can_view),
    system: BankingSystem = Depends(get_banking_system),
):
    return ok(BranchAccountStatsResponse.model_validate(
        system.account_manager.get_branch_stats(branch_id)))


@router.get("/number/{account_number}")
def get_account_by_number(
    account_number: str,
    principal: Principal = Depends(can_view),
    system: BankingSystem = Depends(get_banking_system),
):
    account = system.account_manager.get_account_by_number(account_number)
    return ok(AccountResponse.model_validate(account))


@router.get("/customer/{customer_id}")
def get_customer_accounts(
    customer_id: str,
    principal: Principal = Depends(can_view),
    system: BankingSystem = Depends(get_banking_system),
):
    accounts = system.account_manager.get_customer_accounts(customer_id)
    return ok([AccountResponse.model_validate(a) for a in accounts])


@router.get("/branch/{branch_id}")
def get_branch_accounts(
    branch_id: str,
    principal: Principal = Depends(can_view),
    system: BankingSystem = Depends(get_banking_system),
):
    accounts = system.account_manager.get_branch_accounts(branch_id)
    return ok([AccountResponse.model_validate(a) for a in accounts])


@router.get("/{account_id}")
def get_account(
    account_id: str,
    principal: Principal = Depends(can_view),
    system: BankingSystem = Depends(get_banking_system),
):
    """Get account details"""
    return ok(AccountResponse.model_validate(system.account_manager.get_account(account_id)))


@router.post("/open", status_code=status.HTTP_201_CREATED)
def open_account(
    request: OpenAccountRequest,
    principal: Principal = Depends(can_create),
    system: BankingSystem = Depends(get_banking_system),
):
    """Open a new account"""
    account = system.account_manager.open_account(
        created_by=principal.user_id,
        **request.model_dump(),
    )
    return ok(AccountResponse.model_validate(account), "Account opened successfully / 账户开立成功")


@router.put("/{account_id}")
def update_account(
    account_id: str,
    request: UpdateAccountRequest,
    principal: Principal = Depends(can_update),
    system: BankingSystem = Depends(get_banking_system),
):
    account = system.account_manager.update_account(
        account_id, account_name=request.account_name, remarks=request.remarks,
        updated_by=principal.user_id,
    )
    return ok(AccountResponse.model_validate(account), "Account updated successfully / 账户更新成功")


@router.put("/{account_id}/status")
def update_account_status(
    account_id: str,
    status: AccountStatus,
    reason: Optional[str] = None,
    principal: Principal = Depends(can_update),
    system: BankingSystem = Depends(get_banking_system),
):
    """Move an account to another status"""
    account = system.account_manager.update_status(
        account_id, status, reason=reason, updated_by=principal.user_id
    )
    return ok(AccountResponse.model_validate(account), "Account status updated / 账户状态已更新")


@router.post("/{account_id}/freeze")
def freeze_account(
    account_id: str,
    reason: str = Query(..., min_length=1),
    principal: Principal = Depends(can_update),
    system: BankingSystem = Depends(get_banking_system),
):
    account = system.account_manager.freeze(account_id, reason, frozen_by=principal.user_id)
    return ok(AccountResponse.model_validate(account), "Account frozen / 账户已冻结")


@router.post("/{account_id}/unfreeze")
def unfreeze_account(
    account_id: str,
    principal: Principal = Depends(can_update),
    system: BankingSystem = Depends(get_banking_system),
):
    account = system.account_manager.unfreeze(account_id, unfrozen_by=principal.user_id)
    return ok(AccountResponse.model_validate(account), "Account unfrozen / 账户已解冻")


@router.post("/{account_id}/close")
def close_account(
    account_id: str,
    reason: Optional[str] = None,
    principal: Principal = Depends(can_close),
    system: BankingSystem = Depends(get_banking_system),
):
    account = system.account_manager.close(account_id, reason=reason, closed_by=principal.user_id)
    return ok(AccountResponse.model_validate(account), "Account closed / 账户已关闭")
