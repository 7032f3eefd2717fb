"""
User administration and self-service password endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .deps import BankingSystem, get_banking_system, get_current_principal, require_authority
from .schemas import (
    AssignRolesRequest,
    ChangePasswordRequest,
    PasswordResetResponse,
    UserResponse,
    ok,
)
from ..rbac import Authority, Principal, UserStatus


router = APIRouter()

can_manage_users = require_authority(Authority.ADMIN_USER_MANAGE)


@router.get("")
def list_users(
    status: Optional[UserStatus] = None,
    principal: Principal = Depends(can_manage_users),
    system: BankingSystem = Depends(get_banking_system),
):
    return ok([UserResponse.model_validate(u) for u in system.rbac_manager.list_users(status)])


@router.post("/change-password")
def change_password(
    request: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    system: BankingSystem = Depends(get_banking_system),
):
    """Change the caller's own password; clears the must-change flag"""
    user = system.rbac_manager.change_password(
        principal.user_id, request.old_password, request.new_password)
    return ok(UserResponse.model_validate(user), "Password changed successfully / 密码修改成功")


@router.post("/{user_id}/reset-password")
def reset_password(
    user_id: str,
    principal: Principal = Depends(can_manage_users),
    system: BankingSystem = Depends(get_banking_system),
):
    """Issue a temporary password the user must change at next login"""
    temp_password = system.rbac_manager.reset_password(user_id, admin_user_id=principal.user_id)
    return ok(PasswordResetResponse(user_id=user_id, temporary_password=temp_password),
              "Password reset successfully / 密码重置成功")


@router.put("/{user_id}/status")
def update_user_status(
    user_id: str,
    status: UserStatus = Query(...),
    principal: Principal = Depends(can_manage_users),
    system: BankingSystem = Depends(get_banking_system),
):
    """Activate, deactivate or lock a user; reactivation clears failed logins"""
    user = system.rbac_manager.set_user_status(user_id, status, updated_by=principal.user_id)
    return ok(UserResponse.model_validate(user), "User status updated / 用户状态已更新")


@router.put("/{user_id}/roles")
def assign_user_roles(
    user_id: str,
    request: AssignRolesRequest,
    principal: Principal = Depends(can_manage_users),
    system: BankingSystem = Depends(get_banking_system),
):
    """Replace the roles assigned to a user"""
    user = system.rbac_manager.assign_roles(user_id, request.role_ids, assigned_by=principal.user_id)
    return ok(UserResponse.model_validate(user), "Roles assigned successfully / 角色分配成功")
