"""
Role and permission administration endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .deps import BankingSystem, get_banking_system, require_authority
from .schemas import (
    CreateRoleRequest,
    PermissionResponse,
    RoleResponse,
    UpdateRoleRequest,
    ok,
)
from ..rbac import Authority, Principal, Role


router = APIRouter()

can_view_roles = require_authority(Authority.ADMIN_ROLE_VIEW)
can_manage_roles = require_authority(Authority.ADMIN_ROLE_MANAGE)


def _role_response(role: Role) -> RoleResponse:
    response = RoleResponse.model_validate(role)
    response.permission_codes = sorted(role.permission_codes)
    return response


@router.get("/permissions")
def list_permissions(
    module: Optional[str] = None,
    principal: Principal = Depends(can_view_roles),
    system: BankingSystem = Depends(get_banking_system),
):
    """List registered permissions"""
    permissions = system.rbac_manager.list_permissions(module)
    return ok([PermissionResponse.model_validate(p) for p in permissions])


@router.get("/roles")
def list_roles(
    principal: Principal = Depends(can_view_roles),
    system: BankingSystem = Depends(get_banking_system),
):
    return ok([_role_response(r) for r in system.rbac_manager.list_roles()])


@router.get("/roles/{role_id}")
def get_role(
    role_id: str,
    principal: Principal = Depends(can_view_roles),
    system: BankingSystem = Depends(get_banking_system),
):
    return ok(_role_response(system.rbac_manager.get_role(role_id)))


@router.post("/roles", status_code=status.HTTP_201_CREATED)
def create_role(
    request: CreateRoleRequest,
    principal: Principal = Depends(can_manage_roles),
    system: BankingSystem = Depends(get_banking_system),
):
    """Create a role from registered permission codes"""
    role = system.rbac_manager.create_role(
        role_code=request.role_code,
        role_name=request.role_name,
        permission_codes=request.permission_codes,
        role_name_cn=request.role_name_cn,
        description=request.description,
        created_by=principal.user_id,
    )
    return ok(_role_response(role), "Role created successfully / 角色创建成功")


@router.put("/roles/{role_id}")
def update_role(
    role_id: str,
    request: UpdateRoleRequest,
    principal: Principal = Depends(can_manage_roles),
    system: BankingSystem = Depends(get_banking_system),
):
    role = system.rbac_manager.update_role(
        role_id,
        updated_by=principal.user_id,
        **request.model_dump(),
    )
    return ok(_role_response(role), "Role updated successfully / 角色更新成功")


@router.delete("/roles/{role_id}")
def delete_role(
    role_id: str,
    principal: Principal = Depends(can_manage_roles),
    system: BankingSystem = Depends(get_banking_system),
):
    system.rbac_manager.delete_role(role_id, deleted_by=principal.user_id)
    return ok(None, "Role deleted successfully / 角色删除成功")
