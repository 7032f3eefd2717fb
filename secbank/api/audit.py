"""
Audit log query endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from .deps import BankingSystem, get_banking_system, require_authority
from .schemas import AuditIntegrityResponse, AuditLogResponse, ok
from ..rbac import Authority, Principal


router = APIRouter()

can_view_audit = require_authority(Authority.AUDIT_LOG_VIEW)


@router.get("")
def search_audit_logs(
    user_id: Optional[str] = Query(None, alias="userId"),
    module: Optional[str] = None,
    action: Optional[str] = None,
    start_time: Optional[datetime] = Query(None, alias="startTime"),
    end_time: Optional[datetime] = Query(None, alias="endTime"),
    limit: int = Query(100, ge=1, le=1000),
    principal: Principal = Depends(can_view_audit),
    system: BankingSystem = Depends(get_banking_system),
):
    """Search audit records, newest first"""
    records = system.audit_trail.search(
        user_id=user_id, module=module, action=action,
        start_time=start_time, end_time=end_time, limit=limit,
    )
    return ok([AuditLogResponse.model_validate(r) for r in records])


@router.get("/actions")
def list_audit_actions(
    principal: Principal = Depends(can_view_audit),
    system: BankingSystem = Depends(get_banking_system),
):
    return ok(system.audit_trail.list_actions())


@router.get("/modules")
def list_audit_modules(
    principal: Principal = Depends(can_view_audit),
    system: BankingSystem = Depends(get_banking_system),
):
    return ok(system.audit_trail.list_modules())


@router.get("/entity/{entity_type}/{entity_id}")
def get_entity_history(
    entity_type: str,
    entity_id: str,
    principal: Principal = Depends(can_view_audit),
    system: BankingSystem = Depends(get_banking_system),
):
    """Full history of one entity, oldest first"""
    records = system.audit_trail.get_records_for_entity(entity_type, entity_id)
    return ok([AuditLogResponse.model_validate(r) for r in records])


@router.get("/integrity")
def verify_audit_integrity(
    principal: Principal = Depends(can_view_audit),
    system: BankingSystem = Depends(get_banking_system),
):
    """Re-hash the chain and report tampered or missing records"""
    return ok(AuditIntegrityResponse.model_validate(system.audit_trail.verify_integrity()))
