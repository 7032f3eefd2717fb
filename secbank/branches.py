"""
Branch Module

Branch reference data. The branch code feeds the account number prefix.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from .audit import AuditAction, AuditEmitter, AuditModule
from .exceptions import NotFoundError
from .storage import StorageInterface, StorageRecord


@dataclass
class Branch(StorageRecord):
    branch_code: str
    branch_name: str
    branch_name_cn: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    manager_name: Optional[str] = None
    is_head_office: bool = False
    status: str = "ACTIVE"
    created_by: Optional[str] = None


class BranchManager:
    """Branch registry"""

    def __init__(self, storage: StorageInterface, audit: Optional[AuditEmitter] = None):
        self.storage = storage
        self.audit = audit
        self.table_name = "branches"

    def create_branch(self, branch_code: str, branch_name: str,
                      created_by: Optional[str] = None, **details) -> Branch:
        """
        Create a branch

        Raises:
            ConflictError: branch code already exists
        """
        now = datetime.now(timezone.utc)
        branch = Branch(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            branch_code=branch_code,
            branch_name=branch_name,
            created_by=created_by,
            **details,
        )
        self.storage.save_unique(self.table_name, branch.id, branch.to_dict(), ['branch_code'])

        if self.audit:
            self.audit.log_action(created_by, AuditAction.CREATE, AuditModule.ADMINISTRATION,
                                  "Branch", branch.id, new_value=branch,
                                  description=f"Branch {branch_code} created")
        return branch

    def get_branch(self, branch_id: str) -> Branch:
        data = self.storage.load(self.table_name, branch_id)
        if not data:
            raise NotFoundError("Branch", "id", branch_id)
        return Branch.from_dict(data)

    def find_branch_by_code(self, branch_code: str) -> Optional[Branch]:
        matches = self.storage.find(self.table_name, {'branch_code': branch_code})
        return Branch.from_dict(matches[0]) if matches else None

    def list_branches(self) -> List[Branch]:
        branches = [Branch.from_dict(d) for d in self.storage.load_all(self.table_name)]
        return sorted(branches, key=lambda b: b.branch_code)
