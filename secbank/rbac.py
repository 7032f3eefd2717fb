"""
Role-Based Access Control (RBAC) Module

Users, roles and permissions, and the resolver that flattens a user's roles
into the authority set carried by a Principal.
"""

import hashlib
import hmac
import logging
import re
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from .audit import AuditAction, AuditEmitter, AuditModule
from .exceptions import (
    AccountDisabledError,
    InvalidCredentialsError,
    NotFoundError,
    ProtectedRoleError,
    ValidationError,
)
from .storage import LockStripes, StorageInterface, StorageRecord


logger = logging.getLogger(__name__)

ROLE_PREFIX = "ROLE_"
ROLE_CODE_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")

# Salt for the throwaway hash computed when a login names no known user
_UNKNOWN_USER_SALT = secrets.token_hex(16)


class Authority:
    """Permission codes checked by the API"""
    CASA_ACCOUNT_VIEW = "CASA_ACCOUNT_VIEW"
    CASA_ACCOUNT_CREATE = "CASA_ACCOUNT_CREATE"
    CASA_ACCOUNT_UPDATE = "CASA_ACCOUNT_UPDATE"
    CASA_ACCOUNT_CLOSE = "CASA_ACCOUNT_CLOSE"
    CUSTOMER_VIEW = "CUSTOMER_VIEW"
    CUSTOMER_CREATE = "CUSTOMER_CREATE"
    CUSTOMER_UPDATE = "CUSTOMER_UPDATE"
    ADMIN_ROLE_VIEW = "ADMIN_ROLE_VIEW"
    ADMIN_ROLE_MANAGE = "ADMIN_ROLE_MANAGE"
    ADMIN_USER_MANAGE = "ADMIN_USER_MANAGE"
    AUDIT_LOG_VIEW = "AUDIT_LOG_VIEW"


class UserStatus(Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    LOCKED = "LOCKED"


class RoleStatus(Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


@dataclass
class PermissionDef(StorageRecord):
    """Permission reference data"""
    permission_code: str
    module: str
    permission_name: str
    permission_name_cn: Optional[str] = None
    description: Optional[str] = None


@dataclass
class Role(StorageRecord):
    """Named bundle of permission codes"""
    role_code: str
    role_name: str
    role_name_cn: Optional[str] = None
    description: Optional[str] = None
    is_system_role: bool = False
    status: RoleStatus = RoleStatus.ACTIVE
    permission_codes: Set[str] = field(default_factory=set)


@dataclass
class User(StorageRecord):
    """System user with credentials and role assignments"""
    username: str
    email: str
    full_name: str
    password_hash: str
    password_salt: str
    branch_id: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    failed_login_attempts: int = 0
    last_login_at: Optional[datetime] = None
    last_login_ip: Optional[str] = None
    password_changed_at: Optional[datetime] = None
    must_change_password: bool = False
    role_ids: List[str] = field(default_factory=list)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @property
    def is_account_non_locked(self) -> bool:
        return self.status != UserStatus.LOCKED

    @property
    def is_enabled(self) -> bool:
        return self.status == UserStatus.ACTIVE


@dataclass(frozen=True)
class Principal:
    """Immutable snapshot of an authenticated user and its authorities"""
    user_id: str
    username: str
    email: str
    full_name: str
    branch_id: Optional[str]
    status: UserStatus
    must_change_password: bool
    authorities: FrozenSet[str] = frozenset()

    def has_authority(self, authority: str) -> bool:
        return authority in self.authorities

    def has_any_authority(self, *authorities: str) -> bool:
        return any(a in self.authorities for a in authorities)

    @property
    def role_codes(self) -> List[str]:
        return sorted(a[len(ROLE_PREFIX):] for a in self.authorities if a.startswith(ROLE_PREFIX))


def resolve_authorities(roles: Iterable[Role]) -> FrozenSet[str]:
    """
    Flatten roles into an authority set: every role's permission codes plus
    a ROLE_<code> marker per role.
    """
    authorities: Set[str] = set()
    for role in roles:
        authorities.update(role.permission_codes)
        authorities.add(ROLE_PREFIX + role.role_code)
    return frozenset(authorities)


@dataclass
class PasswordPolicy:
    """Password policy configuration"""
    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_digit: bool = True
    require_special: bool = True


class RBACManager:
    """Role-Based Access Control manager"""

    def __init__(self, storage: StorageInterface, audit: Optional[AuditEmitter] = None,
                 password_policy: Optional[PasswordPolicy] = None):
        self.storage = storage
        self.audit = audit
        self.password_policy = password_policy or PasswordPolicy()
        self._user_lock = LockStripes()

    # Permissions

    def register_permission(self, permission_code: str, module: str, permission_name: str,
                            permission_name_cn: Optional[str] = None,
                            description: Optional[str] = None) -> PermissionDef:
        """Register a permission code"""
        now = datetime.now(timezone.utc)
        permission = PermissionDef(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            permission_code=permission_code,
            module=module,
            permission_name=permission_name,
            permission_name_cn=permission_name_cn,
            description=description,
        )
        self.storage.save_unique('permissions', permission.id, permission.to_dict(), ['permission_code'])
        return permission

    def list_permissions(self, module: Optional[str] = None) -> List[PermissionDef]:
        """List permissions, optionally for one module"""
        filters = {'module': module} if module else {}
        permissions = [PermissionDef.from_dict(d) for d in self.storage.find('permissions', filters)]
        return sorted(permissions, key=lambda p: (p.module, p.permission_code))

    def _known_permission_codes(self) -> Set[str]:
        return {d['permission_code'] for d in self.storage.load_all('permissions')}

    def _check_permission_codes(self, codes: Iterable[str]) -> Set[str]:
        codes = set(codes)
        unknown = codes - self._known_permission_codes()
        if unknown:
            raise ValidationError(
                f"Unknown permission codes: {', '.join(sorted(unknown))}",
                errors={'permissionCodes': 'unknown permission code'},
            )
        return codes

    # Role Management

    def create_role(self, role_code: str, role_name: str,
                    permission_codes: Optional[Iterable[str]] = None,
                    role_name_cn: Optional[str] = None,
                    description: Optional[str] = None,
                    is_system_role: bool = False,
                    created_by: Optional[str] = None) -> Role:
        """Create a new role"""
        self._validate_role_code(role_code)
        now = datetime.now(timezone.utc)

        role = Role(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            role_code=role_code,
            role_name=role_name,
            role_name_cn=role_name_cn,
            description=description,
            is_system_role=is_system_role,
            permission_codes=self._check_permission_codes(permission_codes or ()),
        )
        self.storage.save_unique('roles', role.id, role.to_dict(), ['role_code'])

        self._audit(created_by, AuditAction.CREATE, 'Role', role.id, new_value=role,
                    description=f"Role {role_code} created")
        logger.info("Role created: %s", role_code)
        return role

    def get_role(self, role_id: str) -> Role:
        """Get role by ID"""
        data = self.storage.load('roles', role_id)
        if not data:
            raise NotFoundError("Role", "id", role_id)
        return self._role_from_dict(data)

    def find_role_by_code(self, role_code: str) -> Optional[Role]:
        matches = self.storage.find('roles', {'role_code': role_code})
        return self._role_from_dict(matches[0]) if matches else None

    def list_roles(self) -> List[Role]:
        roles = [self._role_from_dict(d) for d in self.storage.load_all('roles')]
        return sorted(roles, key=lambda r: r.role_code)

    def update_role(self, role_id: str, role_code: Optional[str] = None,
                    role_name: Optional[str] = None,
                    role_name_cn: Optional[str] = None,
                    description: Optional[str] = None,
                    status: Optional[RoleStatus] = None,
                    permission_codes: Optional[Iterable[str]] = None,
                    updated_by: Optional[str] = None) -> Role:
        """Update role properties; system roles keep their code"""
        role = self.get_role(role_id)
        old_snapshot = role.to_dict()

        if role_code is not None and role_code != role.role_code:
            if role.is_system_role:
                raise ProtectedRoleError(
                    "Cannot change code of system role",
                    message_cn="不能修改系统角色代码",
                )
            self._validate_role_code(role_code)
            role.role_code = role_code
        if role_name is not None:
            role.role_name = role_name
        if role_name_cn is not None:
            role.role_name_cn = role_name_cn
        if description is not None:
            role.description = description
        if status is not None:
            role.status = status
        if permission_codes is not None:
            role.permission_codes = self._check_permission_codes(permission_codes)

        role.updated_at = datetime.now(timezone.utc)
        self.storage.save_unique('roles', role.id, role.to_dict(), ['role_code'])

        self._audit(updated_by, AuditAction.UPDATE, 'Role', role.id,
                    old_value=old_snapshot, new_value=role,
                    description=f"Role {role.role_code} updated")
        return role

    def delete_role(self, role_id: str, deleted_by: Optional[str] = None) -> None:
        """Delete a role (if not system role and no users assigned)"""
        role = self.get_role(role_id)
        if role.is_system_role:
            raise ProtectedRoleError("Cannot delete system role", message_cn="不能删除系统角色")

        for user_data in self.storage.load_all('users'):
            if role_id in user_data.get('role_ids', []):
                raise ValidationError(
                    "Cannot delete role assigned to users",
                    error_code="ROLE_IN_USE",
                    message_cn="不能删除已分配给用户的角色",
                )

        self.storage.delete('roles', role_id)
        self._audit(deleted_by, AuditAction.DELETE, 'Role', role_id, old_value=role,
                    description=f"Role {role.role_code} deleted")

    # User Management

    def create_user(self, username: str, email: str, password: str, full_name: str,
                    branch_id: Optional[str] = None,
                    role_ids: Optional[List[str]] = None,
                    must_change_password: bool = False,
                    created_by: Optional[str] = None) -> User:
        """Create a new user"""
        self._enforce_password_policy(password)
        for role_id in role_ids or []:
            self.get_role(role_id)

        now = datetime.now(timezone.utc)
        salt = self._generate_salt()
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            email=email,
            full_name=full_name,
            password_hash=self._hash_password(password, salt),
            password_salt=salt,
            branch_id=branch_id,
            password_changed_at=now,
            must_change_password=must_change_password,
            role_ids=list(role_ids or []),
            created_by=created_by,
        )
        self.storage.save_unique('users', user.id, user.to_dict(), ['username', 'email'])

        self._audit(created_by, AuditAction.CREATE, 'User', user.id,
                    new_value=self._user_snapshot(user),
                    description=f"User {username} created")
        logger.info("User created: %s", username)
        return user

    def get_user(self, user_id: str) -> User:
        """Get user by ID"""
        data = self.storage.load('users', user_id)
        if not data:
            raise NotFoundError("User", "id", user_id)
        return self._user_from_dict(data)

    def find_user_by_username(self, username: str) -> Optional[User]:
        matches = self.storage.find('users', {'username': username})
        return self._user_from_dict(matches[0]) if matches else None

    def list_users(self, status: Optional[UserStatus] = None) -> List[User]:
        filters = {'status': status.value} if status else {}
        users = [self._user_from_dict(d) for d in self.storage.find('users', filters)]
        return sorted(users, key=lambda u: u.username)

    def username_for(self, user_id: str) -> Optional[str]:
        """Username lookup used when persisting audit records"""
        data = self.storage.load('users', user_id)
        return data.get('username') if data else None

    def assign_roles(self, user_id: str, role_ids: Iterable[str],
                     assigned_by: Optional[str] = None) -> User:
        """Replace the user's role assignments"""
        role_ids = list(dict.fromkeys(role_ids))
        for role_id in role_ids:
            self.get_role(role_id)

        with self._user_lock(user_id):
            user = self.get_user(user_id)
            old_role_ids = list(user.role_ids)
            user.role_ids = role_ids
            user.updated_by = assigned_by
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)

        self._audit(assigned_by, AuditAction.ASSIGN_ROLES, 'User', user.id,
                    old_value={'roleIds': old_role_ids}, new_value={'roleIds': role_ids},
                    description=f"Roles assigned to {user.username}")
        return user

    def set_user_status(self, user_id: str, status: UserStatus,
                        updated_by: Optional[str] = None) -> User:
        """Activate, deactivate or lock a user"""
        with self._user_lock(user_id):
            user = self.get_user(user_id)
            old_status = user.status
            user.status = status
            if status == UserStatus.ACTIVE:
                user.failed_login_attempts = 0
            user.updated_by = updated_by
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)

        self._audit(updated_by, AuditAction.UPDATE_STATUS, 'User', user.id,
                    old_value={'status': old_status.value}, new_value={'status': status.value},
                    description=f"User {user.username} status changed to {status.value}")
        return user

    # Login bookkeeping

    def record_login_failure(self, user_id: str, max_attempts: int) -> User:
        """Count a failed password check; lock the user at ``max_attempts``"""
        with self._user_lock(user_id):
            user = self.get_user(user_id)
            user.failed_login_attempts += 1
            if max_attempts and user.failed_login_attempts >= max_attempts \
                    and user.status == UserStatus.ACTIVE:
                user.status = UserStatus.LOCKED
                logger.warning("User %s locked after %d failed login attempts",
                               user.username, user.failed_login_attempts)
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)
        return user

    def record_login_success(self, user_id: str, client_ip: Optional[str],
                             at: Optional[datetime] = None) -> User:
        """
        Reset the failure counter and stamp the login.

        Raises:
            AccountDisabledError: the user was locked or deactivated after
                the password check started
        """
        with self._user_lock(user_id):
            user = self.get_user(user_id)
            if not user.is_account_non_locked:
                raise AccountDisabledError("User account is locked")
            if not user.is_enabled:
                raise AccountDisabledError("User account is disabled")
            user.failed_login_attempts = 0
            user.last_login_at = at or datetime.now(timezone.utc)
            user.last_login_ip = client_ip
            user.updated_at = user.last_login_at
            self._save_user(user)
        return user

    # Passwords

    def verify_password(self, user: User, password: str) -> bool:
        """Verify password against stored hash"""
        if not user.password_hash or not user.password_salt:
            return False
        candidate = self._hash_password(password, user.password_salt)
        return hmac.compare_digest(candidate, user.password_hash)

    def reject_unknown_user(self, password: str) -> bool:
        """Spend the same hashing work as a real check, then fail"""
        self._hash_password(password, _UNKNOWN_USER_SALT)
        return False

    def change_password(self, user_id: str, old_password: str, new_password: str) -> User:
        """Change user password"""
        with self._user_lock(user_id):
            user = self.get_user(user_id)
            if not self.verify_password(user, old_password):
                raise InvalidCredentialsError("Current password is incorrect")
            self._enforce_password_policy(new_password)
            if self.verify_password(user, new_password):
                raise ValidationError("New password must differ from the current password",
                                      errors={'newPassword': 'must differ from current password'})

            self._set_user_password(user, new_password)
            user.must_change_password = False
            user.updated_by = user_id
            self._save_user(user)

        self._audit(user_id, AuditAction.CHANGE_PASSWORD, 'User', user.id,
                    description="Password changed")
        return user

    def reset_password(self, user_id: str, admin_user_id: Optional[str] = None) -> str:
        """Reset user password (admin function) - returns temporary password"""
        temp_password = self._generate_temp_password()
        with self._user_lock(user_id):
            user = self.get_user(user_id)
            self._set_user_password(user, temp_password)
            user.must_change_password = True
            user.updated_by = admin_user_id
            self._save_user(user)

        self._audit(admin_user_id, AuditAction.RESET_PASSWORD, 'User', user.id,
                    description=f"Password reset for {user.username}")
        return temp_password

    def validate_password(self, password: str) -> Tuple[bool, List[str]]:
        """Validate password against policy"""
        violations = []
        policy = self.password_policy

        if len(password) < policy.min_length:
            violations.append(f"Minimum length {policy.min_length}")
        if policy.require_uppercase and not any(c.isupper() for c in password):
            violations.append("Must contain uppercase letter")
        if policy.require_lowercase and not any(c.islower() for c in password):
            violations.append("Must contain lowercase letter")
        if policy.require_digit and not any(c.isdigit() for c in password):
            violations.append("Must contain digit")
        if policy.require_special:
            special_chars = "!@#$%^&*()_+-=[]{}|;:,.<>?"
            if not any(c in special_chars for c in password):
                violations.append("Must contain special character")

        return len(violations) == 0, violations

    # Authorization

    def load_principal(self, user_id: str) -> Principal:
        """Build a fresh Principal from the stored user and roles"""
        return self._principal_for(self.get_user(user_id))

    def load_principal_by_username(self, username: str) -> Principal:
        user = self.find_user_by_username(username)
        if not user:
            raise NotFoundError("User", "username", username)
        return self._principal_for(user)

    def _principal_for(self, user: User) -> Principal:
        roles = []
        for role_id in user.role_ids:
            data = self.storage.load('roles', role_id)
            if data:
                roles.append(self._role_from_dict(data))
        return Principal(
            user_id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            branch_id=user.branch_id,
            status=user.status,
            must_change_password=user.must_change_password,
            authorities=resolve_authorities(roles),
        )

    # Private helper methods

    def _validate_role_code(self, role_code: str) -> None:
        if not ROLE_CODE_PATTERN.match(role_code or ""):
            raise ValidationError(
                "Role code must start with uppercase letter and contain only uppercase letters, numbers, and underscores",
                errors={'roleCode': 'invalid format'},
            )

    def _enforce_password_policy(self, password: str) -> None:
        is_valid, violations = self.validate_password(password)
        if not is_valid:
            raise ValidationError(
                f"Password policy violations: {', '.join(violations)}",
                errors={'password': '; '.join(violations)},
            )

    def _save_user(self, user: User) -> None:
        self.storage.save_unique('users', user.id, user.to_dict(), ['username', 'email'])

    def _role_from_dict(self, data: Dict[str, Any]) -> Role:
        data['permission_codes'] = set(data.get('permission_codes', []))
        data['status'] = RoleStatus(data.get('status', RoleStatus.ACTIVE.value))
        return Role.from_dict(data)

    def _user_from_dict(self, data: Dict[str, Any]) -> User:
        data['status'] = UserStatus(data['status'])
        for key in ('last_login_at', 'password_changed_at'):
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        return User.from_dict(data)

    @staticmethod
    def _user_snapshot(user: User) -> Dict[str, Any]:
        snapshot = user.to_dict()
        snapshot.pop('password_hash', None)
        snapshot.pop('password_salt', None)
        return snapshot

    def _audit(self, user_id: Optional[str], action: str, entity_type: str, entity_id: str,
               old_value: Any = None, new_value: Any = None,
               description: Optional[str] = None) -> None:
        if self.audit:
            self.audit.log_action(user_id, action, AuditModule.ADMINISTRATION, entity_type, entity_id,
                                  old_value=old_value, new_value=new_value, description=description)

    def _generate_salt(self) -> str:
        """Generate random salt for password hashing"""
        return secrets.token_hex(16)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _set_user_password(self, user: User, password: str) -> None:
        user.password_salt = self._generate_salt()
        user.password_hash = self._hash_password(password, user.password_salt)
        user.password_changed_at = datetime.now(timezone.utc)
        user.updated_at = user.password_changed_at

    def _generate_temp_password(self) -> str:
        """Generate temporary password that satisfies the policy"""
        return secrets.token_urlsafe(12) + "aA1!"
