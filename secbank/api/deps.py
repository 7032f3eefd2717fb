"""
Authentication and authorization dependencies
"""

import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..accounts import AccountManager
from ..audit import AuditEmitter, AuditTrail
from ..auth import AuthenticationService
from ..branches import BranchManager
from ..config import SecbankConfig, get_config
from ..customers import CustomerManager
from ..exceptions import AuthenticationError
from ..numbering import NumberSequencer
from ..products import AccountTypeManager
from ..rbac import PasswordPolicy, Principal, RBACManager
from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface
from ..tokens import TokenService, utc_now


class BankingSystem:
    """SecBank backend with all components initialized"""

    def __init__(self, config: Optional[SecbankConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config or get_config()
        clock = clock or utc_now

        # Initialize storage
        if storage is not None:
            self.storage = storage
        elif self.config.use_sqlite:
            self.storage = SQLiteStorage(self.config.database_path)
        else:
            self.storage = InMemoryStorage()

        # Audit side channel
        self.audit_trail = AuditTrail(self.storage)
        self.audit = AuditEmitter(
            self.audit_trail,
            max_queue_size=self.config.audit_queue_size,
            enabled=self.config.enable_audit_logging,
        )

        # Security
        self.rbac_manager = RBACManager(
            self.storage, self.audit,
            password_policy=PasswordPolicy(min_length=self.config.password_min_length),
        )
        self.audit.username_resolver = self.rbac_manager.username_for
        self.token_service = TokenService(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            access_ttl=timedelta(seconds=self.config.access_token_ttl_seconds),
            refresh_ttl=timedelta(seconds=self.config.refresh_token_ttl_seconds),
            clock=clock,
        )
        self.auth_service = AuthenticationService(
            self.rbac_manager, self.token_service, self.audit,
            max_failed_attempts=self.config.max_failed_login_attempts,
        )

        # Banking components
        self.sequencer = NumberSequencer(self.storage, max_retries=self.config.number_generation_retries)
        self.branch_manager = BranchManager(self.storage, self.audit)
        self.account_type_manager = AccountTypeManager(self.storage, self.audit)
        self.customer_manager = CustomerManager(
            self.storage, self.sequencer, self.branch_manager, self.audit, clock=clock
        )
        self.account_manager = AccountManager(
            self.storage, self.customer_manager, self.account_type_manager,
            self.branch_manager, self.sequencer, self.audit, clock=clock,
            default_currency=self.config.default_currency,
        )

        self.audit.start()

    def shutdown(self) -> None:
        """Drain the audit queue and release storage"""
        self.audit.stop()
        self.storage.close()


_banking_system: Optional[BankingSystem] = None
_system_lock = threading.Lock()


# Dependency to get banking system
def get_banking_system() -> BankingSystem:
    global _banking_system
    with _system_lock:
        if _banking_system is None:
            _banking_system = BankingSystem()
        return _banking_system


bearer_scheme = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    system: BankingSystem = Depends(get_banking_system),
) -> Principal:
    """Resolve the caller from the bearer token; authorities are re-read per request"""
    if credentials is None:
        raise AuthenticationError("Authentication required")
    return system.auth_service.authenticate_request(credentials.credentials)


def require_authority(*authorities: str):
    """Dependency factory: the caller must hold one of ``authorities``"""

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        AuthenticationService.authorize(principal, *authorities)
        return principal

    return dependency


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, else the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
