"""
Authentication Service

Login, token refresh, logout and per-request authentication on top of the
RBAC manager and the JWT token service.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .audit import AuditAction, AuditEmitter, AuditModule
from .exceptions import (
    AccountDisabledError,
    ForbiddenError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
)
from .logging_config import log_action
from .rbac import Principal, RBACManager, UserStatus
from .tokens import TokenService


logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    access_token: str
    refresh_token: str
    expires_in: int
    user_id: str
    username: str
    full_name: str
    email: str
    branch_id: Optional[str]
    must_change_password: bool
    token_type: str = "Bearer"


@dataclass
class TokenRefreshResult:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


class AuthenticationService:
    """Credential checks and token lifecycle"""

    def __init__(self, rbac: RBACManager, tokens: TokenService,
                 audit: Optional[AuditEmitter] = None,
                 max_failed_attempts: int = 5):
        self.rbac = rbac
        self.tokens = tokens
        self.audit = audit
        self.max_failed_attempts = max_failed_attempts

    def login(self, username: str, password: str, client_ip: Optional[str] = None,
              user_agent: Optional[str] = None) -> LoginResult:
        """
        Authenticate a user by username and password

        Raises:
            InvalidCredentialsError: unknown user or wrong password
            AccountDisabledError: user is locked or inactive
        """
        user = self.rbac.find_user_by_username(username)
        if not user:
            self.rbac.reject_unknown_user(password)
            log_action(logger, "warning", "Login failed: unknown user",
                       action="login_failed", resource="auth", extra={"username": username})
            raise InvalidCredentialsError()

        if not user.is_account_non_locked:
            log_action(logger, "warning", "Login rejected: user locked",
                       user_id=user.id, action="login_failed", resource="auth")
            raise AccountDisabledError("User account is locked")
        if not user.is_enabled:
            log_action(logger, "warning", "Login rejected: user inactive",
                       user_id=user.id, action="login_failed", resource="auth")
            raise AccountDisabledError("User account is disabled")

        if not self.rbac.verify_password(user, password):
            user = self.rbac.record_login_failure(user.id, self.max_failed_attempts)
            log_action(logger, "warning", "Login failed: bad password",
                       user_id=user.id, action="login_failed", resource="auth",
                       extra={"failed_attempts": user.failed_login_attempts})
            raise InvalidCredentialsError()

        self.rbac.record_login_success(user.id, client_ip, at=self.tokens.clock())
        principal = self.rbac.load_principal_by_username(username)

        access_token = self.tokens.issue_access_token(principal)
        refresh_token = self.tokens.issue_refresh_token(principal)

        if self.audit:
            self.audit.log_action(
                principal.user_id, AuditAction.LOGIN, AuditModule.AUTHENTICATION,
                "User", principal.user_id,
                description=f"User {principal.username} logged in",
                ip_address=client_ip, user_agent=user_agent,
            )
        log_action(logger, "info", "User authenticated successfully",
                   user_id=principal.user_id, action="login", resource="auth")

        return LoginResult(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.tokens.access_ttl_seconds,
            user_id=principal.user_id,
            username=principal.username,
            full_name=principal.full_name,
            email=principal.email,
            branch_id=principal.branch_id,
            must_change_password=principal.must_change_password,
        )

    def refresh(self, refresh_token: str) -> TokenRefreshResult:
        """Issue a new access token; the refresh token is returned unchanged"""
        if not self.tokens.validate(refresh_token) or not self.tokens.is_refresh_token(refresh_token):
            raise InvalidTokenError("Invalid refresh token")

        principal = self._load_active_principal(self.tokens.subject_user_id(refresh_token))
        return TokenRefreshResult(
            access_token=self.tokens.issue_access_token(principal),
            refresh_token=refresh_token,
            expires_in=self.tokens.access_ttl_seconds,
        )

    def logout(self, principal: Optional[Principal], client_ip: Optional[str] = None,
               user_agent: Optional[str] = None) -> None:
        """
        Record a logout. Issued tokens stay valid until they expire.
        """
        if principal is None:
            return
        if self.audit:
            self.audit.log_action(
                principal.user_id, AuditAction.LOGOUT, AuditModule.AUTHENTICATION,
                "User", principal.user_id,
                description=f"User {principal.username} logged out",
                ip_address=client_ip, user_agent=user_agent,
            )
        log_action(logger, "info", "User logged out",
                   user_id=principal.user_id, action="logout", resource="auth")

    def authenticate_request(self, token: Optional[str]) -> Principal:
        """
        Resolve the Principal behind a bearer access token

        Raises:
            InvalidTokenError: token invalid, expired, a refresh token, or
                its user no longer active
        """
        if not self.tokens.validate(token):
            raise InvalidTokenError()
        if self.tokens.is_refresh_token(token):
            raise InvalidTokenError("Refresh token cannot be used for API access")
        return self._load_active_principal(self.tokens.subject_user_id(token))

    @staticmethod
    def authorize(principal: Principal, *authorities: str) -> None:
        """Raise ForbiddenError unless the principal holds one of ``authorities``"""
        if not principal.has_any_authority(*authorities):
            raise ForbiddenError(" or ".join(authorities))

    def _load_active_principal(self, user_id: str) -> Principal:
        try:
            principal = self.rbac.load_principal(user_id)
        except NotFoundError:
            raise InvalidTokenError("User no longer exists")
        if principal.status != UserStatus.ACTIVE:
            raise InvalidTokenError("User account is not active")
        return principal
