"""
Authentication endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials

from .deps import (
    BankingSystem,
    bearer_scheme,
    client_ip,
    get_banking_system,
    get_current_principal,
)
from .schemas import (
    LoginRequest,
    LoginResponse,
    PrincipalResponse,
    TokenRefreshRequest,
    TokenRefreshResponse,
    ok,
)
from ..exceptions import AuthenticationError
from ..rbac import Principal


router = APIRouter()


@router.post("/login")
def login(
    request: LoginRequest,
    http_request: Request,
    system: BankingSystem = Depends(get_banking_system),
):
    """Authenticate with username and password"""
    result = system.auth_service.login(
        request.username, request.password,
        client_ip=client_ip(http_request),
        user_agent=http_request.headers.get("user-agent"),
    )
    return ok(LoginResponse.model_validate(result), "Login successful / 登录成功")


@router.post("/refresh")
def refresh_token(
    request: TokenRefreshRequest,
    system: BankingSystem = Depends(get_banking_system),
):
    """Exchange a refresh token for a new access token"""
    result = system.auth_service.refresh(request.refresh_token)
    return ok(TokenRefreshResponse.model_validate(result), "Token refreshed / 令牌已刷新")


@router.post("/logout")
def logout(
    http_request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    system: BankingSystem = Depends(get_banking_system),
):
    """Record a logout; succeeds even without a valid token"""
    principal = None
    if credentials is not None:
        try:
            principal = system.auth_service.authenticate_request(credentials.credentials)
        except AuthenticationError:
            principal = None
    system.auth_service.logout(
        principal,
        client_ip=client_ip(http_request),
        user_agent=http_request.headers.get("user-agent"),
    )
    return ok(None, "Logout successful / 登出成功")


@router.get("/me")
def current_user(principal: Principal = Depends(get_current_principal)):
    """The authenticated caller and its authorities"""
    return ok(PrincipalResponse(
        user_id=principal.user_id,
        username=principal.username,
        email=principal.email,
        full_name=principal.full_name,
        branch_id=principal.branch_id,
        must_change_password=principal.must_change_password,
        roles=principal.role_codes,
        authorities=sorted(principal.authorities),
    ))
