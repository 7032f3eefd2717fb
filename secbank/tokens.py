"""
JWT Token Service

Issues and validates HS256 access and refresh tokens. Tokens carry identity
claims only; authorities are resolved again on every request.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt

from .exceptions import InvalidTokenError
from .rbac import Principal


logger = logging.getLogger(__name__)

REFRESH_TOKEN_TYPE = "refresh"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Stateless JWT issuer/validator"""

    def __init__(self, secret: str, algorithm: str = "HS256",
                 access_ttl: timedelta = timedelta(hours=24),
                 refresh_ttl: timedelta = timedelta(days=7),
                 clock: Optional[Clock] = None):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self.secret = secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.clock = clock or utc_now

    @property
    def access_ttl_seconds(self) -> int:
        return int(self.access_ttl.total_seconds())

    def issue_access_token(self, principal: Principal) -> str:
        """Access token: sub, username, email, branchId, iat, exp"""
        now = self.clock()
        payload = {
            "sub": principal.user_id,
            "username": principal.username,
            "email": principal.email,
            "branchId": principal.branch_id,
            "iat": int(now.timestamp()),
            "exp": int((now + self.access_ttl).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def issue_refresh_token(self, principal: Principal) -> str:
        """Refresh token: sub, type=refresh, iat, exp"""
        now = self.clock()
        payload = {
            "sub": principal.user_id,
            "type": REFRESH_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int((now + self.refresh_ttl).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def validate(self, token: Optional[str]) -> bool:
        """True for a well-formed, correctly signed, unexpired token; never raises"""
        try:
            self._decode(token)
            return True
        except InvalidTokenError as e:
            logger.warning("Rejected JWT token: %s", e.message)
            return False

    def is_refresh_token(self, token: Optional[str]) -> bool:
        try:
            return self._decode(token).get("type") == REFRESH_TOKEN_TYPE
        except InvalidTokenError:
            return False

    def subject_user_id(self, token: Optional[str]) -> str:
        """
        Extract the user id from the token subject

        Raises:
            InvalidTokenError: token is malformed, badly signed or expired
        """
        return str(self._decode(token)["sub"])

    def _decode(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise InvalidTokenError("JWT claims string is empty")
        try:
            # Expiry is checked against the injected clock below
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={
                    "require": ["sub", "exp", "iat"],
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except jwt.InvalidSignatureError:
            raise InvalidTokenError("Invalid JWT signature")
        except jwt.MissingRequiredClaimError as e:
            raise InvalidTokenError(f"Missing JWT claim: {e.claim}")
        except jwt.InvalidAlgorithmError:
            raise InvalidTokenError("Unsupported JWT token")
        except jwt.DecodeError:
            raise InvalidTokenError("Invalid JWT token")
        except jwt.InvalidTokenError as e:
            raise InvalidTokenError(f"Invalid JWT token: {e}")

        try:
            expires_at = int(claims["exp"])
        except (TypeError, ValueError):
            raise InvalidTokenError("Invalid JWT token")
        if self.clock().timestamp() >= expires_at:
            raise InvalidTokenError("Expired JWT token")
        if not claims.get("sub"):
            raise InvalidTokenError("Missing JWT claim: sub")
        return claims
