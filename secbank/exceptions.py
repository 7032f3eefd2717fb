"""
Exception Hierarchy

Typed errors raised by the core services. Each error carries enough context
(resource, field, value, error code) for the API layer to map it onto an
HTTP status and a structured failure payload.
"""

from typing import Any, Dict, Optional


class BankingError(Exception):
    """Base class for all business errors"""

    http_status = 400
    default_code = "BUSINESS_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None,
                 message_cn: Optional[str] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        self.message_cn = message_cn
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        """Structured failure body"""
        payload: Dict[str, Any] = {
            "success": False,
            "message": self.message,
            "errorCode": self.error_code,
        }
        if self.message_cn:
            payload["messageCn"] = self.message_cn
        return payload


class NotFoundError(BankingError):
    """Entity missing by id or code"""

    http_status = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource: str, field: str, value: Any):
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(
            f"{resource} not found with {field}: '{value}'",
            message_cn=f"未找到{resource}，{field}: '{value}'",
        )


class ValidationError(BankingError):
    """Malformed or out-of-range input, including business eligibility rules"""

    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None,
                 error_code: Optional[str] = None, message_cn: Optional[str] = None):
        self.errors = errors or {}
        super().__init__(message, error_code=error_code, message_cn=message_cn)

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class InactiveCustomerError(ValidationError):
    default_code = "INACTIVE_CUSTOMER"


class InactiveProductError(ValidationError):
    default_code = "INACTIVE_PRODUCT"


class BelowMinimumOpeningBalanceError(ValidationError):
    default_code = "BELOW_MINIMUM_OPENING_BALANCE"


class IneligibleCustomerTypeError(ValidationError):
    default_code = "INELIGIBLE_CUSTOMER_TYPE"


class ProtectedRoleError(ValidationError):
    """System roles cannot be deleted or have their code changed"""
    default_code = "PROTECTED_ROLE"


class ConflictError(BankingError):
    """Duplicate unique code (account number, CIF, role code, username...)"""

    http_status = 409
    default_code = "CONFLICT"

    def __init__(self, resource: str, field: str, value: Any):
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(
            f"{resource} already exists with {field}: '{value}'",
            message_cn=f"{resource}已存在，{field}: '{value}'",
        )


class StateTransitionError(BankingError):
    """Account state machine violation"""

    http_status = 409
    default_code = "STATE_TRANSITION_ERROR"

    def __init__(self, message: str, current_status: Any = None, target_status: Any = None,
                 error_code: Optional[str] = None):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message, error_code=error_code)


class IllegalTransitionError(StateTransitionError):
    default_code = "ILLEGAL_TRANSITION"


class TerminalStateError(IllegalTransitionError):
    default_code = "TERMINAL_STATE"


class AlreadyClosedError(TerminalStateError):
    default_code = "ALREADY_CLOSED"


class NonZeroBalanceError(StateTransitionError):
    default_code = "NON_ZERO_BALANCE"


class AuthenticationError(BankingError):
    """Caller could not be authenticated"""

    http_status = 401
    default_code = "UNAUTHORIZED"


class InvalidCredentialsError(AuthenticationError):
    default_code = "INVALID_CREDENTIALS"

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message, message_cn="用户名或密码无效")


class AccountDisabledError(InvalidCredentialsError):
    """User exists but is locked or inactive"""
    default_code = "ACCOUNT_DISABLED"


class InvalidTokenError(AuthenticationError):
    default_code = "INVALID_TOKEN"

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message, message_cn="无效的令牌")


class ForbiddenError(BankingError):
    """Authenticated but lacking the required authority"""

    http_status = 403
    default_code = "FORBIDDEN"

    def __init__(self, authority: Optional[str] = None):
        self.authority = authority
        message = "Access denied"
        if authority:
            message = f"Access denied: missing authority {authority}"
        super().__init__(message, message_cn="访问被拒绝")
