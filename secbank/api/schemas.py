"""
Pydantic schemas for API requests and responses
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..accounts import AccountStatus
from ..customers import CustomerStatus, CustomerType, Gender, IdType, RiskRating
from ..rbac import RoleStatus, UserStatus


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def ok(data: Any = None, message: str = "Success") -> Dict[str, Any]:
    """Success envelope: {success, message, data}"""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    elif isinstance(data, list):
        data = [d.model_dump(mode="json", by_alias=True) if isinstance(d, BaseModel) else d for d in data]
    return {"success": True, "message": message, "data": data}


# Auth schemas
class LoginRequest(CamelModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class LoginResponse(CamelModel):
    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    user_id: str
    username: str
    full_name: str
    email: str
    branch_id: Optional[str] = None
    must_change_password: bool


class TokenRefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class TokenRefreshResponse(CamelModel):
    access_token: str
    token_type: str
    expires_in: int


class PrincipalResponse(CamelModel):
    user_id: str
    username: str
    email: str
    full_name: str
    branch_id: Optional[str] = None
    must_change_password: bool
    roles: List[str]
    authorities: List[str]


# Account schemas
class OpenAccountRequest(CamelModel):
    customer_id: str
    account_type_id: str
    branch_id: str
    initial_deposit: Decimal = Field(..., gt=0, decimal_places=2)
    account_name: Optional[str] = None
    account_name_cn: Optional[str] = None
    is_joint_account: Optional[bool] = None
    atm_enabled: Optional[bool] = None
    online_banking_enabled: Optional[bool] = None
    sms_notification_enabled: Optional[bool] = None
    email_notification_enabled: Optional[bool] = None
    signature_type: Optional[str] = None
    remarks: Optional[str] = None


class UpdateAccountRequest(CamelModel):
    account_name: Optional[str] = None
    remarks: Optional[str] = None


class AccountResponse(CamelModel):
    id: str
    account_number: str
    account_name: str
    account_name_cn: Optional[str] = None
    customer_id: str
    account_type_id: str
    branch_id: str
    currency: str
    current_balance: Decimal
    available_balance: Decimal
    hold_balance: Decimal
    overdraft_limit: Decimal
    accrued_interest: Decimal
    interest_rate: Optional[Decimal] = None
    effective_interest_rate: Optional[Decimal] = None
    last_interest_date: Optional[date] = None
    maturity_date: Optional[date] = None
    principal_amount: Optional[Decimal] = None
    maturity_instruction: Optional[str] = None
    open_date: Optional[date] = None
    close_date: Optional[date] = None
    last_transaction_date: Optional[datetime] = None
    dormant_date: Optional[date] = None
    status: AccountStatus
    status_reason: Optional[str] = None
    is_joint_account: bool
    allow_debit: bool
    allow_credit: bool
    atm_enabled: bool
    online_banking_enabled: bool
    sms_notification_enabled: bool
    email_notification_enabled: bool
    signature_type: Optional[str] = None
    remarks: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    closed_by: Optional[str] = None


class AccountPageResponse(CamelModel):
    content: List[AccountResponse]
    total_elements: int
    total_pages: int
    page: int
    size: int


class AccountStatsResponse(CamelModel):
    total_active: int
    total_dormant: int
    total_frozen: int
    total_closed: int
    total_active_balance: Decimal


class BranchAccountStatsResponse(CamelModel):
    branch_id: str
    total_accounts: int
    total_balance: Decimal


# Customer schemas
class CreateCustomerRequest(CamelModel):
    customer_type: CustomerType
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    first_name_cn: Optional[str] = None
    last_name_cn: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    nationality: Optional[str] = None
    company_name: Optional[str] = None
    company_name_cn: Optional[str] = None
    registration_number: Optional[str] = None
    date_of_incorporation: Optional[date] = None
    industry: Optional[str] = None
    email: Optional[str] = None
    mobile_phone: Optional[str] = None
    home_phone: Optional[str] = None
    work_phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    id_type: Optional[IdType] = None
    id_number: Optional[str] = None
    id_expiry_date: Optional[date] = None
    tax_id: Optional[str] = None
    risk_rating: Optional[RiskRating] = None
    branch_id: Optional[str] = None
    relationship_manager: Optional[str] = None
    remarks: Optional[str] = None


class CustomerResponse(CamelModel):
    id: str
    customer_number: str
    customer_type: CustomerType
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    mobile_phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    id_type: Optional[IdType] = None
    id_number: Optional[str] = None
    risk_rating: Optional[RiskRating] = None
    kyc_verified: bool
    kyc_verified_date: Optional[datetime] = None
    branch_id: Optional[str] = None
    status: CustomerStatus
    created_at: datetime


# Role schemas
class PermissionResponse(CamelModel):
    id: str
    permission_code: str
    permission_name: str
    permission_name_cn: Optional[str] = None
    module: str
    description: Optional[str] = None


class CreateRoleRequest(CamelModel):
    role_code: str = Field(..., pattern=r"^[A-Z][A-Z0-9_]*$", max_length=50)
    role_name: str = Field(..., min_length=1, max_length=100)
    role_name_cn: Optional[str] = None
    description: Optional[str] = None
    permission_codes: List[str] = Field(default_factory=list)


class UpdateRoleRequest(CamelModel):
    role_code: Optional[str] = Field(None, pattern=r"^[A-Z][A-Z0-9_]*$", max_length=50)
    role_name: Optional[str] = None
    role_name_cn: Optional[str] = None
    description: Optional[str] = None
    status: Optional[RoleStatus] = None
    permission_codes: Optional[List[str]] = None


class RoleResponse(CamelModel):
    id: str
    role_code: str
    role_name: str
    role_name_cn: Optional[str] = None
    description: Optional[str] = None
    is_system_role: bool
    status: RoleStatus
    permission_codes: List[str]
    created_at: datetime
    updated_at: datetime


class AssignRolesRequest(CamelModel):
    role_ids: List[str]


class UserResponse(CamelModel):
    id: str
    username: str
    email: str
    full_name: str
    branch_id: Optional[str] = None
    status: UserStatus
    role_ids: List[str]
    must_change_password: bool


class ChangePasswordRequest(CamelModel):
    old_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class PasswordResetResponse(CamelModel):
    user_id: str
    temporary_password: str


# Audit schemas
class AuditLogResponse(CamelModel):
    id: str
    sequence: int
    action: str
    module: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime


class AuditIntegrityResponse(CamelModel):
    valid: bool
    total_records: int
    hash_errors: List[Dict[str, Any]]
    chain_breaks: List[Dict[str, Any]]
