"""
Account Type (Product) Module

Configurable deposit products: savings, current and time deposits, with
their balance thresholds, fees, limits and customer eligibility rules.
"""

import uuid
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .audit import AuditAction, AuditEmitter, AuditModule
from .exceptions import NotFoundError
from .storage import StorageInterface, StorageRecord


class AccountCategory(Enum):
    SAVINGS = "SAVINGS"
    CURRENT = "CURRENT"
    TIME_DEPOSIT = "TIME_DEPOSIT"


class InterestCalculation(Enum):
    DAILY_BALANCE = "DAILY_BALANCE"
    MINIMUM_BALANCE = "MINIMUM_BALANCE"
    AVERAGE_BALANCE = "AVERAGE_BALANCE"


class PostingFrequency(Enum):
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    SEMI_ANNUALLY = "SEMI_ANNUALLY"
    ANNUALLY = "ANNUALLY"
    AT_MATURITY = "AT_MATURITY"


class ProductStatus(Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


_DECIMAL_FIELDS = (
    'interest_rate', 'minimum_balance', 'minimum_opening_balance', 'maximum_balance',
    'monthly_fee', 'below_minimum_fee', 'dormancy_fee', 'daily_withdrawal_limit',
    'daily_transfer_limit', 'early_withdrawal_penalty_rate',
)


@dataclass
class AccountType(StorageRecord):
    """
    Deposit product definition
    """
    type_code: str
    type_name: str
    category: AccountCategory
    type_name_cn: Optional[str] = None
    description: Optional[str] = None
    interest_rate: Decimal = Decimal("0")  # annual, 0.0250 = 2.50%
    interest_calculation: Optional[InterestCalculation] = None
    interest_posting_frequency: Optional[PostingFrequency] = None
    minimum_balance: Decimal = Decimal("0")
    minimum_opening_balance: Decimal = Decimal("0")
    maximum_balance: Optional[Decimal] = None
    monthly_fee: Decimal = Decimal("0")
    below_minimum_fee: Decimal = Decimal("0")
    dormancy_fee: Decimal = Decimal("0")
    daily_withdrawal_limit: Optional[Decimal] = None
    daily_transfer_limit: Optional[Decimal] = None
    max_transactions_per_day: Optional[int] = None
    term_days: Optional[int] = None
    early_withdrawal_penalty_rate: Optional[Decimal] = None
    allow_individual: bool = True
    allow_corporate: bool = True
    minimum_age: Optional[int] = None
    maximum_age: Optional[int] = None
    currency: Optional[str] = None
    status: ProductStatus = ProductStatus.ACTIVE
    created_by: Optional[str] = None
    updated_by: Optional[str] = None


class AccountTypeManager:
    """Manages the deposit product catalogue"""

    def __init__(self, storage: StorageInterface, audit: Optional[AuditEmitter] = None):
        self.storage = storage
        self.audit = audit
        self.table_name = "account_types"

    def create_account_type(self, type_code: str, type_name: str, category: AccountCategory,
                            created_by: Optional[str] = None, **terms) -> AccountType:
        """
        Create an account type

        Raises:
            ConflictError: type code already exists
        """
        known = {f.name for f in fields(AccountType)}
        unknown = set(terms) - known
        if unknown:
            raise TypeError(f"Unknown account type fields: {', '.join(sorted(unknown))}")

        now = datetime.now(timezone.utc)
        account_type = AccountType(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            type_code=type_code,
            type_name=type_name,
            category=category,
            created_by=created_by,
            **terms,
        )
        self.storage.save_unique(self.table_name, account_type.id, account_type.to_dict(), ['type_code'])

        if self.audit:
            self.audit.log_action(created_by, AuditAction.CREATE, AuditModule.ADMINISTRATION,
                                  "AccountType", account_type.id, new_value=account_type,
                                  description=f"Account type {type_code} created")
        return account_type

    def get_account_type(self, type_id: str) -> AccountType:
        data = self.storage.load(self.table_name, type_id)
        if not data:
            raise NotFoundError("Account Type", "id", type_id)
        return self._account_type_from_dict(data)

    def find_account_type_by_code(self, type_code: str) -> Optional[AccountType]:
        matches = self.storage.find(self.table_name, {'type_code': type_code})
        return self._account_type_from_dict(matches[0]) if matches else None

    def list_account_types(self, status: Optional[ProductStatus] = None) -> List[AccountType]:
        filters = {'status': status.value} if status else {}
        types = [self._account_type_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        return sorted(types, key=lambda t: t.type_code)

    def set_status(self, type_id: str, status: ProductStatus,
                   updated_by: Optional[str] = None) -> AccountType:
        """Activate or deactivate a product"""
        account_type = self.get_account_type(type_id)
        old_status = account_type.status
        account_type.status = status
        account_type.updated_by = updated_by
        account_type.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, account_type.id, account_type.to_dict())

        if self.audit:
            self.audit.log_action(updated_by, AuditAction.UPDATE_STATUS, AuditModule.ADMINISTRATION,
                                  "AccountType", account_type.id,
                                  old_value={'status': old_status.value},
                                  new_value={'status': status.value})
        return account_type

    def _account_type_from_dict(self, data: Dict[str, Any]) -> AccountType:
        for key in _DECIMAL_FIELDS:
            if data.get(key) is not None:
                data[key] = Decimal(data[key])
        data['category'] = AccountCategory(data['category'])
        data['status'] = ProductStatus(data['status'])
        if data.get('interest_calculation'):
            data['interest_calculation'] = InterestCalculation(data['interest_calculation'])
        if data.get('interest_posting_frequency'):
            data['interest_posting_frequency'] = PostingFrequency(data['interest_posting_frequency'])
        return AccountType.from_dict(data)
