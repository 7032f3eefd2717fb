"""
Account Management Module

Current/savings/time-deposit accounts: opening with eligibility checks,
number generation, the account status state machine, balances and
portfolio statistics.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from .audit import AuditAction, AuditEmitter, AuditModule
from .branches import BranchManager
from .customers import CustomerManager, CustomerStatus, CustomerType
from .exceptions import (
    AlreadyClosedError,
    BelowMinimumOpeningBalanceError,
    IllegalTransitionError,
    InactiveCustomerError,
    InactiveProductError,
    IneligibleCustomerTypeError,
    NonZeroBalanceError,
    NotFoundError,
    TerminalStateError,
    ValidationError,
)
from .numbering import NumberSequencer, account_number_prefix, next_account_number
from .products import AccountCategory, AccountTypeManager, ProductStatus
from .storage import LockStripes, StorageInterface, StorageRecord


logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


class AccountStatus(Enum):
    """Account lifecycle states"""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    DORMANT = "DORMANT"
    FROZEN = "FROZEN"
    BLOCKED = "BLOCKED"
    CLOSED = "CLOSED"


class AccountOperation(Enum):
    """Entry points that mutate account status"""
    UPDATE_STATUS = "UPDATE_STATUS"
    FREEZE = "FREEZE"
    UNFREEZE = "UNFREEZE"
    CLOSE = "CLOSE"


@dataclass(frozen=True)
class TransitionRule:
    """
    sources: statuses the operation may start from (None = any live status)
    target: fixed destination (None = chosen by the caller)
    """
    sources: Optional[FrozenSet[AccountStatus]]
    target: Optional[AccountStatus]
    clears_reason: bool = False
    source_error: str = "Illegal status transition"


TRANSITION_RULES: Dict[AccountOperation, TransitionRule] = {
    AccountOperation.UPDATE_STATUS: TransitionRule(sources=None, target=None),
    AccountOperation.FREEZE: TransitionRule(
        sources=frozenset({AccountStatus.ACTIVE, AccountStatus.DORMANT}),
        target=AccountStatus.FROZEN,
        source_error="Only active or dormant accounts can be frozen",
    ),
    AccountOperation.UNFREEZE: TransitionRule(
        sources=frozenset({AccountStatus.FROZEN}),
        target=AccountStatus.ACTIVE,
        clears_reason=True,
        source_error="Only frozen accounts can be unfrozen",
    ),
    AccountOperation.CLOSE: TransitionRule(sources=None, target=AccountStatus.CLOSED),
}

# PENDING accounts may only be activated or closed
PENDING_TARGETS = frozenset({AccountStatus.ACTIVE, AccountStatus.CLOSED})


def validate_transition(operation: AccountOperation, current: AccountStatus,
                        current_balance: Decimal,
                        target: Optional[AccountStatus] = None) -> AccountStatus:
    """
    Check a status change against the transition table.

    Args:
        operation: Entry point requesting the change
        current: Account's current status
        current_balance: Account's current balance
        target: Requested status, for operations without a fixed target

    Returns:
        The status the account moves to

    Raises:
        AlreadyClosedError: close requested on a closed account
        TerminalStateError: any other change requested on a closed account
        IllegalTransitionError: source status not allowed for the operation
        NonZeroBalanceError: moving to CLOSED with a balance other than zero
    """
    rule = TRANSITION_RULES[operation]
    target = rule.target or target
    if target is None:
        raise ValidationError("Target status is required", errors={'status': 'required'})

    if current == AccountStatus.CLOSED:
        if operation == AccountOperation.CLOSE:
            raise AlreadyClosedError("Account is already closed",
                                     current_status=current, target_status=target)
        raise TerminalStateError("Cannot change status of a closed account",
                                 current_status=current, target_status=target)

    if rule.sources is not None and current not in rule.sources:
        raise IllegalTransitionError(rule.source_error, current_status=current, target_status=target)

    if current == AccountStatus.PENDING and target not in PENDING_TARGETS:
        raise IllegalTransitionError("Pending accounts can only be activated or closed",
                                     current_status=current, target_status=target)

    if target == AccountStatus.CLOSED and current_balance != Decimal("0"):
        raise NonZeroBalanceError("Account balance must be zero before closing",
                                  current_status=current, target_status=target)

    return target


def to_money(value: Any, field_name: str) -> Decimal:
    """Convert to a 2-place Decimal; more precision than cents is rejected, not rounded"""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount for {field_name}", errors={field_name: 'invalid amount'})
    if not amount.is_finite() or amount != amount.quantize(CENT):
        raise ValidationError(f"{field_name} must have at most 2 decimal places",
                              errors={field_name: 'at most 2 decimal places'})
    return amount.quantize(CENT)


_MONEY_FIELDS = ('current_balance', 'available_balance', 'hold_balance', 'overdraft_limit',
                 'accrued_interest', 'principal_amount')
_RATE_FIELDS = ('interest_rate', 'interest_rate_override')
_DATE_FIELDS = ('open_date', 'close_date', 'dormant_date', 'last_interest_date', 'maturity_date')
_DATETIME_FIELDS = ('last_transaction_date', 'approved_at')


@dataclass
class Account(StorageRecord):
    """
    Customer deposit account.
    available_balance is always current_balance - hold_balance.
    """
    account_number: str
    account_name: str
    customer_id: str
    account_type_id: str
    branch_id: str
    currency: str
    status: AccountStatus = AccountStatus.ACTIVE
    account_name_cn: Optional[str] = None
    current_balance: Decimal = ZERO
    available_balance: Decimal = ZERO
    hold_balance: Decimal = ZERO
    overdraft_limit: Decimal = ZERO
    accrued_interest: Decimal = ZERO
    interest_rate: Optional[Decimal] = None
    interest_rate_override: Optional[Decimal] = None
    last_interest_date: Optional[date] = None
    maturity_date: Optional[date] = None
    principal_amount: Optional[Decimal] = None
    maturity_instruction: Optional[str] = None
    open_date: Optional[date] = None
    close_date: Optional[date] = None
    last_transaction_date: Optional[datetime] = None
    dormant_date: Optional[date] = None
    status_reason: Optional[str] = None
    is_joint_account: bool = False
    allow_debit: bool = True
    allow_credit: bool = True
    atm_enabled: bool = True
    online_banking_enabled: bool = True
    sms_notification_enabled: bool = False
    email_notification_enabled: bool = False
    signature_type: Optional[str] = None
    remarks: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    closed_by: Optional[str] = None

    @property
    def effective_interest_rate(self) -> Optional[Decimal]:
        if self.interest_rate_override is not None:
            return self.interest_rate_override
        return self.interest_rate

    @property
    def is_closed(self) -> bool:
        return self.status == AccountStatus.CLOSED


@dataclass
class AccountPage:
    items: List[Account]
    total: int
    page: int
    size: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size


@dataclass
class AccountStats:
    total_active: int
    total_dormant: int
    total_frozen: int
    total_closed: int
    total_active_balance: Decimal
    by_status: Dict[str, int] = field(default_factory=dict)


@dataclass
class BranchAccountStats:
    branch_id: str
    total_accounts: int
    total_balance: Decimal


class AccountManager:
    """
    Manages account opening, lifecycle transitions and balances
    """

    def __init__(self, storage: StorageInterface, customers: CustomerManager,
                 account_types: AccountTypeManager, branches: BranchManager,
                 sequencer: NumberSequencer, audit: Optional[AuditEmitter] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 default_currency: str = "PHP"):
        self.storage = storage
        self.customers = customers
        self.account_types = account_types
        self.branches = branches
        self.sequencer = sequencer
        self.audit = audit
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.default_currency = default_currency
        self.table_name = "accounts"
        self._account_lock = LockStripes()

    # Opening

    def open_account(
        self,
        customer_id: str,
        account_type_id: str,
        branch_id: str,
        initial_deposit: Any,
        account_name: Optional[str] = None,
        created_by: Optional[str] = None,
        account_name_cn: Optional[str] = None,
        is_joint_account: Optional[bool] = None,
        atm_enabled: Optional[bool] = None,
        online_banking_enabled: Optional[bool] = None,
        sms_notification_enabled: Optional[bool] = None,
        email_notification_enabled: Optional[bool] = None,
        signature_type: Optional[str] = None,
        remarks: Optional[str] = None,
    ) -> Account:
        """
        Open a new account for a customer

        Args:
            customer_id: Owning customer
            account_type_id: Product to open
            branch_id: Branch of account
            initial_deposit: Opening balance, must be positive
            account_name: Account title; derived from the customer when omitted
            created_by: Acting user
            remaining args: Optional feature flags and remarks

        Returns:
            Created Account, ACTIVE with the deposit as its balance

        Raises:
            ValidationError: deposit not positive
            NotFoundError: customer, account type or branch missing
            InactiveCustomerError: customer not ACTIVE
            InactiveProductError: account type not ACTIVE
            BelowMinimumOpeningBalanceError: deposit below product floor
            IneligibleCustomerTypeError: product closed to the customer type
        """
        deposit = to_money(initial_deposit, 'initialDeposit')
        if deposit <= ZERO:
            raise ValidationError("Initial deposit must be positive",
                                  errors={'initialDeposit': 'must be positive'},
                                  message_cn="初始存款必须为正数")

        customer = self.customers.get_customer(customer_id)
        if customer.status != CustomerStatus.ACTIVE:
            raise InactiveCustomerError("Customer is not active", message_cn="客户未激活")

        account_type = self.account_types.get_account_type(account_type_id)
        if account_type.status != ProductStatus.ACTIVE:
            raise InactiveProductError("Account type is not active", message_cn="账户类型未激活")

        floor = account_type.minimum_opening_balance
        if floor is not None and deposit < floor:
            raise BelowMinimumOpeningBalanceError(
                f"Initial deposit is below minimum opening balance requirement of {floor}",
                errors={'initialDeposit': f'minimum opening balance is {floor}'},
            )

        if customer.customer_type == CustomerType.INDIVIDUAL and not account_type.allow_individual:
            raise IneligibleCustomerTypeError(
                "This account type is not available for individual customers")
        if customer.customer_type == CustomerType.CORPORATE and not account_type.allow_corporate:
            raise IneligibleCustomerTypeError(
                "This account type is not available for corporate customers")

        branch = self.branches.get_branch(branch_id)

        now = self.clock()
        today = now.date()
        prefix = account_number_prefix(branch.branch_code, account_type.type_code, today)

        maturity_date = None
        principal_amount = None
        if account_type.category == AccountCategory.TIME_DEPOSIT and account_type.term_days:
            maturity_date = today + timedelta(days=account_type.term_days)
            principal_amount = deposit

        flags = {
            'is_joint_account': is_joint_account,
            'atm_enabled': atm_enabled,
            'online_banking_enabled': online_banking_enabled,
            'sms_notification_enabled': sms_notification_enabled,
            'email_notification_enabled': email_notification_enabled,
        }
        flags = {k: v for k, v in flags.items() if v is not None}

        def persist(account_number: str) -> Account:
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=account_number,
                account_name=account_name or customer.display_name,
                account_name_cn=account_name_cn,
                customer_id=customer.id,
                account_type_id=account_type.id,
                branch_id=branch.id,
                currency=account_type.currency or self.default_currency,
                status=AccountStatus.ACTIVE,
                current_balance=deposit,
                available_balance=deposit,
                hold_balance=ZERO,
                accrued_interest=ZERO,
                interest_rate=account_type.interest_rate,
                last_interest_date=today,
                maturity_date=maturity_date,
                principal_amount=principal_amount,
                open_date=today,
                signature_type=signature_type,
                remarks=remarks,
                created_by=created_by,
                updated_by=created_by,
                **flags,
            )
            self.storage.save_unique(self.table_name, account.id, account.to_dict(), ['account_number'])
            return account

        account = self.sequencer.allocate(
            self.table_name, 'account_number', prefix, next_account_number, persist
        )

        self._audit(created_by, AuditAction.OPEN, account, new_value=account,
                    description=f"Account {account.account_number} opened")
        logger.info("Account opened: %s", account.account_number)
        return account

    # Queries

    def get_account(self, account_id: str) -> Account:
        """Get account by ID"""
        data = self.storage.load(self.table_name, account_id)
        if not data:
            raise NotFoundError("Account", "id", account_id)
        return self._account_from_dict(data)

    def get_account_by_number(self, account_number: str) -> Account:
        """Get account by account number"""
        matches = self.storage.find(self.table_name, {'account_number': account_number})
        if not matches:
            raise NotFoundError("Account", "accountNumber", account_number)
        return self._account_from_dict(matches[0])

    def get_customer_accounts(self, customer_id: str,
                              status: Optional[AccountStatus] = None) -> List[Account]:
        filters = {'customer_id': customer_id}
        if status:
            filters['status'] = status.value
        accounts = [self._account_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        return sorted(accounts, key=lambda a: a.account_number)

    def get_branch_accounts(self, branch_id: str) -> List[Account]:
        accounts = [self._account_from_dict(d)
                    for d in self.storage.find(self.table_name, {'branch_id': branch_id})]
        return sorted(accounts, key=lambda a: a.account_number)

    def find_accounts(self, keyword: Optional[str] = None,
                      status: Optional[AccountStatus] = None,
                      branch_id: Optional[str] = None,
                      account_type_id: Optional[str] = None,
                      customer_id: Optional[str] = None,
                      page: int = 0, size: int = 20) -> AccountPage:
        """
        Filtered, paginated account listing. ``keyword`` matches account
        number or name, case-insensitively. Pages are zero-based.
        """
        filters: Dict[str, Any] = {}
        if status:
            filters['status'] = status.value
        if branch_id:
            filters['branch_id'] = branch_id
        if account_type_id:
            filters['account_type_id'] = account_type_id
        if customer_id:
            filters['customer_id'] = customer_id

        records = self.storage.find(self.table_name, filters)
        if keyword:
            needle = keyword.lower()
            records = [
                r for r in records
                if needle in r['account_number'].lower() or needle in (r.get('account_name') or '').lower()
            ]

        records.sort(key=lambda r: r['created_at'], reverse=True)
        page = max(page, 0)
        size = max(size, 1)
        start = page * size
        items = [self._account_from_dict(r) for r in records[start:start + size]]
        return AccountPage(items=items, total=len(records), page=page, size=size)

    # Updates

    def update_account(self, account_id: str, account_name: Optional[str] = None,
                       remarks: Optional[str] = None,
                       updated_by: Optional[str] = None) -> Account:
        """Update account title and remarks"""
        with self._account_lock(account_id):
            account = self.get_account(account_id)
            old_snapshot = account.to_dict()
            if account_name is not None:
                account.account_name = account_name
            if remarks is not None:
                account.remarks = remarks
            account.updated_by = updated_by
            account.updated_at = self.clock()
            self._save_account(account)

        self._audit(updated_by, AuditAction.UPDATE, account, old_value=old_snapshot, new_value=account,
                    description=f"Account {account.account_number} updated")
        return account

    def update_balance(self, account_id: str, new_balance: Any,
                       hold_amount: Any = None,
                       updated_by: Optional[str] = None) -> Account:
        """
        Set current balance and optionally the hold; available balance is
        recomputed as current - hold.
        """
        balance = to_money(new_balance, 'newBalance')
        hold = to_money(hold_amount, 'holdAmount') if hold_amount is not None else None
        if hold is not None and hold < ZERO:
            raise ValidationError("Hold amount cannot be negative", errors={'holdAmount': 'must not be negative'})

        with self._account_lock(account_id):
            account = self.get_account(account_id)
            old_snapshot = account.to_dict()
            account.current_balance = balance
            if hold is not None:
                account.hold_balance = hold
            account.available_balance = account.current_balance - account.hold_balance
            account.last_transaction_date = self.clock()
            account.updated_by = updated_by
            account.updated_at = account.last_transaction_date
            self._save_account(account)

        self._audit(updated_by, AuditAction.UPDATE, account, old_value=old_snapshot, new_value=account,
                    description=f"Balance of {account.account_number} set to {balance}")
        return account

    # Lifecycle

    def update_status(self, account_id: str, status: AccountStatus,
                      reason: Optional[str] = None,
                      updated_by: Optional[str] = None) -> Account:
        """Move an account to an arbitrary status, subject to the transition table"""
        return self._transition(account_id, AccountOperation.UPDATE_STATUS, AuditAction.UPDATE_STATUS,
                                reason, updated_by, target=status)

    def freeze(self, account_id: str, reason: str, frozen_by: Optional[str] = None) -> Account:
        """ACTIVE or DORMANT -> FROZEN"""
        return self._transition(account_id, AccountOperation.FREEZE, AuditAction.FREEZE,
                                reason, frozen_by)

    def unfreeze(self, account_id: str, unfrozen_by: Optional[str] = None) -> Account:
        """FROZEN -> ACTIVE; the status reason is cleared"""
        return self._transition(account_id, AccountOperation.UNFREEZE, AuditAction.UNFREEZE,
                                None, unfrozen_by)

    def close(self, account_id: str, reason: Optional[str] = None,
              closed_by: Optional[str] = None) -> Account:
        """Close a zero-balance account"""
        return self._transition(account_id, AccountOperation.CLOSE, AuditAction.CLOSE,
                                reason, closed_by)

    def _transition(self, account_id: str, operation: AccountOperation, audit_action: str,
                    reason: Optional[str], actor: Optional[str],
                    target: Optional[AccountStatus] = None) -> Account:
        with self._account_lock(account_id), self.storage.atomic():
            account = self.get_account(account_id)
            old_snapshot = account.to_dict()
            new_status = validate_transition(operation, account.status, account.current_balance, target)

            now = self.clock()
            if new_status == AccountStatus.DORMANT and account.status != AccountStatus.DORMANT:
                account.dormant_date = now.date()
            if new_status == AccountStatus.CLOSED:
                account.close_date = now.date()
                account.closed_by = actor

            account.status = new_status
            account.status_reason = None if TRANSITION_RULES[operation].clears_reason else reason
            account.updated_by = actor
            account.updated_at = now
            self._save_account(account)

        self._audit(actor, audit_action, account, old_value=old_snapshot, new_value=account,
                    description=f"Account {account.account_number} {old_snapshot['status']} -> {new_status.value}")
        logger.info("Account %s status %s -> %s",
                    account.account_number, old_snapshot['status'], new_status.value)
        return account

    # Statistics

    def count_by_branch(self, branch_id: str) -> int:
        return len(self.storage.find(self.table_name, {'branch_id': branch_id}))

    def sum_active_balances(self, branch_id: Optional[str] = None) -> Decimal:
        filters = {'status': AccountStatus.ACTIVE.value}
        if branch_id:
            filters['branch_id'] = branch_id
        return sum((Decimal(r['current_balance']) for r in self.storage.find(self.table_name, filters)), ZERO)

    def get_stats(self) -> AccountStats:
        by_status = {s.value: 0 for s in AccountStatus}
        for record in self.storage.load_all(self.table_name):
            by_status[record['status']] = by_status.get(record['status'], 0) + 1
        return AccountStats(
            total_active=by_status[AccountStatus.ACTIVE.value],
            total_dormant=by_status[AccountStatus.DORMANT.value],
            total_frozen=by_status[AccountStatus.FROZEN.value],
            total_closed=by_status[AccountStatus.CLOSED.value],
            total_active_balance=self.sum_active_balances(),
            by_status=by_status,
        )

    def get_branch_stats(self, branch_id: str) -> BranchAccountStats:
        return BranchAccountStats(
            branch_id=branch_id,
            total_accounts=self.count_by_branch(branch_id),
            total_balance=self.sum_active_balances(branch_id),
        )

    # Private helper methods

    def _save_account(self, account: Account) -> None:
        self.storage.save_unique(self.table_name, account.id, account.to_dict(), ['account_number'])

    def _account_from_dict(self, data: Dict[str, Any]) -> Account:
        for key in _MONEY_FIELDS + _RATE_FIELDS:
            if data.get(key) is not None:
                data[key] = Decimal(data[key])
        for key in _DATE_FIELDS:
            if data.get(key):
                data[key] = date.fromisoformat(data[key])
        for key in _DATETIME_FIELDS:
            if data.get(key):
                data[key] = datetime.fromisoformat(data[key])
        data['status'] = AccountStatus(data['status'])
        return Account.from_dict(data)

    def _audit(self, user_id: Optional[str], action: str, account: Account,
               old_value: Any = None, new_value: Any = None,
               description: Optional[str] = None) -> None:
        if self.audit:
            self.audit.log_action(user_id, action, AuditModule.CASA, "Account", account.id,
                                  old_value=old_value, new_value=new_value, description=description)
