"""
Test suite for accounts module

Tests account opening and its eligibility checks, number generation, the
status state machine (freeze/unfreeze/close/generic updates), balances,
paginated search and statistics.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from secbank.accounts import (
    AccountManager,
    AccountOperation,
    AccountStatus,
    to_money,
    validate_transition,
)
from secbank.audit import AuditAction, AuditEmitter, AuditModule, AuditTrail
from secbank.branches import BranchManager
from secbank.customers import CustomerManager, CustomerStatus, CustomerType
from secbank.exceptions import (
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
from secbank.numbering import NumberSequencer
from secbank.products import AccountCategory, AccountTypeManager, ProductStatus
from secbank.storage import InMemoryStorage, SQLiteStorage


NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def trail(storage):
    return AuditTrail(storage)


@pytest.fixture
def emitter(trail):
    emitter = AuditEmitter(trail)
    emitter.start()
    yield emitter
    emitter.stop()


@pytest.fixture
def branches(storage, emitter):
    return BranchManager(storage, emitter)


@pytest.fixture
def account_types(storage, emitter):
    return AccountTypeManager(storage, emitter)


@pytest.fixture
def sequencer(storage):
    return NumberSequencer(storage)


@pytest.fixture
def customers(storage, sequencer, branches, emitter):
    return CustomerManager(storage, sequencer, branches, emitter, clock=lambda: NOW)


@pytest.fixture
def account_manager(storage, customers, account_types, branches, sequencer, emitter):
    return AccountManager(storage, customers, account_types, branches, sequencer, emitter,
                          clock=lambda: NOW)


@pytest.fixture
def branch(branches):
    return branches.create_branch("001", "Makati Main")


@pytest.fixture
def savings(account_types):
    return account_types.create_account_type(
        "SA", "Regular Savings", AccountCategory.SAVINGS,
        interest_rate=Decimal("0.0025"),
        minimum_opening_balance=Decimal("500.00"),
    )


@pytest.fixture
def customer(customers, branch):
    return customers.create_customer(
        CustomerType.INDIVIDUAL, branch_id=branch.id,
        first_name="Maria", last_name="Santos",
    )


@pytest.fixture
def corporate(customers, branch):
    return customers.create_customer(
        CustomerType.CORPORATE, branch_id=branch.id, company_name="Santos Trading Corp",
    )


@pytest.fixture
def account(account_manager, customer, savings, branch):
    return account_manager.open_account(customer.id, savings.id, branch.id, Decimal("1000.00"),
                                        created_by="u-1")


def _zero_out(account_manager, account):
    return account_manager.update_balance(account.id, Decimal("0.00"), hold_amount=Decimal("0.00"))


class TestOpenAccount:
    """Test account opening"""

    def test_open_account(self, account, customer, savings, branch):
        assert account.account_number == "001SA26-0000001"
        assert account.account_name == "Santos, Maria"
        assert account.status == AccountStatus.ACTIVE
        assert account.current_balance == Decimal("1000.00")
        assert account.available_balance == Decimal("1000.00")
        assert account.hold_balance == Decimal("0.00")
        assert account.accrued_interest == Decimal("0.00")
        assert account.interest_rate == Decimal("0.0025")
        assert account.currency == "PHP"
        assert account.open_date == date(2026, 3, 1)
        assert account.last_interest_date == date(2026, 3, 1)
        assert account.created_by == "u-1"
        assert account.effective_interest_rate == Decimal("0.0025")

    def test_numbers_are_sequential(self, account_manager, account, customer, savings, branch):
        second = account_manager.open_account(customer.id, savings.id, branch.id, Decimal("600"))
        assert second.account_number == "001SA26-0000002"

    def test_explicit_account_name_and_flags(self, account_manager, customer, savings, branch):
        account = account_manager.open_account(
            customer.id, savings.id, branch.id, Decimal("800"),
            account_name="Maria Payroll", sms_notification_enabled=True, atm_enabled=False,
        )
        assert account.account_name == "Maria Payroll"
        assert account.sms_notification_enabled is True
        assert account.atm_enabled is False
        assert account.online_banking_enabled is True

    def test_corporate_account_named_after_company(self, account_manager, corporate, savings, branch):
        account = account_manager.open_account(corporate.id, savings.id, branch.id, Decimal("5000"))
        assert account.account_name == "Santos Trading Corp"

    def test_time_deposit_gets_maturity(self, account_manager, account_types, customer, branch):
        td = account_types.create_account_type("TD", "90-day Time Deposit", AccountCategory.TIME_DEPOSIT,
                                               term_days=90, currency="USD")
        account = account_manager.open_account(customer.id, td.id, branch.id, Decimal("10000"))

        assert account.maturity_date == date(2026, 5, 30)
        assert account.principal_amount == Decimal("10000.00")
        assert account.currency == "USD"
        assert account.account_number.startswith("001TD26-")

    @pytest.mark.parametrize("deposit", [Decimal("0"), Decimal("-5.00")])
    def test_deposit_must_be_positive(self, account_manager, customer, savings, branch, deposit):
        with pytest.raises(ValidationError):
            account_manager.open_account(customer.id, savings.id, branch.id, deposit)

    def test_deposit_with_sub_cent_precision_rejected(self, account_manager, customer, savings, branch):
        with pytest.raises(ValidationError):
            account_manager.open_account(customer.id, savings.id, branch.id, Decimal("1000.005"))

    def test_unknown_customer(self, account_manager, savings, branch):
        with pytest.raises(NotFoundError):
            account_manager.open_account("missing", savings.id, branch.id, Decimal("1000"))

    def test_inactive_customer(self, account_manager, customers, customer, savings, branch):
        customers.update_status(customer.id, CustomerStatus.BLOCKED)
        with pytest.raises(InactiveCustomerError):
            account_manager.open_account(customer.id, savings.id, branch.id, Decimal("1000"))

    def test_unknown_account_type(self, account_manager, customer, branch):
        with pytest.raises(NotFoundError):
            account_manager.open_account(customer.id, "missing", branch.id, Decimal("1000"))

    def test_inactive_account_type(self, account_manager, account_types, customer, savings, branch):
        account_types.set_status(savings.id, ProductStatus.INACTIVE)
        with pytest.raises(InactiveProductError):
            account_manager.open_account(customer.id, savings.id, branch.id, Decimal("1000"))

    def test_below_minimum_opening_balance(self, account_manager, customer, savings, branch, storage):
        with pytest.raises(BelowMinimumOpeningBalanceError) as exc_info:
            account_manager.open_account(customer.id, savings.id, branch.id, Decimal("499.99"))
        assert "500.00" in exc_info.value.message
        assert storage.count("accounts") == 0

        # no number was consumed by the rejected request
        account = account_manager.open_account(customer.id, savings.id, branch.id, Decimal("500.00"))
        assert account.account_number == "001SA26-0000001"

    def test_minimum_opening_balance_is_inclusive(self, account_manager, customer, savings, branch):
        account = account_manager.open_account(customer.id, savings.id, branch.id, Decimal("500.00"))
        assert account.current_balance == Decimal("500.00")

    def test_individual_not_eligible(self, account_manager, account_types, customer, branch):
        corp_only = account_types.create_account_type("CA", "Business Current", AccountCategory.CURRENT,
                                                      allow_individual=False)
        with pytest.raises(IneligibleCustomerTypeError):
            account_manager.open_account(customer.id, corp_only.id, branch.id, Decimal("1000"))

    def test_corporate_not_eligible(self, account_manager, account_types, corporate, branch):
        personal = account_types.create_account_type("PS", "Personal Savings", AccountCategory.SAVINGS,
                                                     allow_corporate=False)
        with pytest.raises(IneligibleCustomerTypeError):
            account_manager.open_account(corporate.id, personal.id, branch.id, Decimal("1000"))

    def test_unknown_branch(self, account_manager, customer, savings):
        with pytest.raises(NotFoundError):
            account_manager.open_account(customer.id, savings.id, "missing", Decimal("1000"))

    def test_customer_checked_before_product(self, account_manager, customers, account_types,
                                             customer, savings, branch):
        customers.update_status(customer.id, CustomerStatus.INACTIVE)
        account_types.set_status(savings.id, ProductStatus.INACTIVE)
        with pytest.raises(InactiveCustomerError):
            account_manager.open_account(customer.id, savings.id, branch.id, Decimal("1000"))

    def test_opening_is_audited(self, account, emitter, trail):
        emitter.flush()
        records = trail.get_records_for_entity("Account", account.id)
        assert [r.action for r in records] == [AuditAction.OPEN]
        assert records[0].module == AuditModule.CASA
        assert records[0].user_id == "u-1"

    def test_concurrent_opening_yields_unique_numbers(self, account_manager, customer, savings, branch):
        start = threading.Barrier(10)

        def open_one(_):
            start.wait()
            return account_manager.open_account(customer.id, savings.id, branch.id, Decimal("1000"))

        with ThreadPoolExecutor(max_workers=10) as pool:
            accounts = list(pool.map(open_one, range(30)))

        numbers = {a.account_number for a in accounts}
        assert len(numbers) == 30
        assert max(numbers) == "001SA26-0000030"


class TestTransitionTable:
    """Test validate_transition directly"""

    @pytest.mark.parametrize("current", [AccountStatus.ACTIVE, AccountStatus.DORMANT])
    def test_freeze_allowed(self, current):
        assert validate_transition(AccountOperation.FREEZE, current, Decimal("10")) == AccountStatus.FROZEN

    @pytest.mark.parametrize("current", [AccountStatus.PENDING, AccountStatus.FROZEN, AccountStatus.BLOCKED])
    def test_freeze_rejected(self, current):
        with pytest.raises(IllegalTransitionError):
            validate_transition(AccountOperation.FREEZE, current, Decimal("10"))

    @pytest.mark.parametrize("current", [AccountStatus.ACTIVE, AccountStatus.DORMANT, AccountStatus.BLOCKED])
    def test_unfreeze_requires_frozen(self, current):
        with pytest.raises(IllegalTransitionError):
            validate_transition(AccountOperation.UNFREEZE, current, Decimal("10"))

    def test_closed_is_terminal(self):
        for operation in (AccountOperation.FREEZE, AccountOperation.UNFREEZE):
            with pytest.raises(TerminalStateError):
                validate_transition(operation, AccountStatus.CLOSED, Decimal("0"))
        with pytest.raises(TerminalStateError):
            validate_transition(AccountOperation.UPDATE_STATUS, AccountStatus.CLOSED, Decimal("0"),
                                AccountStatus.ACTIVE)

    @pytest.mark.parametrize("target", list(AccountStatus))
    def test_closed_rejects_every_target(self, target):
        with pytest.raises(TerminalStateError):
            validate_transition(AccountOperation.UPDATE_STATUS, AccountStatus.CLOSED, Decimal("0"), target)

    def test_close_of_closed_account(self):
        with pytest.raises(AlreadyClosedError):
            validate_transition(AccountOperation.CLOSE, AccountStatus.CLOSED, Decimal("0"))

    @pytest.mark.parametrize("target", [AccountStatus.DORMANT, AccountStatus.FROZEN, AccountStatus.BLOCKED])
    def test_pending_only_activates_or_closes(self, target):
        with pytest.raises(IllegalTransitionError):
            validate_transition(AccountOperation.UPDATE_STATUS, AccountStatus.PENDING, Decimal("0"), target)
        assert validate_transition(AccountOperation.UPDATE_STATUS, AccountStatus.PENDING, Decimal("0"),
                                   AccountStatus.ACTIVE) == AccountStatus.ACTIVE

    @pytest.mark.parametrize("balance", [Decimal("0.01"), Decimal("-0.01")])
    def test_close_requires_zero_balance(self, balance):
        with pytest.raises(NonZeroBalanceError):
            validate_transition(AccountOperation.CLOSE, AccountStatus.ACTIVE, balance)

    def test_generic_update_to_closed_requires_zero_balance(self):
        with pytest.raises(NonZeroBalanceError):
            validate_transition(AccountOperation.UPDATE_STATUS, AccountStatus.ACTIVE, Decimal("5"),
                                AccountStatus.CLOSED)

    def test_generic_update_requires_target(self):
        with pytest.raises(ValidationError):
            validate_transition(AccountOperation.UPDATE_STATUS, AccountStatus.ACTIVE, Decimal("0"))


class TestLifecycle:
    """Test lifecycle operations through the manager"""

    def test_freeze_and_unfreeze(self, account_manager, account):
        frozen = account_manager.freeze(account.id, "Court order", frozen_by="u-2")
        assert frozen.status == AccountStatus.FROZEN
        assert frozen.status_reason == "Court order"
        assert frozen.updated_by == "u-2"

        active = account_manager.unfreeze(account.id, unfrozen_by="u-2")
        assert active.status == AccountStatus.ACTIVE
        assert active.status_reason is None

    def test_double_freeze_rejected(self, account_manager, account):
        account_manager.freeze(account.id, "Court order")
        with pytest.raises(IllegalTransitionError) as exc_info:
            account_manager.freeze(account.id, "Again")
        assert exc_info.value.current_status == AccountStatus.FROZEN

    def test_dormant_date_stamped(self, account_manager, account):
        dormant = account_manager.update_status(account.id, AccountStatus.DORMANT, reason="No activity")
        assert dormant.dormant_date == date(2026, 3, 1)
        assert account_manager.freeze(account.id, "Review").status == AccountStatus.FROZEN

    def test_close_with_balance_rejected(self, account_manager, account):
        account_manager.update_balance(account.id, Decimal("0.01"), hold_amount=Decimal("0"))
        with pytest.raises(NonZeroBalanceError):
            account_manager.close(account.id, "Customer request")
        assert account_manager.get_account(account.id).status == AccountStatus.ACTIVE

    def test_close(self, account_manager, account):
        _zero_out(account_manager, account)
        closed = account_manager.close(account.id, "Customer request", closed_by="u-3")

        assert closed.status == AccountStatus.CLOSED
        assert closed.close_date == date(2026, 3, 1)
        assert closed.closed_by == "u-3"
        assert closed.status_reason == "Customer request"
        assert closed.is_closed

    def test_closed_account_cannot_change(self, account_manager, account):
        _zero_out(account_manager, account)
        account_manager.close(account.id)

        with pytest.raises(AlreadyClosedError):
            account_manager.close(account.id)
        with pytest.raises(TerminalStateError):
            account_manager.update_status(account.id, AccountStatus.ACTIVE)
        with pytest.raises(TerminalStateError):
            account_manager.freeze(account.id, "Too late")

    @pytest.mark.parametrize("target", list(AccountStatus))
    def test_closed_account_rejects_every_target(self, account_manager, account, target):
        _zero_out(account_manager, account)
        account_manager.close(account.id)

        with pytest.raises(TerminalStateError):
            account_manager.update_status(account.id, target)
        assert account_manager.get_account(account.id).status == AccountStatus.CLOSED

    def test_frozen_account_can_be_closed(self, account_manager, account):
        account_manager.freeze(account.id, "Court order")
        _zero_out(account_manager, account)
        assert account_manager.close(account.id).status == AccountStatus.CLOSED

    def test_transitions_are_audited(self, account_manager, account, emitter, trail):
        account_manager.freeze(account.id, "Court order", frozen_by="u-2")
        account_manager.unfreeze(account.id, unfrozen_by="u-2")
        emitter.flush()

        actions = [r.action for r in trail.get_records_for_entity("Account", account.id)]
        assert actions == [AuditAction.OPEN, AuditAction.FREEZE, AuditAction.UNFREEZE]

    def test_concurrent_freeze_only_one_wins(self, account_manager, account):
        start = threading.Barrier(6)

        def freeze(_):
            start.wait()
            try:
                account_manager.freeze(account.id, "Race")
                return True
            except IllegalTransitionError:
                return False

        with ThreadPoolExecutor(max_workers=6) as pool:
            results = list(pool.map(freeze, range(6)))

        assert results.count(True) == 1


class TestBalancesAndUpdates:
    """Test balance and detail updates"""

    def test_update_balance_recomputes_available(self, account_manager, account):
        updated = account_manager.update_balance(account.id, Decimal("1500.00"), hold_amount=Decimal("200.00"))
        assert updated.current_balance == Decimal("1500.00")
        assert updated.hold_balance == Decimal("200.00")
        assert updated.available_balance == Decimal("1300.00")
        assert updated.last_transaction_date == NOW

    def test_update_balance_keeps_existing_hold(self, account_manager, account):
        account_manager.update_balance(account.id, Decimal("1000.00"), hold_amount=Decimal("100.00"))
        updated = account_manager.update_balance(account.id, Decimal("700.00"))
        assert updated.available_balance == Decimal("600.00")

    def test_negative_hold_rejected(self, account_manager, account):
        with pytest.raises(ValidationError):
            account_manager.update_balance(account.id, Decimal("100"), hold_amount=Decimal("-1"))

    def test_update_account_details(self, account_manager, account):
        updated = account_manager.update_account(account.id, account_name="Maria Savings",
                                                 remarks="VIP", updated_by="u-2")
        assert updated.account_name == "Maria Savings"
        assert updated.remarks == "VIP"
        assert account_manager.get_account_by_number(account.account_number).account_name == "Maria Savings"

    def test_to_money(self):
        assert to_money("12.5", "amount") == Decimal("12.50")
        with pytest.raises(ValidationError):
            to_money("12.345", "amount")
        with pytest.raises(ValidationError):
            to_money("abc", "amount")


class TestQueriesAndStats:
    """Test search and statistics"""

    @pytest.fixture
    def portfolio(self, account_manager, customer, corporate, savings, branch, branches):
        other_branch = branches.create_branch("002", "Cebu")
        accounts = [
            account_manager.open_account(customer.id, savings.id, branch.id, Decimal("1000.00")),
            account_manager.open_account(customer.id, savings.id, branch.id, Decimal("2500.50")),
            account_manager.open_account(corporate.id, savings.id, other_branch.id, Decimal("9000.00")),
        ]
        account_manager.update_status(accounts[1].id, AccountStatus.DORMANT)
        return accounts, other_branch

    def test_find_by_keyword(self, account_manager, portfolio):
        page = account_manager.find_accounts(keyword="trading")
        assert page.total == 1
        assert page.items[0].account_name == "Santos Trading Corp"

    def test_find_by_status(self, account_manager, portfolio):
        page = account_manager.find_accounts(status=AccountStatus.DORMANT)
        assert [a.status for a in page.items] == [AccountStatus.DORMANT]

    def test_pagination(self, account_manager, portfolio):
        first = account_manager.find_accounts(page=0, size=2)
        second = account_manager.find_accounts(page=1, size=2)

        assert first.total == 3
        assert first.total_pages == 2
        assert len(first.items) == 2
        assert len(second.items) == 1

    def test_customer_accounts(self, account_manager, portfolio, customer):
        accounts = account_manager.get_customer_accounts(customer.id)
        assert len(accounts) == 2
        dormant = account_manager.get_customer_accounts(customer.id, AccountStatus.DORMANT)
        assert len(dormant) == 1

    def test_stats(self, account_manager, portfolio):
        stats = account_manager.get_stats()
        assert stats.total_active == 2
        assert stats.total_dormant == 1
        assert stats.total_frozen == 0
        assert stats.total_closed == 0
        assert stats.total_active_balance == Decimal("10000.00")

    def test_branch_stats(self, account_manager, portfolio):
        _, other_branch = portfolio
        stats = account_manager.get_branch_stats(other_branch.id)
        assert stats.total_accounts == 1
        assert stats.total_balance == Decimal("9000.00")


class InterleavingSQLiteStorage(SQLiteStorage):
    """SQLite storage that starts queued work on another thread once a transaction opens"""

    def __init__(self):
        super().__init__(":memory:")
        self.on_transaction = None
        self.workers = []

    def begin_transaction(self):
        super().begin_transaction()
        work, self.on_transaction = self.on_transaction, None
        if work:
            worker = threading.Thread(target=work)
            worker.start()
            worker.join(timeout=0.5)
            self.workers.append(worker)

    def join_workers(self):
        for worker in self.workers:
            worker.join(timeout=10)
            assert not worker.is_alive()


class TestSQLiteBackedLifecycle:
    """Transitions and opening on the SQLite backend with writes from other threads"""

    @pytest.fixture
    def storage(self):
        storage = InterleavingSQLiteStorage()
        yield storage
        storage.close()

    def test_transition_persists(self, account_manager, account, storage):
        account_manager.freeze(account.id, "Court order")
        assert storage.load("accounts", account.id)["status"] == "FROZEN"

    def test_rejected_close_keeps_concurrent_open(self, account_manager, account, storage,
                                                  customer, savings, branch):
        opened = []
        storage.on_transaction = lambda: opened.append(
            account_manager.open_account(customer.id, savings.id, branch.id, Decimal("700.00")))

        with pytest.raises(NonZeroBalanceError):
            account_manager.close(account.id)
        storage.join_workers()

        assert opened[0].account_number == "001SA26-0000002"
        assert storage.load("accounts", opened[0].id) is not None
        assert account_manager.get_account(account.id).status == AccountStatus.ACTIVE

        third = account_manager.open_account(customer.id, savings.id, branch.id, Decimal("700.00"))
        assert third.account_number == "001SA26-0000003"

    def test_audit_written_during_rejected_transition_survives(self, account_manager, account, storage,
                                                               emitter, trail):
        emitter.flush()
        storage.on_transaction = lambda: trail.record(
            AuditAction.LOGIN, AuditModule.AUTHENTICATION, "User", "u-9")

        with pytest.raises(IllegalTransitionError):
            account_manager.unfreeze(account.id)
        storage.join_workers()

        assert [r.entity_id for r in trail.search(action=AuditAction.LOGIN)] == ["u-9"]
        account_manager.freeze(account.id, "Court order")
        emitter.flush()
        assert trail.verify_integrity()['valid'] is True

    def test_concurrent_opens_and_closes(self, account_manager, customer, savings, branch, storage):
        start = threading.Barrier(8)

        def open_then_try_close(_):
            start.wait()
            account = account_manager.open_account(customer.id, savings.id, branch.id, Decimal("1000"))
            try:
                account_manager.close(account.id)
            except NonZeroBalanceError:
                pass
            return account

        with ThreadPoolExecutor(max_workers=8) as pool:
            accounts = list(pool.map(open_then_try_close, range(16)))

        assert len({a.account_number for a in accounts}) == 16
        assert storage.count("accounts") == 16
        assert all(storage.load("accounts", a.id) is not None for a in accounts)
