"""
Test suite for customers, branches and account types

Tests CIF numbering, profile validation, status changes, KYC verification,
and the branch and product registries the account module depends on.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from secbank.branches import BranchManager
from secbank.customers import CustomerManager, CustomerStatus, CustomerType, Gender
from secbank.exceptions import ConflictError, NotFoundError
from secbank.numbering import NumberSequencer
from secbank.products import AccountCategory, AccountTypeManager, ProductStatus
from secbank.storage import InMemoryStorage


NOW = datetime(2026, 7, 15, 14, 30, tzinfo=timezone.utc)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def branches(storage):
    return BranchManager(storage)


@pytest.fixture
def customers(storage, branches):
    return CustomerManager(storage, NumberSequencer(storage), branches, clock=lambda: NOW)


@pytest.fixture
def account_types(storage):
    return AccountTypeManager(storage)


class TestCustomerCreation:
    """Test customer creation"""

    def test_individual_cif_number(self, customers):
        customer = customers.create_customer(
            CustomerType.INDIVIDUAL, first_name="Juan", last_name="Dela Cruz",
            date_of_birth=date(1990, 4, 2), gender=Gender.MALE,
        )
        assert customer.customer_number == "CIF26I000001"
        assert customer.status == CustomerStatus.ACTIVE
        assert customer.display_name == "Dela Cruz, Juan"

    def test_corporate_sequence_is_separate(self, customers):
        customers.create_customer(CustomerType.INDIVIDUAL, first_name="Juan", last_name="Dela Cruz")
        corp = customers.create_customer(CustomerType.CORPORATE, company_name="Acme Holdings")
        assert corp.customer_number == "CIF26C000001"
        assert corp.display_name == "Acme Holdings"

    def test_numbers_increment(self, customers):
        numbers = [
            customers.create_customer(CustomerType.INDIVIDUAL, first_name=f"N{i}", last_name="X").customer_number
            for i in range(3)
        ]
        assert numbers == ["CIF26I000001", "CIF26I000002", "CIF26I000003"]

    def test_unknown_branch(self, customers):
        with pytest.raises(NotFoundError):
            customers.create_customer(CustomerType.INDIVIDUAL, branch_id="missing",
                                      first_name="Juan", last_name="Dela Cruz")

    def test_unknown_profile_field(self, customers):
        with pytest.raises(TypeError):
            customers.create_customer(CustomerType.INDIVIDUAL, shoe_size=42)

    def test_round_trip_through_storage(self, customers):
        created = customers.create_customer(
            CustomerType.INDIVIDUAL, first_name="Juan", last_name="Dela Cruz",
            date_of_birth=date(1990, 4, 2), gender=Gender.MALE,
        )
        loaded = customers.get_customer_by_number(created.customer_number)
        assert loaded.date_of_birth == date(1990, 4, 2)
        assert loaded.gender == Gender.MALE


class TestCustomerLifecycle:
    """Test status and KYC"""

    def test_update_status(self, customers):
        customer = customers.create_customer(CustomerType.INDIVIDUAL, first_name="Juan", last_name="Cruz")
        customers.update_status(customer.id, CustomerStatus.BLOCKED, updated_by="u-1")
        assert customers.get_customer(customer.id).status == CustomerStatus.BLOCKED

    def test_verify_kyc(self, customers):
        customer = customers.create_customer(CustomerType.INDIVIDUAL, first_name="Juan", last_name="Cruz")
        verified = customers.verify_kyc(customer.id, verified_by="u-1")

        assert verified.kyc_verified is True
        assert customers.get_customer(customer.id).kyc_verified_date == NOW

    def test_list_by_type(self, customers):
        customers.create_customer(CustomerType.INDIVIDUAL, first_name="Juan", last_name="Cruz")
        customers.create_customer(CustomerType.CORPORATE, company_name="Acme Holdings")
        corporates = customers.list_customers(customer_type=CustomerType.CORPORATE)
        assert [c.company_name for c in corporates] == ["Acme Holdings"]

    def test_missing_customer(self, customers):
        with pytest.raises(NotFoundError) as exc_info:
            customers.get_customer("missing")
        assert exc_info.value.http_status == 404


class TestBranchesAndProducts:
    """Test reference data registries"""

    def test_duplicate_branch_code(self, branches):
        branches.create_branch("001", "Makati Main")
        with pytest.raises(ConflictError):
            branches.create_branch("001", "Makati Annex")

    def test_find_branch_by_code(self, branches):
        created = branches.create_branch("001", "Makati Main", city="Makati")
        assert branches.find_branch_by_code("001").id == created.id
        assert branches.find_branch_by_code("999") is None

    def test_account_type_terms(self, account_types):
        created = account_types.create_account_type(
            "SA", "Regular Savings", AccountCategory.SAVINGS,
            minimum_opening_balance=Decimal("500.00"), allow_corporate=False,
        )
        loaded = account_types.get_account_type(created.id)
        assert loaded.minimum_opening_balance == Decimal("500.00")
        assert loaded.allow_corporate is False
        assert loaded.category == AccountCategory.SAVINGS

    def test_unknown_account_type_field(self, account_types):
        with pytest.raises(TypeError):
            account_types.create_account_type("SA", "Savings", AccountCategory.SAVINGS, colour="blue")

    def test_deactivate_account_type(self, account_types):
        created = account_types.create_account_type("SA", "Regular Savings", AccountCategory.SAVINGS)
        account_types.set_status(created.id, ProductStatus.INACTIVE)
        assert account_types.list_account_types(ProductStatus.ACTIVE) == []
