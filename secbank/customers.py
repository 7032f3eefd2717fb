"""
Customer Management Module

Customer Information File (CIF) records for individuals and corporates,
customer status and KYC verification.
"""

import logging
import uuid
from dataclasses import dataclass, fields
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .audit import AuditAction, AuditEmitter, AuditModule
from .branches import BranchManager
from .exceptions import NotFoundError
from .numbering import NumberSequencer, customer_number_prefix, next_customer_number
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger(__name__)


class CustomerType(Enum):
    INDIVIDUAL = "INDIVIDUAL"
    CORPORATE = "CORPORATE"

    @property
    def number_code(self) -> str:
        return "I" if self == CustomerType.INDIVIDUAL else "C"


class CustomerStatus(Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    BLOCKED = "BLOCKED"
    DECEASED = "DECEASED"


class Gender(Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class IdType(Enum):
    PASSPORT = "PASSPORT"
    NATIONAL_ID = "NATIONAL_ID"
    DRIVERS_LICENSE = "DRIVERS_LICENSE"
    SSS = "SSS"
    GSIS = "GSIS"
    TIN = "TIN"
    COMPANY_ID = "COMPANY_ID"
    OTHER = "OTHER"


class RiskRating(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


_ENUM_FIELDS = {
    'customer_type': CustomerType,
    'status': CustomerStatus,
    'gender': Gender,
    'id_type': IdType,
    'risk_rating': RiskRating,
}
_DATE_FIELDS = ('date_of_birth', 'date_of_incorporation', 'id_expiry_date')
_SYSTEM_FIELDS = {'id', 'created_at', 'updated_at', 'customer_number', 'customer_type', 'status',
                  'kyc_verified', 'kyc_verified_date', 'kyc_verified_by', 'created_by', 'updated_by'}


@dataclass
class Customer(StorageRecord):
    """
    Customer profile. Individuals carry personal names; corporates carry
    company details.
    """
    customer_number: str
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
    kyc_verified: bool = False
    kyc_verified_date: Optional[datetime] = None
    kyc_verified_by: Optional[str] = None
    branch_id: Optional[str] = None
    relationship_manager: Optional[str] = None
    status: CustomerStatus = CustomerStatus.ACTIVE
    remarks: Optional[str] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None

    @property
    def display_name(self) -> str:
        """Default account title: "Last, First" or the company name"""
        if self.customer_type == CustomerType.CORPORATE:
            return self.company_name or ""
        return f"{self.last_name}, {self.first_name}"


class CustomerManager:
    """
    Manages customer lifecycle and KYC verification
    """

    def __init__(self, storage: StorageInterface, sequencer: NumberSequencer,
                 branches: BranchManager, audit: Optional[AuditEmitter] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self.sequencer = sequencer
        self.branches = branches
        self.audit = audit
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.table_name = "customers"

    def create_customer(self, customer_type: CustomerType, branch_id: Optional[str] = None,
                        created_by: Optional[str] = None, **profile) -> Customer:
        """
        Create a customer with a freshly generated CIF number

        Args:
            customer_type: INDIVIDUAL or CORPORATE
            branch_id: Home branch, validated when given
            created_by: Acting user
            **profile: Name, contact, address and identification fields

        Returns:
            Created Customer

        Raises:
            NotFoundError: branch does not exist
        """
        unknown = set(profile) - ({f.name for f in fields(Customer)} - _SYSTEM_FIELDS)
        if unknown:
            raise TypeError(f"Unknown customer fields: {', '.join(sorted(unknown))}")
        if branch_id is not None:
            self.branches.get_branch(branch_id)

        now = self.clock()
        prefix = customer_number_prefix(customer_type.number_code, now.date())

        def persist(customer_number: str) -> Customer:
            customer = Customer(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                customer_number=customer_number,
                customer_type=customer_type,
                branch_id=branch_id,
                created_by=created_by,
                **profile,
            )
            self.storage.save_unique(self.table_name, customer.id, customer.to_dict(), ['customer_number'])
            return customer

        customer = self.sequencer.allocate(
            self.table_name, 'customer_number', prefix, next_customer_number, persist
        )

        if self.audit:
            self.audit.log_action(created_by, AuditAction.CREATE, AuditModule.CUSTOMER,
                                  "Customer", customer.id, new_value=customer,
                                  description=f"Customer {customer.customer_number} created")
        logger.info("Customer created: %s", customer.customer_number)
        return customer

    def get_customer(self, customer_id: str) -> Customer:
        """Get customer by ID"""
        data = self.storage.load(self.table_name, customer_id)
        if not data:
            raise NotFoundError("Customer", "id", customer_id)
        return self._customer_from_dict(data)

    def get_customer_by_number(self, customer_number: str) -> Customer:
        matches = self.storage.find(self.table_name, {'customer_number': customer_number})
        if not matches:
            raise NotFoundError("Customer", "customerNumber", customer_number)
        return self._customer_from_dict(matches[0])

    def list_customers(self, customer_type: Optional[CustomerType] = None,
                       status: Optional[CustomerStatus] = None) -> List[Customer]:
        filters: Dict[str, Any] = {}
        if customer_type:
            filters['customer_type'] = customer_type.value
        if status:
            filters['status'] = status.value
        customers = [self._customer_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        return sorted(customers, key=lambda c: c.customer_number)

    def update_status(self, customer_id: str, status: CustomerStatus,
                      updated_by: Optional[str] = None) -> Customer:
        """Change customer status"""
        customer = self.get_customer(customer_id)
        old_status = customer.status
        customer.status = status
        customer.updated_by = updated_by
        customer.updated_at = self.clock()
        self.storage.save(self.table_name, customer.id, customer.to_dict())

        if self.audit:
            self.audit.log_action(updated_by, AuditAction.UPDATE_STATUS, AuditModule.CUSTOMER,
                                  "Customer", customer.id,
                                  old_value={'status': old_status.value},
                                  new_value={'status': status.value})
        return customer

    def verify_kyc(self, customer_id: str, verified_by: Optional[str] = None) -> Customer:
        """Mark the customer's KYC as verified"""
        customer = self.get_customer(customer_id)
        customer.kyc_verified = True
        customer.kyc_verified_date = self.clock()
        customer.kyc_verified_by = verified_by
        customer.updated_by = verified_by
        customer.updated_at = customer.kyc_verified_date
        self.storage.save(self.table_name, customer.id, customer.to_dict())

        if self.audit:
            self.audit.log_action(verified_by, AuditAction.VERIFY_KYC, AuditModule.CUSTOMER,
                                  "Customer", customer.id,
                                  description=f"KYC verified for {customer.customer_number}")
        return customer

    def _customer_from_dict(self, data: Dict[str, Any]) -> Customer:
        for key, enum_cls in _ENUM_FIELDS.items():
            if data.get(key):
                data[key] = enum_cls(data[key])
        for key in _DATE_FIELDS:
            if data.get(key):
                data[key] = date.fromisoformat(data[key])
        if data.get('kyc_verified_date'):
            data['kyc_verified_date'] = datetime.fromisoformat(data['kyc_verified_date'])
        return Customer.from_dict(data)
