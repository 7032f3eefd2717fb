"""
Account and Customer Number Generation

Account numbers:  {branch[:3]}{type[:2]}{yy}-{seq:07d}   e.g. 001SA26-0000001
Customer numbers: CIF{yy}{I|C}{seq:06d}                   e.g. CIF26I000001

The sequence is the highest existing number under the same prefix plus one.
Read-max, format and persist run under a per-prefix lock, and the persist
step is a unique save, so a collision is retried rather than duplicated.
"""

import logging
from datetime import date
from typing import Callable, Optional, TypeVar

from .exceptions import ConflictError
from .storage import LockStripes, StorageInterface


logger = logging.getLogger(__name__)

T = TypeVar("T")


def year_suffix(today: date) -> str:
    return f"{today.year % 100:02d}"


def account_number_prefix(branch_code: str, type_code: str, today: date) -> str:
    return branch_code[:3] + type_code[:2] + year_suffix(today)


def customer_number_prefix(customer_type_code: str, today: date) -> str:
    """customer_type_code is "I" for individuals, "C" for corporates"""
    return "CIF" + year_suffix(today) + customer_type_code


def _next_sequence(prefix: str, max_existing: Optional[str]) -> int:
    if not max_existing or len(max_existing) <= len(prefix):
        return 1
    try:
        return int(max_existing[len(prefix):].replace("-", "")) + 1
    except ValueError:
        return 1


def next_account_number(prefix: str, max_existing: Optional[str]) -> str:
    """
    >>> next_account_number("001SA26", "001SA26-0000007")
    '001SA26-0000008'
    """
    return f"{prefix}-{_next_sequence(prefix, max_existing):07d}"


def next_customer_number(prefix: str, max_existing: Optional[str]) -> str:
    return f"{prefix}{_next_sequence(prefix, max_existing):06d}"


class NumberSequencer:
    """Serializes number allocation per (table, prefix)"""

    def __init__(self, storage: StorageInterface, max_retries: int = 3):
        self.storage = storage
        self.max_retries = max(1, max_retries)
        self._lock_for = LockStripes()

    def allocate(self, table: str, field_name: str, prefix: str,
                 formatter: Callable[[str, Optional[str]], str],
                 persist: Callable[[str], T]) -> T:
        """
        Generate the next number under ``prefix`` and hand it to ``persist``

        Args:
            table: Table holding the numbered records
            field_name: Field carrying the number
            prefix: Number prefix
            formatter: Builds the next number from the prefix and current max
            persist: Saves the record with the number; must raise
                ConflictError on a duplicate

        Returns:
            Whatever ``persist`` returns

        Raises:
            ConflictError: every attempt collided with an existing number
        """
        with self._lock_for((table, prefix)):
            last_error: Optional[ConflictError] = None
            for attempt in range(1, self.max_retries + 1):
                max_existing = self.storage.find_max_with_prefix(table, field_name, prefix)
                number = formatter(prefix, max_existing)
                try:
                    return persist(number)
                except ConflictError as e:
                    if e.field != field_name:
                        raise
                    last_error = e
                    logger.warning("Number %s already taken (attempt %d/%d)",
                                   number, attempt, self.max_retries)
            raise last_error
