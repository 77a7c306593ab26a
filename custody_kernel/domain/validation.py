"""
Input validation shared by the custody services.

Pure checks with no I/O.  Amounts are integers in the ledger's smallest
unit; identities are non-empty ledger address strings.
"""

from __future__ import annotations

from custody_kernel.exceptions import InvalidAmountError, InvalidIdentityError


def require_positive_amount(amount: object) -> int:
    """Return ``amount`` if it is a positive int, else raise InvalidAmountError."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


def require_identity(field_name: str, value: object) -> str:
    """Reject empty, blank or non-string identities."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidIdentityError(field_name, value)
    return value
