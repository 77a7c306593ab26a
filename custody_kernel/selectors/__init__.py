"""Selectors for the custody kernel (read side)."""

from custody_kernel.selectors.custody_selector import CustodySelector

__all__ = [
    "CustodySelector",
]
