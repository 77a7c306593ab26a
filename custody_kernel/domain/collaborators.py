"""
External collaborator interfaces (``custody_kernel.domain.collaborators``).

The host ledger, the managed asset and the price oracle live outside this
system.  The kernel consumes them only through these protocols; integrators
supply adapters.  Every call into a collaborator hands control to foreign
code, which is why the calling services hold the reentrancy guard.
"""

from __future__ import annotations

from typing import Protocol


class ValueLedger(Protocol):
    """Native value held by the custody account."""

    def transfer(self, destination: str, amount: int) -> bool:
        """Send ``amount`` from the custody account; False means refused."""
        ...

    def balance_of(self, identity: str) -> int:
        """Native balance of ``identity``."""
        ...

    def is_contract(self, identity: str) -> bool:
        """True when ``identity`` is code-controlled rather than a key holder."""
        ...


class AssetLedger(Protocol):
    """Managed fungible asset (transfer_from / allowance subset)."""

    def transfer_from(self, owner: str, destination: str, amount: int) -> bool:
        """Move ``amount`` from ``owner`` using the custody account's allowance."""
        ...

    def balance_of(self, identity: str) -> int:
        ...

    def allowance(self, owner: str, spender: str) -> int:
        ...


class PriceOracle(Protocol):
    """Asynchronous price source; answers later through ``fulfill``."""

    def request(self, job_id: str, fee: int) -> str:
        """Submit a price request and return its correlation id."""
        ...
