"""
Outbound calls to the ledger collaborators.

Each helper invokes a collaborator with the full amount, checks its boolean
result and converts both a False result and a raised exception into the
matching CollaboratorFailure.  The caller's unit of work then rolls back.
"""

from __future__ import annotations

from custody_kernel.domain.collaborators import AssetLedger, ValueLedger
from custody_kernel.exceptions import AssetTransferFailedError, ValueTransferFailedError
from custody_kernel.logging_config import get_logger

logger = get_logger("services.ledger_calls")


def send_value(ledger: ValueLedger, destination: str, amount: int) -> None:
    """Move native value out of the custody account.

    Raises:
        ValueTransferFailedError: the ledger refused or raised.
    """
    try:
        ok = ledger.transfer(destination, amount)
    except Exception as exc:
        logger.error(
            "value_transfer_raised",
            extra={"destination": destination, "amount": amount},
            exc_info=True,
        )
        raise ValueTransferFailedError(destination, amount, str(exc)) from exc

    if not ok:
        logger.error(
            "value_transfer_refused",
            extra={"destination": destination, "amount": amount},
        )
        raise ValueTransferFailedError(destination, amount, "refused by ledger")


def pull_asset(
    asset: AssetLedger,
    owner: str,
    destination: str,
    amount: int,
) -> None:
    """Move the managed asset from ``owner`` using the custody allowance.

    Raises:
        AssetTransferFailedError: the asset refused or raised.
    """
    try:
        ok = asset.transfer_from(owner, destination, amount)
    except Exception as exc:
        logger.error(
            "asset_transfer_raised",
            extra={"owner": owner, "destination": destination, "amount": amount},
            exc_info=True,
        )
        raise AssetTransferFailedError(owner, destination, amount, str(exc)) from exc

    if not ok:
        logger.error(
            "asset_transfer_refused",
            extra={"owner": owner, "destination": destination, "amount": amount},
        )
        raise AssetTransferFailedError(owner, destination, amount, "refused by asset")
