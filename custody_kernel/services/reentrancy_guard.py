"""
ReentrancyGuard -- single-flag latch around operations that call out.

Redirection, transfer execution and the administrative sweeps hand control
to a ledger collaborator.  That collaborator may call straight back into the
orchestrator on the same thread; the latch makes any such nested guarded
call fail instead of observing half-finished state.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from custody_kernel.exceptions import ReentrantCallError
from custody_kernel.logging_config import get_logger

logger = get_logger("services.reentrancy_guard")


class ReentrancyGuard:
    """In-memory latch shared by every unit of work of one orchestrator."""

    def __init__(self) -> None:
        self._active_operation: str | None = None

    @property
    def locked(self) -> bool:
        return self._active_operation is not None

    @property
    def active_operation(self) -> str | None:
        return self._active_operation

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        """Take the latch for the duration of ``operation``.

        Raises:
            ReentrantCallError: another guarded operation is in flight.
        """
        if self._active_operation is not None:
            logger.warning(
                "reentrant_call_blocked",
                extra={
                    "attempted_operation": operation,
                    "active_operation": self._active_operation,
                },
            )
            raise ReentrantCallError(operation, self._active_operation)

        self._active_operation = operation
        try:
            yield
        finally:
            self._active_operation = None
