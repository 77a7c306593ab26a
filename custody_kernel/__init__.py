"""
Custody Kernel - dual-control custody engine

A fund-authorization engine mediating value between a primary controller,
an executor and a restricted depositor:
- Automatic redirection of depositor inflows above a dynamic threshold
- Dual-control (controller + executor) approval of outbound asset transfers
- Oracle-fed threshold recomputation
- Pause circuit breaker and reentrancy latch
- Atomic operations with a hash-chained audit trail
"""

__version__ = "0.1.0"
