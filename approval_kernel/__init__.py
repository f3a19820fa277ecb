"""
Approval Kernel

Tiered approval workflow core for plant-operations requests:
- Amount-driven tier selection
- Exactly one active tier per chain
- Compare-and-swap tier transitions (no lost decisions)
- Append-only decision log
- Unified pending-approvals queue
"""

__version__ = "0.1.0"
