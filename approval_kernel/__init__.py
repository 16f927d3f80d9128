"""
Approval Kernel

Domain types, state machines, error taxonomy, structured logging and
reference persistence for the approval workflow engine:
- Rule, instance, step and decision records
- Per-step ALL / ANY / QUORUM aggregation
- Optimistic per-instance concurrency
- Append-only decision log
"""

__version__ = "0.1.0"
