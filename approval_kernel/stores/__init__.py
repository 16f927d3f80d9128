"""Reference adapters for the persistence ports (in-memory and SQLAlchemy)."""

from approval_kernel.stores.memory import (
    InMemoryDecisionStore,
    InMemoryInstanceStore,
    InMemoryRuleStore,
)
from approval_kernel.stores.sql_store import (
    SqlDecisionStore,
    SqlInstanceStore,
    SqlRuleStore,
)

__all__ = [
    "InMemoryDecisionStore",
    "InMemoryInstanceStore",
    "InMemoryRuleStore",
    "SqlDecisionStore",
    "SqlInstanceStore",
    "SqlRuleStore",
]
