"""Script selection, transaction management, retry and per-script execution."""

from .hooks import CompositeHooks, MigrationHooks, as_hooks
from .retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    RetryContext,
    RetryStrategy,
    is_callback_retriable,
    is_sql_retriable,
)
from .runner import MigrationRunner, TransactionScope
from .selector import (
    ScriptSelector,
    get_ignored,
    get_migrated_down_to,
    get_migrated_in_range,
    get_pending,
    get_pending_up_to,
)
from .transactions import (
    CallbackTransactionManager,
    ImperativeTransactionManager,
    TransactionManager,
    create_transaction_manager,
    transaction_manager_for,
)

__all__ = [
    "CompositeHooks",
    "MigrationHooks",
    "as_hooks",
    "ConstantBackoff",
    "ExponentialBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "is_callback_retriable",
    "is_sql_retriable",
    "MigrationRunner",
    "TransactionScope",
    "ScriptSelector",
    "get_ignored",
    "get_migrated_down_to",
    "get_migrated_in_range",
    "get_pending",
    "get_pending_up_to",
    "CallbackTransactionManager",
    "ImperativeTransactionManager",
    "TransactionManager",
    "create_transaction_manager",
    "transaction_manager_for",
]
