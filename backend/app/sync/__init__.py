"""
Sync Module

Scheduling, orchestration and idempotent import of transactions from
connection providers (bank aggregators, crypto exchanges, manual uploads).
"""

from .orchestrator import SyncOrchestrator
from .scheduler import SyncScheduler
from .dispatcher import SyncDispatcher
from .encryption import ConfigEncryption
from .importer import TransactionImporter, ImportedTransaction, ImportOutcome
from .failures import FailureKind, classify_failure
from .service import ConnectionService, ConnectionNotFoundError

__all__ = [
    'SyncOrchestrator',
    'SyncScheduler',
    'SyncDispatcher',
    'ConfigEncryption',
    'TransactionImporter',
    'ImportedTransaction',
    'ImportOutcome',
    'FailureKind',
    'classify_failure',
    'ConnectionService',
    'ConnectionNotFoundError',
]
