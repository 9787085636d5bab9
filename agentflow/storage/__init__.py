"""Storage backends and the execution ledger."""

from agentflow.storage.backend import FileStorage, StorageBackend
from agentflow.storage.ledger import ExecutionLedger

__all__ = ["StorageBackend", "FileStorage", "ExecutionLedger"]
