# backend/shopledger/offline/__init__.py
"""
Device-side engine.

Keeps a durable local cache and a FIFO queue of unconfirmed writes so the shop
keeps working while the backend is unreachable, then replays the queue in order.
"""
from .config import AgentConfig
from .engine import AppState, ReconciliationEngine, SyncResult
from .errors import ConnectivityError, LocalValidationError, ServerRejectedError
from .ids import Confirmed, Temporary, parse_record_id

__all__ = [
    "AgentConfig",
    "AppState",
    "ReconciliationEngine",
    "SyncResult",
    "ConnectivityError",
    "LocalValidationError",
    "ServerRejectedError",
    "Confirmed",
    "Temporary",
    "parse_record_id",
]
