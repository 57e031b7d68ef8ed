# backend/shopledger/offline/errors.py
"""
Device error taxonomy.

- LocalValidationError: rejected before any mutation, nothing sent or queued
- ConnectivityError: the server could not be reached; the action is queued
- ServerRejectedError: the server answered non-2xx; never queued
"""


class LocalValidationError(ValueError):
    """Input rejected on the device."""
    pass


class ConnectivityError(Exception):
    """The request never produced an HTTP response (connect, read or timeout failure)."""
    pass


class ServerRejectedError(Exception):
    """The server answered with a non-2xx status."""

    def __init__(self, status: int, message: str, payload: dict | None = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.payload = payload or {}

    def __str__(self) -> str:
        return f"{self.status}: {self.message}"
