# backend/shopledger/offline/transport.py
"""
HTTP client for the shop backend.

Splits failures the way the queue needs them split:
- no HTTP response at all (connect/read/write error, timeout) -> ConnectivityError
- any non-2xx response -> ServerRejectedError
"""
from __future__ import annotations

import logging

import httpx

from .errors import ConnectivityError, ServerRejectedError

logger = logging.getLogger(__name__)

INVENTORY_PREFIX = "/api/inventory"
FINANCE_PREFIX = "/api/finance"

PRODUCTS_PATH = f"{INVENTORY_PREFIX}/products"
SALES_PATH = f"{FINANCE_PREFIX}/sales"
EXPENSES_PATH = f"{FINANCE_PREFIX}/expenses"
REPORT_PATH = f"{FINANCE_PREFIX}/report"

ENTITY_PATHS = {
    "products": PRODUCTS_PATH,
    "sales": SALES_PATH,
    "expenses": EXPENSES_PATH,
}


def _error_message(response: httpx.Response) -> tuple[str, dict]:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or response.reason_phrase or "Request failed"), {}
    if isinstance(payload, dict):
        return str(payload.get("error") or response.reason_phrase or "Request failed"), payload
    return (response.reason_phrase or "Request failed"), {}


class ApiClient:
    def __init__(self, base_url: str, *, timeout: float = 10.0, transport: httpx.BaseTransport | None = None):
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def request(self, method: str, path: str, body=None, params: dict | None = None):
        """Send one request and return the decoded JSON body (None when empty)."""
        try:
            response = self._client.request(method, path, json=body, params=params)
        except httpx.TransportError as exc:
            logger.info("Backend unreachable for %s %s: %s", method, path, exc)
            raise ConnectivityError(str(exc) or exc.__class__.__name__) from exc

        if response.is_error:
            message, payload = _error_message(response)
            raise ServerRejectedError(response.status_code, message, payload)

        if not response.content:
            return None
        return response.json()

    def get(self, path: str, params: dict | None = None):
        return self.request("GET", path, params=params)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
