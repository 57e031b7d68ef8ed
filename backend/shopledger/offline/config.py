# backend/shopledger/offline/config.py
from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class AgentConfig:
    """Device engine settings. Everything can be overridden from the environment."""

    api_base: str = "http://localhost:5000"
    cache_path: str = "shopledger_device.sqlite3"
    # Seconds. A request that runs past this counts as a connectivity failure.
    timeout: float = 10.0

    @classmethod
    def from_env(cls, environ=None) -> "AgentConfig":
        env = os.environ if environ is None else environ
        timeout_raw = env.get("SHOPLEDGER_TIMEOUT")
        try:
            timeout = float(timeout_raw) if timeout_raw else cls.timeout
        except ValueError:
            raise ValueError(f"SHOPLEDGER_TIMEOUT must be a number, got {timeout_raw!r}")

        return cls(
            api_base=env.get("SHOPLEDGER_API_BASE") or cls.api_base,
            cache_path=env.get("SHOPLEDGER_CACHE_PATH") or cls.cache_path,
            timeout=timeout,
        )
