# backend/shopledger/offline/ids.py
"""
Record identifiers.

A record created on the device carries a Temporary id ("tmp-<ms>-<n>") until the
server confirms it, after which every local reference is rewritten to the
Confirmed server id.
"""
from __future__ import annotations

import itertools
import time
from dataclasses import dataclass
from typing import Union

TEMP_PREFIX = "tmp-"

_counter = itertools.count(1)


@dataclass(frozen=True)
class Temporary:
    local_id: str

    @property
    def wire(self) -> str:
        return self.local_id

    def __str__(self) -> str:
        return self.local_id


@dataclass(frozen=True)
class Confirmed:
    server_id: int

    @property
    def wire(self) -> int:
        return self.server_id

    def __str__(self) -> str:
        return str(self.server_id)


RecordId = Union[Temporary, Confirmed]


def new_temporary_id() -> Temporary:
    # the counter keeps ids unique within one millisecond
    return Temporary(f"{TEMP_PREFIX}{int(time.time() * 1000)}-{next(_counter)}")


def is_temporary(value) -> bool:
    if isinstance(value, Temporary):
        return True
    return isinstance(value, str) and value.startswith(TEMP_PREFIX)


def parse_record_id(value) -> RecordId:
    """Accept an id object, a server int, a numeric string or a tmp- string."""
    if isinstance(value, (Temporary, Confirmed)):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid record id {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError(f"invalid record id {value!r}")
        return Confirmed(value)
    if isinstance(value, str):
        s = value.strip()
        if s.startswith(TEMP_PREFIX) and len(s) > len(TEMP_PREFIX):
            return Temporary(s)
        if s.isdigit() and int(s) > 0:
            return Confirmed(int(s))
    raise ValueError(f"invalid record id {value!r}")
