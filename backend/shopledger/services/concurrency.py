# Overview: Unit-of-work and row-locking primitives shared by every stock-affecting service.

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterable, Iterator

from ..extensions import db
from ..models import Product


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE (it serializes writers at the
    database level instead), but other DBs will honor it.
    """
    return query.with_for_update()


def lock_products(product_ids: Iterable[int]) -> dict[int, Product]:
    """
    Lock every referenced product row, in ascending id order, and return them by id.

    A single ordered SELECT ... FOR UPDATE means two sales touching the same
    products always acquire their locks in the same sequence. Missing ids are
    simply absent from the result; callers decide how to report them.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    query = (
        db.session.query(Product)
        .filter(Product.id.in_(ids))
        .order_by(Product.id.asc())
    )
    return {p.id: p for p in lock_for_update(query).all()}


@contextmanager
def atomic() -> Iterator:
    """
    Scoped unit of work: commit on success, roll back on any exception.

    Nothing is retried here. A failed unit of work leaves no partial state and
    the error propagates to the route, which reports it to the caller.
    """
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
