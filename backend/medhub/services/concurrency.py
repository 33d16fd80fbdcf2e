# Overview: Row locking, retry and conditional stock update helpers shared by the order services.

from __future__ import annotations

import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import ProviderOffering


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls back the
    session and propagates, so a failed operation never leaves pending
    changes behind for a later commit.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def reserve_stock(provider_id: int, item_id: int, quantity: int) -> bool:
    """
    Conditionally decrement a stock-tracked offering.

    UPDATE ... SET stock = stock - n WHERE stock >= n; the affected row
    count tells whether the reservation won. Offerings without stock
    tracking (stock IS NULL) are never touched and always succeed.
    Caller owns the transaction.
    """
    offering = db.session.get(ProviderOffering, (provider_id, item_id))
    if offering is None:
        return False
    if offering.stock is None:
        return True

    result = db.session.execute(
        update(ProviderOffering)
        .where(
            ProviderOffering.provider_id == provider_id,
            ProviderOffering.item_id == item_id,
            ProviderOffering.stock >= quantity,
        )
        .values(stock=ProviderOffering.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    db.session.expire(offering, ["stock"])
    return result.rowcount == 1


def release_stock(provider_id: int, item_id: int, quantity: int) -> None:
    """Return previously reserved units to a stock-tracked offering."""
    db.session.execute(
        update(ProviderOffering)
        .where(
            ProviderOffering.provider_id == provider_id,
            ProviderOffering.item_id == item_id,
            ProviderOffering.stock.isnot(None),
        )
        .values(stock=ProviderOffering.stock + quantity)
        .execution_options(synchronize_session=False)
    )
    offering = db.session.get(ProviderOffering, (provider_id, item_id))
    if offering is not None:
        db.session.expire(offering, ["stock"])
