"""
auth/transactions.py -- Transaction coordinator for multi-statement mutations.

unit_of_work(engine) is the only way workflow code obtains a connection:

    with unit_of_work(store.engine) as conn:
        account_id = store.create_account(conn, account)
        store.attach_credential(conn, account_id, password)

engine.begin() commits on clean exit and rolls back on any exception, and the
connection goes back to the pool either way. On top of that this module
translates failures into the error taxonomy:

  IntegrityError          -> ConflictError(field)   expected, not logged
  other SQLAlchemyError   -> InternalError          logged with traceback
  AuthError               -> re-raised unchanged    (after rollback)

Domain errors raised inside the block therefore also undo every write made in
the block. Workflows that must persist a write AND report a failure (a failed
code attempt) decide the outcome inside the block and raise after it.

Layer rule: imports only sqlalchemy and auth.errors.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AuthError, ConflictError, InternalError

logger = logging.getLogger("authsquared.store")

# Column names a uniqueness violation can be attributed to. Matches both the
# SQLite form ("UNIQUE constraint failed: accounts.email") and named
# constraints ("uq_accounts_email") reported by PostgreSQL.
_CONFLICT_FIELDS = ("email", "username", "phone", "account_id", "token")
_CONFLICT_RE = re.compile(r"(?:\.|uq_\w+?_)(" + "|".join(_CONFLICT_FIELDS) + r")\b")


def conflicting_field(exc: IntegrityError) -> Optional[str]:
    """Best-effort name of the column whose uniqueness was violated."""
    match = _CONFLICT_RE.search(str(exc.orig))
    return match.group(1) if match else None


@contextmanager
def unit_of_work(engine: Engine) -> Iterator[Connection]:
    """Yield a connection inside one transaction; see module docstring."""
    try:
        with engine.begin() as conn:
            yield conn
    except AuthError:
        raise
    except IntegrityError as exc:
        raise ConflictError(conflicting_field(exc)) from exc
    except SQLAlchemyError as exc:
        logger.exception("Transaction rolled back after store failure")
        raise InternalError() from exc
