"""
Classification of errors raised by the database layer.

Every place that needs to know whether a failure means "duplicate row",
"missing table" or "try again later" asks classify_store_error() instead of
inspecting messages itself. Structured codes (Postgres SQLSTATE from the
driver, PostgREST codes from the hosted REST layer) are preferred; message
inspection is only the fallback for drivers that carry no code (SQLite).
"""
import logging
import re
import time
from enum import Enum
from typing import Any, Callable, Optional

from sqlalchemy import exc as sa_exc

from errors import (
    AppError,
    ConstraintViolationError,
    NotFoundError,
    NotAuthorizedError,
    SchemaDriftError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)


class StoreErrorKind(Enum):
    UNIQUE_VIOLATION = 'unique_violation'
    FOREIGN_KEY_VIOLATION = 'foreign_key_violation'
    MISSING_TABLE = 'missing_table'
    MISSING_COLUMN = 'missing_column'
    NOT_FOUND = 'not_found'
    POLICY_VIOLATION = 'policy_violation'
    TRANSIENT = 'transient'
    UNKNOWN = 'unknown'


# Postgres SQLSTATE and PostgREST codes
_CODE_KINDS = {
    '23505': StoreErrorKind.UNIQUE_VIOLATION,
    '23503': StoreErrorKind.FOREIGN_KEY_VIOLATION,
    '42P01': StoreErrorKind.MISSING_TABLE,
    '42703': StoreErrorKind.MISSING_COLUMN,
    '42501': StoreErrorKind.POLICY_VIOLATION,
    '57014': StoreErrorKind.TRANSIENT,
    '40001': StoreErrorKind.TRANSIENT,
    '40P01': StoreErrorKind.TRANSIENT,
    'PGRST116': StoreErrorKind.NOT_FOUND,
    'PGRST204': StoreErrorKind.MISSING_COLUMN,
    'PGRST205': StoreErrorKind.MISSING_TABLE,
}

_MESSAGE_PATTERNS = [
    (re.compile(r'duplicate key|unique constraint', re.I), StoreErrorKind.UNIQUE_VIOLATION),
    (re.compile(r'foreign key constraint', re.I), StoreErrorKind.FOREIGN_KEY_VIOLATION),
    (re.compile(r'row-level security|violates .*policy', re.I), StoreErrorKind.POLICY_VIOLATION),
    (re.compile(r'no such column|column .* does not exist|has no column|could not find the .* column', re.I),
     StoreErrorKind.MISSING_COLUMN),
    (re.compile(r'no such table|relation .* does not exist|table .* does not exist|schema cache', re.I),
     StoreErrorKind.MISSING_TABLE),
    (re.compile(r'ssl|connection|eof detected|timeout|timed out|server closed', re.I), StoreErrorKind.TRANSIENT),
]


def error_code(error: BaseException) -> Optional[str]:
    """Structured error code carried by the driver or REST error, if any"""
    orig = getattr(error, 'orig', None)
    for source in (orig, error):
        # SQLAlchemy's own .code is a docs link id, not a database code
        if source is None or isinstance(source, sa_exc.SQLAlchemyError):
            continue
        for attr in ('pgcode', 'sqlstate', 'code'):
            value = getattr(source, attr, None)
            if isinstance(value, str) and value:
                return value
        diag = getattr(source, 'diag', None)
        value = getattr(diag, 'sqlstate', None) if diag is not None else None
        if isinstance(value, str) and value:
            return value
    return None


def classify_store_error(error: BaseException) -> StoreErrorKind:
    code = error_code(error)
    if code:
        if code in _CODE_KINDS:
            return _CODE_KINDS[code]
        if code.startswith('08'):
            return StoreErrorKind.TRANSIENT

    message = str(getattr(error, 'orig', None) or error)
    for pattern, kind in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return kind

    if isinstance(error, (sa_exc.DisconnectionError, sa_exc.TimeoutError, TimeoutError, ConnectionError)):
        return StoreErrorKind.TRANSIENT
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return StoreErrorKind.TRANSIENT
    return StoreErrorKind.UNKNOWN


def is_schema_drift(error: BaseException) -> bool:
    return classify_store_error(error) in (StoreErrorKind.MISSING_TABLE, StoreErrorKind.MISSING_COLUMN)


def is_retryable(error: BaseException) -> bool:
    return classify_store_error(error) is StoreErrorKind.TRANSIENT


def translate_store_error(error: BaseException) -> AppError:
    """Map a raw database error to the AppError the API reports"""
    if isinstance(error, AppError):
        return error
    kind = classify_store_error(error)
    if kind is StoreErrorKind.UNIQUE_VIOLATION:
        return ConstraintViolationError("A record with the same values already exists")
    if kind is StoreErrorKind.FOREIGN_KEY_VIOLATION:
        return ConstraintViolationError("The record is referenced by other data or references missing data")
    if kind in (StoreErrorKind.MISSING_TABLE, StoreErrorKind.MISSING_COLUMN):
        return SchemaDriftError(missing=kind.value)
    if kind is StoreErrorKind.NOT_FOUND:
        return NotFoundError()
    if kind is StoreErrorKind.POLICY_VIOLATION:
        return NotAuthorizedError("The database refused the operation")
    if kind is StoreErrorKind.TRANSIENT:
        return TransientStoreError()
    return AppError()


def retry_db_operation(operation: Callable, max_retries: int = 3, delay: float = 0.5,
                       sleep: Callable[[float], None] = time.sleep,
                       on_retry: Optional[Callable[[], None]] = None) -> Any:
    """
    Retry a database operation with exponential backoff.
    Only errors classified as transient (SSL drops, connection resets, timeouts) are retried.
    """
    for attempt in range(max_retries):
        try:
            return operation()
        except Exception as e:
            if not is_retryable(e) or attempt == max_retries - 1:
                raise
            wait_time = delay * (2 ** attempt)
            logger.warning(f"⚠️ Database operation failed (attempt {attempt + 1}/{max_retries}): {e}. "
                           f"Retrying in {wait_time}s...")
            if on_retry:
                on_retry()
            sleep(wait_time)
