"""Tests for database error classification and retries."""

from unittest.mock import Mock

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from errors import ConstraintViolationError, SchemaDriftError, TransientStoreError
from models import db
from store_errors import (
    StoreErrorKind,
    classify_store_error,
    is_retryable,
    is_schema_drift,
    retry_db_operation,
    translate_store_error,
)


class DriverError(Exception):
    """Mimics a psycopg2 error carrying a SQLSTATE."""

    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


class RestError(Exception):
    """Mimics a PostgREST API error."""

    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


def wrapped(error, cls=ProgrammingError):
    return cls("SELECT 1", {}, error)


class TestClassification:
    @pytest.mark.parametrize("code,kind", [
        ("23505", StoreErrorKind.UNIQUE_VIOLATION),
        ("23503", StoreErrorKind.FOREIGN_KEY_VIOLATION),
        ("42P01", StoreErrorKind.MISSING_TABLE),
        ("42703", StoreErrorKind.MISSING_COLUMN),
        ("42501", StoreErrorKind.POLICY_VIOLATION),
        ("08006", StoreErrorKind.TRANSIENT),
        ("40001", StoreErrorKind.TRANSIENT),
    ])
    def test_sqlstate(self, code, kind):
        assert classify_store_error(wrapped(DriverError("boom", code))) is kind

    @pytest.mark.parametrize("code,kind", [
        ("PGRST116", StoreErrorKind.NOT_FOUND),
        ("PGRST204", StoreErrorKind.MISSING_COLUMN),
        ("PGRST205", StoreErrorKind.MISSING_TABLE),
    ])
    def test_rest_codes(self, code, kind):
        assert classify_store_error(RestError("request failed", code)) is kind

    def test_code_wins_over_message(self):
        # The message mentions a missing relation but the code says duplicate
        error = wrapped(DriverError('relation "votes" does not exist', "23505"), IntegrityError)
        assert classify_store_error(error) is StoreErrorKind.UNIQUE_VIOLATION

    def test_sqlite_messages(self, ctx):
        with pytest.raises(OperationalError) as exc_info:
            db.session.execute(text("SELECT * FROM no_such_table"))
        db.session.rollback()
        assert classify_store_error(exc_info.value) is StoreErrorKind.MISSING_TABLE
        assert is_schema_drift(exc_info.value)

        with pytest.raises(OperationalError) as exc_info:
            db.session.execute(text("SELECT missing_column FROM categories"))
        db.session.rollback()
        assert classify_store_error(exc_info.value) is StoreErrorKind.MISSING_COLUMN

    def test_connection_drop_is_transient(self):
        error = wrapped(Exception("SSL connection has been closed unexpectedly"), OperationalError)
        assert is_retryable(error)

    def test_unknown(self):
        assert classify_store_error(ValueError("something else")) is StoreErrorKind.UNKNOWN


class TestTranslation:
    def test_schema_drift_points_to_repair(self):
        error = translate_store_error(wrapped(DriverError("missing", "42P01")))
        assert isinstance(error, SchemaDriftError)
        payload = error.to_dict()
        assert payload["success"] is False
        assert payload["schema_drift"] is True
        assert payload["missing"] == "missing_table"
        assert payload["repair_endpoint"] == "/api/admin/setup-database"
        assert error.status_code == 503

    def test_unique(self):
        error = translate_store_error(wrapped(DriverError("dup", "23505"), IntegrityError))
        assert isinstance(error, ConstraintViolationError)
        assert error.status_code == 409

    def test_transient(self):
        error = translate_store_error(wrapped(DriverError("gone", "08003"), OperationalError))
        assert isinstance(error, TransientStoreError)
        assert error.to_dict()["retryable"] is True


class TestRetry:
    def test_retries_transient_errors(self):
        transient = wrapped(Exception("server closed the connection unexpectedly"), OperationalError)
        operation = Mock(side_effect=[transient, transient, "ok"])
        rollback = Mock()
        sleeps = []

        assert retry_db_operation(operation, sleep=sleeps.append, on_retry=rollback) == "ok"
        assert operation.call_count == 3
        assert sleeps == [0.5, 1.0]
        assert rollback.call_count == 2

    def test_does_not_retry_other_errors(self):
        operation = Mock(side_effect=wrapped(DriverError("dup", "23505"), IntegrityError))
        sleeps = []
        with pytest.raises(IntegrityError):
            retry_db_operation(operation, sleep=sleeps.append)
        assert operation.call_count == 1
        assert sleeps == []

    def test_gives_up_after_max_retries(self):
        transient = wrapped(DriverError("timeout", "57014"), OperationalError)
        operation = Mock(side_effect=transient)
        with pytest.raises(OperationalError):
            retry_db_operation(operation, max_retries=2, sleep=lambda s: None)
        assert operation.call_count == 2
