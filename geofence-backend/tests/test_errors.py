import logging

import pytest

from app.core import db as db_module
from app.core import errors


def test_typed_errors_pass_through_normalize():
    logger = logging.getLogger("test_errors")

    @errors.normalize_errors(logger)
    def _lookup():
        raise errors.NotFoundError("RULE_NOT_FOUND")

    with pytest.raises(errors.NotFoundError) as exc:
        _lookup()
    assert exc.value.errcode == "RULE_NOT_FOUND"


def test_unclassified_errors_become_internal(caplog):
    logger = logging.getLogger("test_errors")
    caplog.set_level(logging.ERROR)

    @errors.normalize_errors(logger)
    def _store_call():
        raise KeyError("geofenceinfo")

    with pytest.raises(errors.InternalError) as exc:
        _store_call()

    assert exc.value.errcode == "INTERNAL_ERROR"
    assert exc.value.status_code == 500
    assert exc.value.to_dict() == {"errcode": "INTERNAL_ERROR", "msg": "Something went wrong"}
    # detail stays server-side
    assert "geofenceinfo" in exc.value.detail
    assert isinstance(exc.value.__cause__, KeyError)
    assert any("_store_call failed" in rec.message for rec in caplog.records)


@pytest.mark.parametrize(
    "error, status, message",
    [
        (errors.ConflictError("GEOFENCE_EXISTS"), 400, "Geofence already exists"),
        (errors.ValidationError(), 400, "Invalid input"),
        (errors.ValidationError("INVALID_RULE_TYPE", "Exit and Exit combination is not allowed"), 400,
         "Exit and Exit combination is not allowed"),
        (errors.ForbiddenError(), 403, "User does not have access to geofence module"),
        (errors.UnauthorizedError("TOKEN_REQUIRED"), 401, "Authentication token is required"),
        (errors.GeofenceError("SOMETHING_NEW"), 500, "Something went wrong"),
    ],
)
def test_status_and_message_mapping(error, status, message):
    assert error.status_code == status
    assert error.message == message


def test_partial_rollback_names_failed_steps():
    cause = RuntimeError("vehicles")
    exc = errors.PartialRollbackError(cause, [("rule", RuntimeError("a")), ("geofence", RuntimeError("b"))])
    assert exc.errcode == "PARTIAL_ROLLBACK"
    assert exc.status_code == 500
    assert "[rule, geofence]" in exc.detail


@pytest.mark.parametrize(
    "messages, expected",
    [
        ([], "Invalid input"),
        (["Geofence name is required"], "Geofence name is required"),
        (["a", "b", "c"], "a, b, c"),
        (["a", "b", "c", "d"], "Please fix 4 validation errors and try again."),
    ],
)
def test_input_error_message(messages, expected):
    assert errors.input_error_message(messages) == expected


class _Session:
    def __init__(self, rollback_error=None):
        self.rollback_error = rollback_error
        self.committed = False
        self.rolled_back = False

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True
        if self.rollback_error:
            raise self.rollback_error


def test_transaction_commits():
    session = _Session()
    with db_module.transaction(session, name="ok"):
        pass
    assert session.committed is True
    assert session.rolled_back is False


def test_transaction_rolls_back_and_reraises(caplog):
    session = _Session()
    caplog.set_level(logging.ERROR)
    with pytest.raises(ValueError):
        with db_module.transaction(session, name="write_geofence"):
            raise ValueError("constraint")
    assert session.rolled_back is True
    assert session.committed is False
    assert any("Transaction rolled back tx=write_geofence" in rec.message for rec in caplog.records)


def test_failed_rollback_is_reported():
    session = _Session(rollback_error=RuntimeError("connection lost"))
    with pytest.raises(errors.TransactionRollbackError) as exc:
        with db_module.transaction(session, name="write_rule"):
            raise ValueError("constraint")
    assert exc.value.errcode == "ROLLBACK_FAILED"
    assert isinstance(exc.value.__cause__, ValueError)
