import logging

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError

from box_organizer import database
from box_organizer.config import Settings, configure_logging, settings
from box_organizer.database import is_conflict, retry_on_conflict, transaction
from box_organizer.services import paths
from box_organizer.services.errors import MaxDepthExceeded, TransactionConflict


def locked_error():
    return OperationalError("UPDATE qr_codes", {}, Exception("database is locked"))


class FakePgError(Exception):
    def __init__(self, pgcode):
        super().__init__("could not serialize access")
        self.pgcode = pgcode


def test_is_conflict():
    assert is_conflict(locked_error())
    assert is_conflict(OperationalError("SELECT 1", {}, FakePgError("40001")))
    assert is_conflict(OperationalError("SELECT 1", {}, FakePgError("40P01")))
    assert not is_conflict(OperationalError("SELECT 1", {}, Exception("no such table: boxes")))
    assert not is_conflict(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))


def test_transaction_commits(db):
    with transaction(db):
        db.execute(text("CREATE TABLE scratch (id INTEGER)"))
        db.execute(text("INSERT INTO scratch VALUES (1)"))

    assert db.execute(text("SELECT count(*) FROM scratch")).scalar() == 1


def test_transaction_maps_lock_errors(db):
    with pytest.raises(TransactionConflict):
        with transaction(db):
            raise locked_error()


def test_transaction_rolls_back_on_interrupt(db):
    with transaction(db):
        db.execute(text("CREATE TABLE scratch (id INTEGER)"))

    with pytest.raises(KeyboardInterrupt):
        with transaction(db):
            db.execute(text("INSERT INTO scratch VALUES (1)"))
            raise KeyboardInterrupt()

    assert db.execute(text("SELECT count(*) FROM scratch")).scalar() == 0


def test_retry_on_conflict_retries_once(caplog):
    calls = []

    @retry_on_conflict
    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise TransactionConflict()
        return "done"

    with caplog.at_level(logging.WARNING, logger="box_organizer.database"):
        assert flaky() == "done"
    assert len(calls) == 2
    assert "Retrying flaky" in caplog.text


def test_retry_on_conflict_gives_up():
    calls = []

    @retry_on_conflict
    def always_conflicting():
        calls.append(1)
        raise TransactionConflict()

    with pytest.raises(TransactionConflict):
        always_conflicting()
    assert len(calls) == settings.TRANSACTION_RETRIES + 1


def test_retry_on_conflict_leaves_other_errors_alone():
    calls = []

    @retry_on_conflict
    def broken():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        broken()
    assert len(calls) == 1


def test_session_scope(session_factory, monkeypatch):
    monkeypatch.setattr(database, "SessionLocal", session_factory)

    with database.session_scope() as session:
        assert session.execute(text("SELECT 1")).scalar() == 1


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("MAX_LOCATION_DEPTH", "3")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    configured = Settings()

    assert configured.MAX_LOCATION_DEPTH == 3
    assert configured.QR_BATCH_MAX == 100
    configure_logging(configured.LOG_LEVEL)


def test_depth_limit_follows_settings(monkeypatch):
    monkeypatch.setattr(settings, "MAX_LOCATION_DEPTH", 2)

    assert paths.compose("garage", "rack") == "garage.rack"
    with pytest.raises(MaxDepthExceeded):
        paths.compose("garage.rack", "shelf")
