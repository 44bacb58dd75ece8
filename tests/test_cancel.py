import threading

import pytest
from sqlalchemy import event
from sqlalchemy.engine.base import RootTransaction
from sqlalchemy.exc import OperationalError

from pgbranch.core.branches import is_serialization_failure
from pgbranch.core.cancel import CancelToken, interrupt_dbapi
from pgbranch.errors import (
    BranchOperationError,
    OperationCancelledError,
    RollbackError,
    SerializationError,
)

from conftest import full_rows


@pytest.fixture(name="seeded")
def seeded_fixture(store):
    store.save("f", "k1", b"X")
    store.save("f", "k2", b"Y")
    store.set_version("dev")
    store.save("f", "k1", b"D")
    store.set_version("main")
    return store


def cancel_after_first_delete(engine, token):
    @event.listens_for(engine, "after_cursor_execute")
    def _cancel(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("DELETE"):
            token.cancel("test abort")


def test_token_basics():
    token = CancelToken()
    assert not token.cancelled
    token.cancel("first")
    token.cancel("second")
    assert token.cancelled
    assert token.reason == "first"


def test_on_cancel_runs_callback_once():
    token = CancelToken()
    calls = []
    with token.on_cancel(lambda: calls.append(1)):
        token.cancel()
    token.cancel()
    assert calls == [1]


def test_on_cancel_fires_immediately_when_already_cancelled():
    token = CancelToken()
    token.cancel()
    calls = []
    with token.on_cancel(lambda: calls.append(1)):
        pass
    assert calls == [1]


def test_callback_unregistered_after_block():
    token = CancelToken()
    calls = []
    with token.on_cancel(lambda: calls.append(1)):
        pass
    token.cancel()
    assert calls == []


def test_callback_does_not_fire_after_its_block_exits():
    token = CancelToken()
    started = threading.Event()
    release = threading.Event()
    fired = []

    def slow():
        started.set()
        release.wait(5)

    with token.on_cancel(slow):
        with token.on_cancel(lambda: fired.append("inner")):
            canceller = threading.Thread(target=token.cancel)
            canceller.start()
            assert started.wait(5)
        # inner block left while the canceller is still inside slow()
        release.set()
        canceller.join(5)

    assert not canceller.is_alive()
    assert fired == []


def test_block_exit_waits_for_running_callback():
    token = CancelToken()
    started = threading.Event()
    release = threading.Event()
    log = []

    def callback():
        started.set()
        release.wait(5)
        log.append("callback done")

    canceller = threading.Thread(target=token.cancel)
    with token.on_cancel(callback):
        canceller.start()
        assert started.wait(5)
        threading.Timer(0.05, release.set).start()
    log.append("block exited")
    canceller.join(5)

    assert log == ["callback done", "block exited"]


def test_after_deadline():
    token = CancelToken.after(0.01)
    assert token.wait(5)
    assert "deadline" in token.reason


def test_interrupt_prefers_cancel():
    class Conn:
        def __init__(self):
            self.calls = []

        def cancel(self):
            self.calls.append("cancel")

        def interrupt(self):
            self.calls.append("interrupt")

    conn = Conn()
    interrupt_dbapi(conn)()
    assert conn.calls == ["cancel"]


def test_precancelled_merge_changes_nothing(seeded, engine):
    before = full_rows(engine)
    token = CancelToken()
    token.cancel("shutdown")

    with pytest.raises(OperationCancelledError) as err:
        seeded.merge_to("dev", token)

    assert err.value.reason == "shutdown"
    assert err.value.operation == "merge_to"
    assert full_rows(engine) == before


@pytest.mark.parametrize("operation", ["merge_to", "replace_from"])
def test_cancel_mid_transaction_rolls_back(seeded, engine, operation):
    before = full_rows(engine)
    token = CancelToken()
    cancel_after_first_delete(engine, token)

    with pytest.raises(OperationCancelledError) as err:
        getattr(seeded, operation)("dev", token)

    assert err.value.reason == "test abort"
    assert full_rows(engine) == before


def test_cancel_single_statement_delete(seeded, engine):
    before = full_rows(engine)
    token = CancelToken()
    cancel_after_first_delete(engine, token)

    with pytest.raises(OperationCancelledError):
        seeded.delete_branch("main", token)
    assert full_rows(engine) == before


def test_statement_error_is_wrapped_with_cause(seeded, engine):
    seeded.records.drop(engine)

    with pytest.raises(BranchOperationError) as err:
        seeded.merge_to("dev")

    assert not isinstance(err.value, (SerializationError, OperationCancelledError))
    assert isinstance(err.value.original, OperationalError)
    assert err.value.__cause__ is err.value.original
    assert not err.value.retryable


def test_rollback_failure_keeps_statement_error_as_cause(seeded, engine, monkeypatch):
    seeded.records.drop(engine)

    def broken_rollback(self):
        raise RuntimeError("connection lost during rollback")

    monkeypatch.setattr(RootTransaction, "rollback", broken_rollback)

    with pytest.raises(RollbackError) as err:
        seeded.replace_from("dev")

    assert isinstance(err.value.rollback_error, RuntimeError)
    assert isinstance(err.value.original, OperationalError)
    assert err.value.__cause__ is err.value.original
    assert isinstance(err.value, BranchOperationError)


def test_serialization_failures_are_recognised():
    class PgError(Exception):
        pgcode = "40001"

    class Other(Exception):
        pgcode = "23505"

    assert is_serialization_failure(OperationalError("UPDATE", {}, PgError()))
    assert not is_serialization_failure(OperationalError("UPDATE", {}, Other()))
    assert not is_serialization_failure(RuntimeError("x"))


def test_sqlite_write_contention_surfaces_as_serialization_error(seeded, engine):
    # a second connection holds the write lock; the merge may not wait for it
    holder = engine.connect()
    holder.exec_driver_sql("BEGIN IMMEDIATE")
    try:
        @event.listens_for(engine, "connect")
        def _no_wait(dbapi_conn, record):
            dbapi_conn.execute("PRAGMA busy_timeout = 0")

        engine.pool.dispose()
        with pytest.raises(SerializationError) as err:
            seeded.merge_to("dev")
        assert err.value.retryable
    finally:
        holder.exec_driver_sql("ROLLBACK")
        holder.close()
