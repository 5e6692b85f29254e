import threading

import pytest
from dbaccess import DatabaseOptions, IsolationLevel, TransactionFailure
from dbaccess import TransactionState
from dbaccess.transaction import current_transaction


class Boom(Exception):
    pass


def fail():
    raise Boom('unit failed')


class TestOutcome:

    def test_commit_on_success(self, mock_database):
        db, pool = mock_database('sqlite')
        db.transaction(lambda: None)

        pooled = pool.connections[0]
        pooled.raw.commit.assert_called_once()
        pooled.raw.rollback.assert_not_called()
        pooled.close.assert_called_once()
        pooled.invalidate.assert_not_called()

    def test_rollback_reraises_same_exception(self, mock_database):
        db, pool = mock_database('sqlite')
        error = Boom('unit failed')

        def unit():
            raise error

        with pytest.raises(Boom) as excinfo:
            db.transaction(unit)
        assert excinfo.value is error

        pooled = pool.connections[0]
        pooled.raw.rollback.assert_called_once()
        pooled.raw.commit.assert_not_called()
        pooled.close.assert_called_once()

    def test_rollback_only(self, mock_database):
        db, pool = mock_database('sqlite')
        db.transaction_with_status(lambda status: status.set_rollback_only())

        pooled = pool.connections[0]
        pooled.raw.rollback.assert_called_once()
        pooled.raw.commit.assert_not_called()
        pooled.close.assert_called_once()

    def test_commit_failure_rolls_back_and_raises(self, mock_database):
        db, pool = mock_database('sqlite')

        def unit():
            current_transaction(db).connection.commit.side_effect = Boom('disk full')

        with pytest.raises(Boom, match='disk full'):
            db.transaction(unit)

        pooled = pool.connections[0]
        pooled.raw.rollback.assert_called_once()
        pooled.close.assert_called_once()
        assert current_transaction(db) is None

    def test_rollback_failure_keeps_original_error(self, mock_database):
        db, pool = mock_database('sqlite')

        def unit():
            current_transaction(db).connection.rollback.side_effect = RuntimeError('gone')
            raise Boom('unit failed')

        with pytest.raises(Boom, match='unit failed'):
            db.transaction(unit)

        pooled = pool.connections[0]
        pooled.invalidate.assert_called_once()
        pooled.close.assert_not_called()

    def test_begin_failure_releases_connection(self, mocker, mock_database):
        db, pool = mock_database('sqlite')
        mocker.patch.object(db.strategy, 'begin', side_effect=Boom('no begin'))

        with pytest.raises(Boom):
            db.transaction(lambda: None)
        pool.connections[0].invalidate.assert_called_once()
        assert current_transaction(db) is None

        mocker.stopall()
        db.transaction(lambda: None)
        pool.connections[1].raw.commit.assert_called_once()


class TestStatus:

    def test_status_after_completion(self, mock_database):
        db, _ = mock_database('sqlite')
        captured = []
        db.transaction_with_status(captured.append)

        status = captured[0]
        assert status.is_completed
        assert status.state is TransactionState.COMMITTED
        assert not status.is_rollback_only
        with pytest.raises(TransactionFailure):
            status.set_rollback_only()

    def test_status_while_active(self, mock_database):
        db, _ = mock_database('sqlite')
        with db.begin('serializable') as status:
            assert status.state is TransactionState.ACTIVE
            assert not status.is_completed
            assert status.isolation_level is IsolationLevel.SERIALIZABLE
            status.set_rollback_only()
            assert status.is_rollback_only
            assert 'rollback_only=True' in repr(status)
        assert status.state is TransactionState.ROLLED_BACK

    def test_transaction_entered_once(self, mock_database):
        db, _ = mock_database('sqlite')
        transaction = db.begin()
        with transaction:
            pass
        with pytest.raises(TransactionFailure), transaction:
            pass


class TestIsolation:

    def test_explicit_level(self, mock_database):
        db, pool = mock_database('sqlite')
        db.transaction(lambda: None, 'serializable')
        pool.connections[0].raw.execute.assert_any_call('BEGIN IMMEDIATE')

    def test_level_from_options(self, mock_database):
        options = DatabaseOptions(drivername='sqlite', database=':memory:',
                                  isolation_level='serializable')
        db, pool = mock_database('sqlite', options=options)
        db.transaction(lambda: None)
        pool.connections[0].raw.execute.assert_any_call('BEGIN IMMEDIATE')

    def test_postgres_restores_autocommit(self, mock_database):
        db, pool = mock_database('postgresql')
        seen = []

        def unit():
            seen.append(current_transaction(db).connection.autocommit)

        db.transaction(unit, IsolationLevel.REPEATABLE_READ)
        raw = pool.connections[0].raw
        assert seen == [False]
        assert raw.autocommit is True
        assert raw.isolation_level is None


class TestRouting:

    def test_calls_use_transaction_connection(self, mock_database):
        db, pool = mock_database('sqlite')

        def unit():
            db.update('DELETE FROM people')
            db.update('DELETE FROM tags')

        db.transaction(unit)
        assert len(pool.connections) == 1
        assert pool.connections[0].raw.cursor.call_count == 2

        db.update('DELETE FROM people')
        assert len(pool.connections) == 2

    def test_nested_transaction_uses_independent_connection(self, mock_database):
        db, pool = mock_database('sqlite')
        outer = db.begin()
        with outer:
            assert current_transaction(db) is outer
            inner = db.begin()
            with inner:
                assert current_transaction(db) is inner
                db.update('DELETE FROM people')
            assert current_transaction(db) is outer
        assert current_transaction(db) is None

        outer_conn, inner_conn = pool.connections
        assert inner_conn.raw.cursor.call_count == 1
        outer_conn.raw.cursor.assert_not_called()
        inner_conn.raw.commit.assert_called_once()
        outer_conn.raw.commit.assert_called_once()

    def test_inner_failure_leaves_outer_active(self, mock_database):
        db, pool = mock_database('sqlite')
        with db.begin() as status:
            with pytest.raises(Boom):
                db.transaction(fail)
            assert status.state is TransactionState.ACTIVE
        outer_conn, inner_conn = pool.connections
        inner_conn.raw.rollback.assert_called_once()
        outer_conn.raw.commit.assert_called_once()

    def test_connection_enrolled_twice(self, mock_database):
        db, pool = mock_database('sqlite')
        shared = pool.checkout()
        db.engine.raw_connection.side_effect = None
        db.engine.raw_connection.return_value = shared

        with db.begin():
            with pytest.raises(TransactionFailure, match='already enrolled'), db.begin():
                pass
        shared.raw.commit.assert_called_once()

    def test_other_threads_do_not_see_transaction(self, mock_database):
        db, _ = mock_database('sqlite')
        seen = []
        with db.begin():
            thread = threading.Thread(target=lambda: seen.append(current_transaction(db)))
            thread.start()
            thread.join()
        assert seen == [None]

    def test_other_thread_refuses_enrolled_connection(self, mock_database):
        db, pool = mock_database('sqlite')
        shared = pool.checkout()
        db.engine.raw_connection.side_effect = None
        db.engine.raw_connection.return_value = shared
        errors = []

        def standalone():
            try:
                db.update('DELETE FROM people')
            except TransactionFailure as err:
                errors.append(err)

        with db.begin():
            thread = threading.Thread(target=standalone)
            thread.start()
            thread.join()
            assert shared.close.call_count == 1

        assert len(errors) == 1
        assert 'already enrolled' in str(errors[0])
        shared.raw.cursor.assert_not_called()
        shared.raw.commit.assert_called_once()

    def test_databases_route_independently(self, mock_database):
        db, _ = mock_database('sqlite')
        other, _ = mock_database('sqlite')
        with db.begin():
            assert current_transaction(other) is None


class TestPinnedDatabase:

    def test_runs_on_transaction_connection(self, mock_database):
        db, pool = mock_database('sqlite')
        captured = []

        def unit(pinned):
            pinned.update('DELETE FROM people')
            captured.append(pinned)

        db.transaction_with_connection(unit)
        assert len(pool.connections) == 1
        pool.connections[0].raw.cursor.assert_called_once()
        assert db.calls == 1

        with pytest.raises(TransactionFailure, match='outside its transaction'):
            captured[0].update('DELETE FROM people')

    def test_cannot_open_transaction(self, mock_database):
        db, _ = mock_database('sqlite')

        def unit(pinned):
            pinned.transaction(lambda: None)

        with pytest.raises(TransactionFailure, match='already enrolled'):
            db.transaction_with_connection(unit)
