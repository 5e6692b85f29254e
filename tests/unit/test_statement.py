import dataclasses
import datetime

import numpy as np
import pandas as pd
import pytest
from dbaccess.exceptions import BindingError
from dbaccess.statement import Statement, as_statement, bind, params, params_list
from dbaccess.strategy import get_strategy


@pytest.fixture
def postgres():
    return get_strategy('postgresql')


@pytest.fixture
def sqlite():
    return get_strategy('sqlite')


class TestStatement:

    def test_positional_constructor(self):
        stmt = params_list('SELECT name FROM people WHERE id = ?', 1)
        assert stmt.params == (1,)
        assert not stmt.is_named

    def test_named_constructor(self):
        stmt = params('SELECT name FROM people WHERE id = :id', id=2)
        assert stmt.is_named
        assert dict(stmt.params) == {'id': 2}

    def test_named_mapping_and_keywords_merge(self):
        stmt = params('SELECT :a, :b', {'a': 1, 'b': 2}, b=3)
        assert dict(stmt.params) == {'a': 1, 'b': 3}

    def test_zero_parameters(self):
        stmt = Statement('SELECT 1')
        assert stmt.params == ()
        assert stmt.key_columns == ()

    def test_frozen(self):
        stmt = params_list('SELECT ?', 1)
        with pytest.raises(dataclasses.FrozenInstanceError):
            stmt.sql = 'SELECT 2'

    def test_params_copied_on_construction(self):
        values = [1, 2]
        mapping = {'a': 1}
        positional = Statement('SELECT ?, ?', values)
        named = Statement('SELECT :a', mapping)
        values.append(3)
        mapping['a'] = 99
        assert positional.params == (1, 2)
        assert named.params['a'] == 1

    def test_named_params_read_only(self):
        stmt = params('SELECT :a', a=1)
        with pytest.raises(TypeError):
            stmt.params['a'] = 2

    def test_string_params_rejected(self):
        with pytest.raises(TypeError):
            Statement('SELECT ?', 'abc')

    def test_returning_copies(self):
        stmt = params_list('INSERT INTO people (name) VALUES (?)', 'Ola')
        keyed = stmt.returning('id')
        assert keyed.key_columns == ('id',)
        assert stmt.key_columns == ()
        assert keyed.params == stmt.params

    def test_as_statement(self):
        stmt = params_list('SELECT ?', 1)
        assert as_statement(stmt) is stmt
        assert as_statement('SELECT 1') == Statement('SELECT 1')
        with pytest.raises(TypeError):
            as_statement(42)


class TestBind:

    def test_positional_postgres(self, postgres):
        sql, args = bind(params_list('SELECT name FROM people WHERE id = ?', 1), postgres)
        assert sql == 'SELECT name FROM people WHERE id = %s'
        assert args == (1,)

    def test_named_sqlite(self, sqlite):
        sql, args = bind(params('SELECT name FROM people WHERE id = :id', id=2), sqlite)
        assert sql == 'SELECT name FROM people WHERE id = ?'
        assert args == (2,)

    def test_missing_named_parameter(self, sqlite):
        with pytest.raises(BindingError):
            bind(params('SELECT name FROM people WHERE id = :id', name='x'), sqlite)

    def test_plain_sql_has_no_args(self, postgres):
        sql, args = bind(Statement("SELECT * FROM people WHERE name LIKE 'M%'"), postgres)
        assert sql == "SELECT * FROM people WHERE name LIKE 'M%'"
        assert args is None

    def test_replacement_sql(self, postgres):
        stmt = params_list('INSERT INTO people (name) VALUES (?)', 'Ola')
        sql, args = bind(stmt, postgres, stmt.sql + ' RETURNING id')
        assert sql == 'INSERT INTO people (name) VALUES (%s) RETURNING id'
        assert args == ('Ola',)

    def test_values_normalized(self, sqlite):
        stmt = params_list('SELECT ?, ?, ?, ?, ?', np.int64(5), np.float64('nan'),
                           pd.Timestamp('2024-01-02 03:04:05'), pd.NaT, None)
        _, args = bind(stmt, sqlite)
        assert args == (5, None, datetime.datetime(2024, 1, 2, 3, 4, 5), None, None)
        assert type(args[0]) is int

    def test_none_passes_through_named(self, sqlite):
        _, args = bind(params('SELECT :a', a=None), sqlite)
        assert args == (None,)
