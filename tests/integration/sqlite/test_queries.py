from dataclasses import dataclass

import dbaccess as db
import pytest
from dbaccess import BindingError, QueryError, Statement, params, params_list

pytestmark = pytest.mark.sqlite


@dataclass
class Person:
    id: int
    name: str


def to_person(row):
    return Person(row.get_int('id'), row.get_string('name'))


def test_find_one_three_ways(sqlite_db):
    by_position = db.find_one(sqlite_db, params_list('SELECT name FROM people WHERE id = ?', 1),
                              lambda row: row.get_string('name'))
    by_name = db.find_one(sqlite_db, params('SELECT name FROM people WHERE id = :id', id=1),
                          lambda row: row.get_string('name'))
    literal = db.find_one(sqlite_db, 'SELECT name FROM people WHERE id = 1',
                          lambda row: row.get_string('name'))
    assert by_position == by_name == literal == 'Michal'


def test_find_one_maps_to_object(sqlite_db):
    person = sqlite_db.find_one(params_list('SELECT id, name FROM people WHERE name = ?', 'Kasia'),
                                db.create_extractor(to_person))
    assert person == Person(2, 'Kasia')


def test_find_one_no_rows(sqlite_db):
    assert sqlite_db.find_one(params_list('SELECT id, name FROM people WHERE id = ?', 99), to_person) is None


def test_find_one_ignores_further_rows(sqlite_db):
    assert sqlite_db.find_one('SELECT id, name FROM people ORDER BY id', to_person) == Person(1, 'Michal')


def test_find_all_in_cursor_order(sqlite_db):
    people = sqlite_db.find_all('SELECT id, name FROM people ORDER BY name', to_person)
    assert people == [Person(2, 'Kasia'), Person(1, 'Michal')]


def test_find_all_empty(sqlite_db):
    assert sqlite_db.find_all(params_list('SELECT id FROM people WHERE id > ?', 10),
                              lambda row: row.get_int('id')) == []


def test_ids_by_name(sqlite_db):
    sqlite_db.insert(params_list('INSERT INTO people (name) VALUES (?)', 'Michal'))
    ids = db.find_all(sqlite_db, params('SELECT id FROM people WHERE name = :name ORDER BY id', name='Michal'),
                      lambda row: row.get_long('id'))
    assert ids == [1, 3]


def test_query_rowset(sqlite_db):
    def names_by_id(rowset):
        result = {}
        while rowset.next():
            result[rowset.get_int('id')] = rowset.get_string('name')
        return result

    assert db.query(sqlite_db, 'SELECT id, name FROM people', names_by_id) == {1: 'Michal', 2: 'Kasia'}


def test_query_column_lookup_is_case_insensitive(sqlite_db):
    assert sqlite_db.find_one('SELECT id AS PersonId FROM people WHERE id = 2',
                              lambda row: row.get_int('personid')) == 2


def test_unknown_column(sqlite_db):
    with pytest.raises(QueryError, match='Unknown column'):
        sqlite_db.find_one('SELECT id FROM people', lambda row: row.get_string('name'))


def test_missing_named_parameter(sqlite_db):
    with pytest.raises(BindingError, match=':name'):
        sqlite_db.find_all(params('SELECT id FROM people WHERE name = :name', id=1), to_person)


def test_placeholders_inside_literals_are_text(sqlite_db):
    sqlite_db.insert(params_list("INSERT INTO people (name) VALUES ('who? :me') "))
    name = sqlite_db.find_one(params_list("SELECT name FROM people WHERE name = 'who? :me' AND id > ?", 0),
                              lambda row: row.get_string('name'))
    assert name == 'who? :me'


def test_reused_named_parameter(sqlite_db):
    count = sqlite_db.find_one(params('SELECT count(*) AS n FROM people WHERE id = :id OR id = :id + 1', id=1),
                               lambda row: row.get_int('n'))
    assert count == 2


def test_update_counts_rows(sqlite_db):
    assert db.update(sqlite_db, params_list('UPDATE people SET name = upper(name) WHERE id > ?', 0)) == 2
    assert db.update(sqlite_db, Statement('DELETE FROM people WHERE id = 99')) == 0


def test_memory_database_shares_data(memory_db):
    memory_db.update(params_list('INSERT INTO people (name) VALUES (?)', 'Ola'))
    assert memory_db.find_all('SELECT name FROM people ORDER BY id', lambda row: row.get_string('name')) == \
        ['Michal', 'Kasia', 'Ola']
