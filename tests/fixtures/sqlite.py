import os
import pathlib
import tempfile

import dbaccess as db
import pytest

PEOPLE_TABLE = """
CREATE TABLE people (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
)
"""


def stage_people(database):
    """Create the people table holding Michal (1) and Kasia (2)."""
    db.update(database, 'DROP TABLE IF EXISTS people')
    db.update(database, PEOPLE_TABLE)
    db.update(database, "INSERT INTO people (id, name) VALUES (1, 'Michal'), (2, 'Kasia')")


@pytest.fixture
def sqlite_path():
    """Path of a temporary SQLite database file, removed afterwards."""
    fd, path = tempfile.mkstemp(suffix='.db')
    os.close(fd)
    yield path
    pathlib.Path(path).unlink(missing_ok=True)


@pytest.fixture
def sqlite_db(sqlite_path):
    """File-based SQLite Database with the people table staged."""
    database = db.connect({
        'drivername': 'sqlite',
        'database': sqlite_path,
        'timeout': 5,
    })
    stage_people(database)
    yield database
    database.close()


@pytest.fixture
def memory_db():
    """In-memory SQLite Database (one shared connection) with the people table staged."""
    database = db.connect({
        'drivername': 'sqlite',
        'database': ':memory:'
    })
    stage_people(database)
    yield database
    database.close()
