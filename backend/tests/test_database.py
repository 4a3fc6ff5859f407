import pytest
from sqlalchemy import text

from authcore.core.database import get_db, unit_of_work
from authcore.core.exceptions import DataAccessError
from authcore.models.role import Role


def test_unit_of_work_commits(db, session_factory):
    with unit_of_work(db):
        db.add(Role(name="Auditor"))

    other = session_factory()
    try:
        assert other.query(Role).filter(Role.name == "Auditor").count() == 1
    finally:
        other.close()


def test_unit_of_work_rolls_back_on_error(db):
    with pytest.raises(ValueError):
        with unit_of_work(db):
            db.add(Role(name="Auditor"))
            db.flush()
            raise ValueError("boom")

    assert db.query(Role).count() == 0


def test_unit_of_work_rolls_back_on_interrupt(db):
    with pytest.raises(KeyboardInterrupt):
        with unit_of_work(db):
            db.add(Role(name="Auditor"))
            db.flush()
            raise KeyboardInterrupt

    assert db.query(Role).count() == 0


def test_unit_of_work_maps_store_failures(db):
    with pytest.raises(DataAccessError) as exc_info:
        with unit_of_work(db):
            db.execute(text("SELECT * FROM missing_table"))

    assert exc_info.value.code == "data_access"


def test_unit_of_work_maps_constraint_violations(db):
    with unit_of_work(db):
        db.add(Role(name="Auditor"))

    with pytest.raises(DataAccessError):
        with unit_of_work(db):
            db.add(Role(name="Auditor"))

    assert db.query(Role).count() == 1


def test_get_db_closes_session():
    provider = get_db()
    session = next(provider)
    assert session.execute(text("SELECT 1")).scalar_one() == 1
    provider.close()
    assert not session.in_transaction()


def test_sqlite_enforces_foreign_keys(db):
    assert db.execute(text("PRAGMA foreign_keys")).scalar_one() == 1
