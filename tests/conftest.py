import pytest
from sqlalchemy import create_engine, select

from pgbranch.events import registry
from pgbranch.persistence.models import records_table
from pgbranch.runtime import PgBranch

TABLE = "cache_records"


# File-backed SQLite so transactions, rollback and a second connection are real
@pytest.fixture(name="engine")
def engine_fixture(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'pgbranch.db'}",
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture(name="store")
def store_fixture(engine):
    return PgBranch(engine, "main", TABLE)


@pytest.fixture(autouse=True)
def clean_registry():
    registry.clear()
    yield
    registry.clear()


def all_rows(engine, table=TABLE):
    """(file_name, key, version, data) for every row, sorted."""
    t = records_table(table)
    with engine.connect() as conn:
        q = select(t.c.file_name, t.c.key, t.c.version, t.c.data)
        return sorted(tuple(r) for r in conn.execute(q))


def full_rows(engine, table=TABLE):
    """Every column of every row, ordered by id."""
    t = records_table(table)
    with engine.connect() as conn:
        return [tuple(r) for r in conn.execute(select(t).order_by(t.c.id))]


def branch_rows(engine, branch, table=TABLE):
    return sorted((f, k, d) for f, k, v, d in all_rows(engine, table) if v == branch)
