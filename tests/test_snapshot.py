# tests/test_snapshot.py
import psycopg2
import pytest

from pgcontainer import options
from pgcontainer.errors import SnapshotError
from pgcontainer.utils.pg_handler import PostgresHandler
from tests.utils import DBNAME, PASSWORD, USER, USERS_TABLE, psql

pytestmark = pytest.mark.integration

# (sql driver, snapshot name); a driver that does not exist makes the
# snapshot commands run through psql inside the container instead
SNAPSHOT_CASES = {
    "snapshot/default": ("psycopg2", None),
    "snapshot/custom": ("psycopg2", "custom-snapshot"),
    "snapshot/exec-fallback": ("DoesNotExist", "test-snapshot"),
}


@pytest.fixture(scope="module", params=list(SNAPSHOT_CASES.values()), ids=list(SNAPSHOT_CASES))
def migrated(request, module_postgres_factory):
    driver, snapshot_name = request.param
    # 1. Start the container and run any migrations on it
    ctr = module_postgres_factory(
        "postgres:16-alpine",
        options.with_database(DBNAME),
        options.with_username(USER),
        options.with_password(PASSWORD),
        options.basic_wait_strategies(),
        options.with_sql_driver(driver),
    )
    psql(ctr, USERS_TABLE)

    # 2. Snapshot the migrated database to restore later
    if snapshot_name:
        ctr.snapshot(snapshot_name)
    else:
        ctr.snapshot()
    return ctr


@pytest.fixture
def clean_db(migrated):
    # 3. Every test leaves the database as the snapshot found it
    yield migrated.connection_string("sslmode=disable")
    migrated.restore()


def test_inserting_a_user(clean_db):
    conn = psycopg2.connect(clean_db)
    try:
        conn.autocommit = True
        with conn.cursor() as cur:
            cur.execute("INSERT INTO users(name, age) VALUES (%s, %s)", ("test", 42))
            cur.execute("SELECT name, age FROM users LIMIT 1")
            assert cur.fetchone() == ("test", 42)
    finally:
        conn.close()


def test_querying_empty_db(clean_db):
    # 4. Run as many tests as you need, they each get a clean database
    conn = psycopg2.connect(clean_db)
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT name, age FROM users LIMIT 1")
            assert cur.fetchone() is None
    finally:
        conn.close()


def test_snapshot_with_overrides(postgres_factory):
    dbname, user, password = "other-db", "other-user", "other-password"
    ctr = postgres_factory(
        "postgres:16-alpine",
        options.with_database(dbname),
        options.with_username(user),
        options.with_password(password),
        options.basic_wait_strategies(),
    )
    psql(ctr, USERS_TABLE)
    ctr.snapshot("other-snapshot")

    psql(ctr, "INSERT INTO users(name, age) VALUES ('test', 42)")
    # Restore before connecting, it drops every connection to the database
    ctr.restore()

    with PostgresHandler.from_container(ctr, None, "sslmode=disable") as pg:
        assert pg.fetch_one("SELECT COUNT(1) FROM users")[0] == 0
        assert pg.get_table_columns("public", "users") == ["id", "name", "age"]


def test_snapshot_duplicate(postgres_factory):
    ctr = postgres_factory(
        "postgres:16-alpine",
        options.with_database("other-db"),
        options.with_username("other-user"),
        options.with_password("other-password"),
        options.basic_wait_strategies(),
    )
    psql(ctr, USERS_TABLE)

    ctr.snapshot("other-snapshot")
    ctr.snapshot("other-snapshot")


def test_restore_twice_in_a_row(postgres_factory):
    ctr = postgres_factory(
        "postgres:16-alpine",
        options.with_database(DBNAME),
        options.with_password(PASSWORD),
        options.basic_wait_strategies(),
    )
    psql(ctr, USERS_TABLE)
    ctr.snapshot()
    ctr.restore()
    ctr.restore()
    assert "(0 rows)" in psql(ctr, "SELECT * FROM users")


def test_restore_unknown_snapshot_fails(postgres_factory):
    ctr = postgres_factory(
        "postgres:16-alpine",
        options.with_database(DBNAME),
        options.with_password(PASSWORD),
        options.basic_wait_strategies(),
    )
    with pytest.raises(SnapshotError, match="never-taken"):
        ctr.restore("never-taken")


def test_snapshot_of_system_database_is_refused(postgres_factory):
    ctr = postgres_factory("postgres:16-alpine", options.with_password(PASSWORD), options.basic_wait_strategies())
    assert ctr.dbname == "postgres"
    with pytest.raises(SnapshotError):
        ctr.snapshot()
