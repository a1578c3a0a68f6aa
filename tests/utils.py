# tests/utils.py
from pgcontainer.postgres import run

DBNAME = "test-db"
USER = "postgres"
PASSWORD = "password"

USERS_TABLE = "CREATE TABLE users (id SERIAL, name TEXT NOT NULL, age INT NOT NULL)"


class ContainerRegistry:
    """Starts containers through pgcontainer.postgres.run() and stops them all on teardown."""

    def __init__(self):
        self.containers = []

    def run(self, image, *options):
        container = run(image, *options)
        self.containers.append(container)
        return container

    def stop_all(self):
        while self.containers:
            self.containers.pop().stop()


def psql(container, sql, user=None, dbname=None):
    """Run one statement through psql inside the container and fail loudly on errors."""
    exit_code, output = container.exec(
        ["psql", "-v", "ON_ERROR_STOP=1", "-U", user or container.username, "-d", dbname or container.dbname, "-c", sql]
    )
    assert exit_code == 0, output.decode("utf-8", errors="replace")
    return output.decode("utf-8", errors="replace")


class RecordingCursor:
    def __init__(self, conn):
        self.conn = conn

    def execute(self, sql, params=None):
        if self.conn.fail_on and self.conn.fail_on in sql:
            raise RuntimeError(f"boom: {sql}")
        self.conn.executed.append(sql)

    def fetchall(self):
        return [(1,)]

    def fetchone(self):
        return (1,)

    def close(self):
        pass


class RecordingConnection:
    def __init__(self, dsn, fail_on=None):
        self.dsn = dsn
        self.fail_on = fail_on
        self.autocommit = False
        self.executed = []
        self.closed = False

    def cursor(self):
        return RecordingCursor(self)

    def close(self):
        self.closed = True


class RecordingDriver:
    """A connect(dsn) callable for the driver registry that keeps every connection it made."""

    def __init__(self, fail_on=None, refuse=False):
        self.fail_on = fail_on
        self.refuse = refuse
        self.connections = []

    def __call__(self, dsn):
        if self.refuse:
            raise ConnectionError(f"connection refused: {dsn}")
        conn = RecordingConnection(dsn, fail_on=self.fail_on)
        self.connections.append(conn)
        return conn


class FakeContainer:
    """Just enough of PostgresContainer for the snapshot and wait modules."""

    def __init__(self, dbname=DBNAME, username=USER, password=PASSWORD, sql_driver="postgres",
                 snapshot_name="migrated_template", exec_results=None, logs=b""):
        self.dbname = dbname
        self.username = username
        self.password = password
        self.sql_driver = sql_driver
        self.snapshot_name = snapshot_name
        self.exec_results = list(exec_results or [])
        self.exec_calls = []
        self.logs = logs

    def get_container_host_ip(self):
        return "localhost"

    def mapped_port(self, port=5432):
        return 55432

    def exec(self, command):
        self.exec_calls.append(command)
        if self.exec_results:
            return self.exec_results.pop(0)
        return 0, b""

    def get_logs(self):
        return b"", self.logs
