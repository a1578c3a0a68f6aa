"""
Snapshot and restore of a container's database using PostgreSQL template databases.

A snapshot is a copy of the application database flagged as a template.
Restoring drops the application database (disconnecting its clients) and
recreates it from that template. Commands run through the container's SQL
driver against the maintenance database; when no usable driver is available
they run through psql inside the container instead.
"""
import logging
from typing import List, Optional

from pgcontainer.errors import SnapshotError
from pgcontainer.utils.config_loader import DEFAULT_SNAPSHOT_NAME
from pgcontainer.utils.pg_handler import PostgresHandler

logger = logging.getLogger("pgcontainer.snapshot")

MAINTENANCE_DB = "postgres"
# Dollar-quote tag around the restore guard block
GUARD_TAG = "$pgcontainer_guard$"


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def snapshot_commands(snapshot: str, dbname: str, owner: str) -> List[str]:
    return [
        # A template database cannot be dropped, clear the flag first
        f"UPDATE pg_database SET datistemplate = FALSE WHERE datname = {quote_literal(snapshot)}",
        f"DROP DATABASE IF EXISTS {quote_ident(snapshot)}",
        f"CREATE DATABASE {quote_ident(snapshot)} WITH TEMPLATE {quote_ident(dbname)} OWNER {quote_ident(owner)}",
        f"ALTER DATABASE {quote_ident(snapshot)} WITH is_template = TRUE",
    ]


def restore_commands(snapshot: str, dbname: str, owner: str) -> List[str]:
    if GUARD_TAG in snapshot:
        raise SnapshotError(f"snapshot name must not contain {GUARD_TAG}")
    return [
        # Fail before dropping anything when the snapshot is missing
        f"DO {GUARD_TAG} BEGIN "
        f"IF NOT EXISTS (SELECT 1 FROM pg_database WHERE datname = {quote_literal(snapshot)}) THEN "
        f"RAISE EXCEPTION 'snapshot % does not exist', {quote_literal(snapshot)}; "
        f"END IF; END {GUARD_TAG}",
        f"DROP DATABASE {quote_ident(dbname)} WITH (FORCE)",
        f"CREATE DATABASE {quote_ident(dbname)} WITH TEMPLATE {quote_ident(snapshot)} OWNER {quote_ident(owner)}",
    ]


def resolve_snapshot_name(container, name: Optional[str] = None) -> str:
    snapshot = name or container.snapshot_name or DEFAULT_SNAPSHOT_NAME
    if container.dbname == MAINTENANCE_DB:
        raise SnapshotError(
            f"cannot snapshot the {MAINTENANCE_DB!r} system database as it cannot be dropped to be restored"
        )
    if snapshot == container.dbname:
        raise SnapshotError(f"snapshot name {snapshot!r} must differ from the database name")
    return snapshot


def _execute_sql(conn: PostgresHandler, commands: List[str]) -> None:
    for cmd in commands:
        try:
            conn.execute(cmd)
        except Exception as e:
            raise SnapshotError(f"could not execute command {cmd}: {e}") from e


def _execute_fallback(container, commands: List[str]) -> None:
    for cmd in commands:
        exit_code, output = container.exec(
            ["psql", "-v", "ON_ERROR_STOP=1", "-U", container.username, "-d", MAINTENANCE_DB, "-c", cmd]
        )
        if exit_code != 0:
            text = output.decode("utf-8", errors="replace") if isinstance(output, bytes) else str(output)
            raise SnapshotError(f"non-zero exit code {exit_code} for command {cmd}: {text.strip()}")


def execute_commands(container, commands: List[str]) -> None:
    try:
        conn = PostgresHandler.from_container(container, MAINTENANCE_DB, "sslmode=disable")
    except Exception as e:
        logger.warning(f"Could not connect with sql driver {container.sql_driver!r}, falling back to exec psql: {e}")
        _execute_fallback(container, commands)
        return

    try:
        _execute_sql(conn, commands)
    finally:
        conn.close()
