"""
Ephemeral PostgreSQL containers for integration tests.

    ctr = run(
        "postgres:16-alpine",
        with_database("test-db"),
        with_username("postgres"),
        with_password("password"),
        basic_wait_strategies(),
    )
    try:
        dsn = ctr.connection_string("sslmode=disable")
        ...
        ctr.snapshot()
        ...
        ctr.restore()
    finally:
        ctr.stop()

The same settings are available as chained `with_*` methods on
PostgresContainer, which also works as a context manager.
"""
import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from testcontainers.core.container import DockerContainer

from pgcontainer import snapshot as snapshots
from pgcontainer.utils.config_loader import load_container_config
from pgcontainer.utils.pg_handler import build_connection_string
from pgcontainer.wait import WaitStrategy, basic_wait_strategies, for_all

logger = logging.getLogger("pgcontainer.postgres")

POSTGRES_PORT = 5432
CONFIG_FILE_PATH = "/etc/postgresql.conf"
INIT_SCRIPTS_DIR = "/docker-entrypoint-initdb.d"
SSL_STAGING_DIR = "/tmp/pgcontainer/ssl-staging"
SSL_DIR = "/tmp/pgcontainer/postgres"
SSL_CA_CERT = f"{SSL_DIR}/ca_cert.pem"
SSL_CERT = f"{SSL_DIR}/server.cert"
SSL_KEY = f"{SSL_DIR}/server.key"

# The server only accepts a key owned by its user with mode 0600. Bind mounts
# keep host ownership, so the files are copied out of the staging mount first.
SSL_ENTRYPOINT_SCRIPT = f"""set -e
if ! id postgres >/dev/null 2>&1; then
    echo "Unable to find postgres user, required in order to chown key material" >&2
    exit 1
fi
mkdir -p {SSL_DIR}
cp {SSL_STAGING_DIR}/ca_cert.pem {SSL_STAGING_DIR}/server.cert {SSL_STAGING_DIR}/server.key {SSL_DIR}/
chown -R postgres:postgres {SSL_DIR}
chmod 0600 {SSL_KEY}
exec docker-entrypoint.sh "$@"
"""


def _existing_file(path, what: str) -> Path:
    if path is None or str(path).strip() == "":
        raise ValueError(f"{what} path must not be empty")
    resolved = Path(path).expanduser().resolve()
    if not resolved.is_file():
        raise FileNotFoundError(f"{what} not found: {path}")
    return resolved


class PostgresContainer(DockerContainer):
    def __init__(
        self,
        image: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        dbname: Optional[str] = None,
        sql_driver: Optional[str] = None,
        config_path: Optional[str] = None,
        **kwargs,
    ):
        config = load_container_config(config_path)
        pg_cfg = config["postgres"]
        super().__init__(image or pg_cfg["image"], **kwargs)
        self.username: str = username or pg_cfg["user"]
        self.password: str = password or pg_cfg["password"]
        self.dbname: str = dbname or pg_cfg["database"]
        self.sql_driver: str = sql_driver or pg_cfg["sql_driver"]
        self.snapshot_name: str = pg_cfg["snapshot_name"]
        self.config_file: Optional[Path] = None
        self.init_scripts: List[Tuple[Path, str]] = []
        self.ssl_files: Optional[Tuple[Path, Path, Path]] = None
        self.wait_strategy: Optional[WaitStrategy] = None
        self.wait_config: dict = config["wait"]
        self.with_exposed_ports(POSTGRES_PORT)

    # Settings

    def with_database(self, dbname: str):
        if not dbname:
            raise ValueError("database name must not be empty")
        self.dbname = dbname
        return self

    def with_username(self, username: str):
        if not username:
            raise ValueError("username must not be empty")
        self.username = username
        return self

    def with_password(self, password: str):
        self.password = password
        return self

    def with_sql_driver(self, driver: str):
        """Driver used for snapshot commands; unknown names fall back to exec psql."""
        self.sql_driver = driver
        return self

    def with_snapshot_name(self, name: str):
        if not name:
            raise ValueError("snapshot name must not be empty")
        self.snapshot_name = name
        return self

    def with_config_file(self, path):
        self.config_file = _existing_file(path, "config file")
        return self

    def with_init_scripts(self, *paths):
        """Scripts run by the image entrypoint in lexical order of their file names."""
        for path in paths:
            resolved = _existing_file(path, "init script")
            self.init_scripts.append((resolved, resolved.name))
        return self

    def with_ordered_init_scripts(self, *paths):
        """Scripts run in the given order, mounted as 000-<name>, 001-<name>, ..."""
        for index, path in enumerate(paths):
            resolved = _existing_file(path, "init script")
            self.init_scripts.append((resolved, f"{index:03d}-{resolved.name}"))
        return self

    def with_ssl_cert(self, ca_cert_file, cert_file, key_file):
        self.ssl_files = (
            _existing_file(ca_cert_file, "CA certificate"),
            _existing_file(cert_file, "server certificate"),
            _existing_file(key_file, "server key"),
        )
        return self

    def with_wait_strategy(self, *strategies: WaitStrategy):
        if not strategies:
            raise ValueError("at least one wait strategy is required")
        self.wait_strategy = strategies[0] if len(strategies) == 1 else for_all(*strategies)
        return self

    def with_basic_wait_strategies(self):
        return self.with_wait_strategy(basic_wait_strategies(self.wait_config))

    # Container request

    def _command_args(self) -> List[str]:
        args = ["postgres", "-c", "fsync=off"]
        if self.config_file:
            args += ["-c", f"config_file={CONFIG_FILE_PATH}"]
        if self.ssl_files:
            args += [
                "-c", "ssl=on",
                "-c", f"ssl_ca_file={SSL_CA_CERT}",
                "-c", f"ssl_cert_file={SSL_CERT}",
                "-c", f"ssl_key_file={SSL_KEY}",
            ]
        return args

    def _mounts(self) -> List[Tuple[str, str]]:
        mounts = []
        if self.config_file:
            mounts.append((str(self.config_file), CONFIG_FILE_PATH))
        for host_path, name in self.init_scripts:
            mounts.append((str(host_path), f"{INIT_SCRIPTS_DIR}/{name}"))
        if self.ssl_files:
            ca, cert, key = self.ssl_files
            mounts.append((str(ca), f"{SSL_STAGING_DIR}/ca_cert.pem"))
            mounts.append((str(cert), f"{SSL_STAGING_DIR}/server.cert"))
            mounts.append((str(key), f"{SSL_STAGING_DIR}/server.key"))
        return mounts

    def _apply_settings(self) -> None:
        self.with_env("POSTGRES_USER", self.username)
        self.with_env("POSTGRES_PASSWORD", self.password)
        self.with_env("POSTGRES_DB", self.dbname)
        self.with_command(self._command_args())
        for host_path, container_path in self._mounts():
            self.with_volume_mapping(host_path, container_path, mode="ro")
        if self.ssl_files:
            self.with_kwargs(**{**self._kwargs, "entrypoint": ["sh", "-c", SSL_ENTRYPOINT_SCRIPT, "docker-entrypoint-ssl"]})

    # Lifecycle

    def start(self):
        if self._container is not None:
            return self

        self._apply_settings()
        logger.info(f"Starting {self.image} (database={self.dbname!r}, user={self.username!r})")
        super().start()

        strategy = self.wait_strategy or basic_wait_strategies(self.wait_config)
        try:
            strategy.wait_until_ready(self)
        except Exception:
            logger.error(f"Container for {self.image} did not become ready with {strategy!r}", exc_info=True)
            self.stop()
            raise

        logger.info(f"Container for {self.image} ready on port {self.mapped_port()}")
        return self

    def stop(self, force=True, delete_volume=True):
        if self._container is None:
            return
        logger.info(f"Stopping container for {self.image}")
        super().stop(force=force, delete_volume=delete_volume)
        self._container = None

    # Access

    def mapped_port(self, port=POSTGRES_PORT) -> int:
        """Host port for a container port given as 5432, "5432" or "5432/tcp"."""
        return int(self.get_exposed_port(int(str(port).split("/")[0])))

    def connection_string(self, *args: str) -> str:
        return build_connection_string(
            self.username,
            self.password,
            self.get_container_host_ip(),
            self.mapped_port(),
            self.dbname,
            *args,
        )

    # Snapshots

    def snapshot(self, name: Optional[str] = None) -> None:
        """
        Copy the current database into a template database called `name`
        (the current snapshot name by default) and make it the current snapshot.
        Taking a snapshot under an existing name replaces it.
        """
        snapshot_name = snapshots.resolve_snapshot_name(self, name)
        logger.info(f"Creating snapshot {snapshot_name!r} of {self.dbname!r}")
        try:
            snapshots.execute_commands(self, snapshots.snapshot_commands(snapshot_name, self.dbname, self.username))
        except Exception as e:
            logger.error(f"Snapshot {snapshot_name!r} of {self.dbname!r} failed: {e}", exc_info=True)
            raise
        self.snapshot_name = snapshot_name

    def restore(self, name: Optional[str] = None) -> None:
        """
        Recreate the database from snapshot `name` (the current snapshot by
        default). Open connections to the database are terminated.
        """
        snapshot_name = snapshots.resolve_snapshot_name(self, name)
        logger.info(f"Restoring {self.dbname!r} from snapshot {snapshot_name!r}")
        try:
            snapshots.execute_commands(self, snapshots.restore_commands(snapshot_name, self.dbname, self.username))
        except Exception as e:
            logger.error(f"Restore of {self.dbname!r} from {snapshot_name!r} failed: {e}", exc_info=True)
            raise


Option = Callable[[PostgresContainer], object]


def run(image: Optional[str] = None, *options: Option, config_path: Optional[str] = None) -> PostgresContainer:
    """
    Create a container for `image`, apply `options` in order, start it and
    wait until it is ready. Options are the callables from pgcontainer.options
    or any function taking the container. On a failed start the container is
    removed before the error propagates.
    """
    container = PostgresContainer(image, config_path=config_path)
    for option in options:
        option(container)
    return container.start()
