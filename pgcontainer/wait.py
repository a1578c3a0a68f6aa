"""
Readiness strategies for PostgresContainer.

Each strategy exposes `wait_until_ready(container)` and raises TimeoutError
when the container is not ready within its startup timeout. Strategies are
configured with chained `with_*` calls, e.g.

    for_log("database system is ready to accept connections").with_occurrence(2)
"""
import logging
import socket
import time
from typing import Callable, List, Optional

from testcontainers.core.waiting_utils import wait_for_logs

from pgcontainer import drivers
from pgcontainer.utils.config_loader import load_container_config

logger = logging.getLogger("pgcontainer.wait")

READY_LOG = "database system is ready to accept connections"


def _container_port(port) -> int:
    return int(str(port).split("/")[0])


class WaitStrategy:
    def __init__(self):
        wait_cfg = load_container_config()["wait"]
        self.startup_timeout: float = wait_cfg["startup_timeout"]
        self.poll_interval: float = wait_cfg["poll_interval"]

    def with_startup_timeout(self, seconds: float):
        if seconds <= 0:
            raise ValueError("startup timeout must be positive")
        self.startup_timeout = seconds
        return self

    def with_poll_interval(self, seconds: float):
        if seconds <= 0:
            raise ValueError("poll interval must be positive")
        self.poll_interval = seconds
        return self

    def with_wait_config(self, wait_cfg: dict):
        """Apply the `wait` section of a loaded pgcontainer config."""
        return self.with_startup_timeout(wait_cfg["startup_timeout"]).with_poll_interval(wait_cfg["poll_interval"])

    def wait_until_ready(self, container) -> None:
        raise NotImplementedError


class LogStrategy(WaitStrategy):
    def __init__(self, text: str):
        super().__init__()
        self.text = text
        self.occurrence = 1

    def with_occurrence(self, count: int):
        if count < 1:
            raise ValueError("occurrence must be at least 1")
        self.occurrence = count
        return self

    def matches(self, logs: str) -> bool:
        return logs.count(self.text) >= self.occurrence

    def wait_until_ready(self, container) -> None:
        logger.info(f"Waiting for log {self.text!r} x{self.occurrence} (timeout {self.startup_timeout}s)")
        wait_for_logs(container, self.matches, timeout=self.startup_timeout, interval=self.poll_interval)

    def __repr__(self):
        return f"LogStrategy({self.text!r}, occurrence={self.occurrence})"


class ListeningPortStrategy(WaitStrategy):
    def __init__(self, port="5432/tcp"):
        super().__init__()
        self.port = _container_port(port)

    def _external_check(self, host: str, mapped: int) -> bool:
        try:
            with socket.create_connection((host, mapped), timeout=self.poll_interval):
                return True
        except OSError:
            return False

    def _internal_check(self, container) -> bool:
        # /proc/net/tcp lists "local_address rem_address st" in hex; 0A is LISTEN
        pattern = f":{self.port:04X} [0-9A-F]*:[0-9A-F]* 0A"
        exit_code, _ = container.exec(["sh", "-c", f"grep -qsi '{pattern}' /proc/net/tcp /proc/net/tcp6"])
        return exit_code == 0

    def wait_until_ready(self, container) -> None:
        logger.info(f"Waiting for port {self.port}/tcp (timeout {self.startup_timeout}s)")
        deadline = time.monotonic() + self.startup_timeout
        host = container.get_container_host_ip()
        while True:
            mapped = container.mapped_port(self.port)
            if self._external_check(host, mapped) and self._internal_check(container):
                return
            if time.monotonic() >= deadline:
                raise TimeoutError(f"port {self.port}/tcp was not listening after {self.startup_timeout}s")
            time.sleep(self.poll_interval)

    def __repr__(self):
        return f"ListeningPortStrategy({self.port})"


class SQLStrategy(WaitStrategy):
    def __init__(self, port, driver: str, url_fn: Callable[[str, int], str]):
        super().__init__()
        self.port = _container_port(port)
        self.driver = driver
        self.url_fn = url_fn
        self.query = "SELECT 1"

    def with_query(self, query: str):
        self.query = query
        return self

    def _try_query(self, connect, dsn: str) -> None:
        conn = connect(dsn)
        try:
            cur = conn.cursor()
            try:
                cur.execute(self.query)
                cur.fetchall()
            finally:
                cur.close()
        finally:
            conn.close()

    def wait_until_ready(self, container) -> None:
        # Unknown drivers fail straight away, retrying cannot help
        connect = drivers.get_driver(self.driver)
        logger.info(f"Waiting for {self.query!r} via {self.driver} (timeout {self.startup_timeout}s)")
        deadline = time.monotonic() + self.startup_timeout
        host = container.get_container_host_ip()
        last_error: Optional[Exception] = None
        while True:
            try:
                self._try_query(connect, self.url_fn(host, container.mapped_port(self.port)))
                return
            except Exception as e:
                last_error = e
                logger.debug(f"SQL readiness check failed: {e}")
            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"query {self.query!r} did not succeed after {self.startup_timeout}s: {last_error}"
                ) from last_error
            time.sleep(self.poll_interval)

    def __repr__(self):
        return f"SQLStrategy({self.port}, {self.driver!r}, query={self.query!r})"


class AllStrategy(WaitStrategy):
    """Run strategies in order. A startup timeout set here is pushed down to every strategy."""

    def __init__(self, *strategies: WaitStrategy):
        super().__init__()
        self.strategies: List[WaitStrategy] = list(strategies)

    def with_startup_timeout(self, seconds: float):
        super().with_startup_timeout(seconds)
        for strategy in self.strategies:
            strategy.with_startup_timeout(seconds)
        return self

    def with_wait_config(self, wait_cfg: dict):
        super().with_wait_config(wait_cfg)
        for strategy in self.strategies:
            strategy.with_wait_config(wait_cfg)
        return self

    def wait_until_ready(self, container) -> None:
        for strategy in self.strategies:
            strategy.wait_until_ready(container)

    def __repr__(self):
        return f"AllStrategy({', '.join(repr(s) for s in self.strategies)})"


def for_log(text: str) -> LogStrategy:
    return LogStrategy(text)


def for_listening_port(port="5432/tcp") -> ListeningPortStrategy:
    return ListeningPortStrategy(port)


def for_sql(port, driver: str, url_fn: Callable[[str, int], str]) -> SQLStrategy:
    return SQLStrategy(port, driver, url_fn)


def for_all(*strategies: WaitStrategy) -> AllStrategy:
    return AllStrategy(*strategies)


def basic_wait_strategies(wait_cfg: Optional[dict] = None) -> AllStrategy:
    # The stock entrypoint runs a temporary server for init scripts, so the
    # ready line is logged twice before the real server accepts connections.
    strategy = for_all(
        for_log(READY_LOG).with_occurrence(2),
        for_listening_port("5432/tcp"),
    )
    if wait_cfg is not None:
        strategy.with_wait_config(wait_cfg)
    return strategy
