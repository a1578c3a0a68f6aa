import importlib
import logging
from typing import Any, Callable, Dict, List

from pgcontainer.errors import DriverNotFoundError

logger = logging.getLogger("pgcontainer.drivers")

ConnectFn = Callable[[str], Any]

# Built-in names resolve to DB-API modules imported on first use
_BUILTIN_MODULES: Dict[str, str] = {
    "postgres": "psycopg2",
    "psycopg2": "psycopg2",
    "psycopg": "psycopg",
}

_registry: Dict[str, ConnectFn] = {}


def register_driver(name: str, connect: ConnectFn) -> None:
    """
    Register `connect(dsn)` under `name`. It must return a DB-API connection
    that supports the `autocommit` attribute. Re-registering a name replaces it.
    """
    if not name:
        raise ValueError("driver name must not be empty")
    _registry[name] = connect
    logger.debug(f"Registered SQL driver {name!r}")


def unregister_driver(name: str) -> None:
    _registry.pop(name, None)


def get_driver(name: str) -> ConnectFn:
    if name in _registry:
        return _registry[name]

    module_name = _BUILTIN_MODULES.get(name)
    if module_name is None:
        raise DriverNotFoundError(f"sql driver {name!r} is not registered")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise DriverNotFoundError(f"sql driver {name!r} needs the {module_name!r} package: {e}") from e

    _registry[name] = module.connect
    return module.connect


def registered_drivers() -> List[str]:
    return sorted(set(_registry) | set(_BUILTIN_MODULES))


def connect(name: str, dsn: str, autocommit: bool = True):
    conn = get_driver(name)(dsn)
    try:
        conn.autocommit = autocommit
    except Exception:
        conn.close()
        raise
    return conn
