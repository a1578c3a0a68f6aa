import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_IMAGE = "postgres:16-alpine"
DEFAULT_USER = "postgres"
DEFAULT_PASSWORD = "postgres"
DEFAULT_SNAPSHOT_NAME = "migrated_template"
DEFAULT_SQL_DRIVER = "postgres"
DEFAULT_STARTUP_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 0.5

# Internal helpers

def _read_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping at the top level")
    return data

def _to_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}

def _project_root() -> Path:
    # pgcontainer/utils/config_loader.py -> project root two levels up
    return Path(__file__).resolve().parents[2]

def _resolve_path(default_rel: str, override: Optional[str]) -> str:
    if override:
        return override
    env_path = os.getenv("PGCONTAINER_CONFIG")
    if env_path:
        return env_path
    return str(_project_root() / default_rel)

# Public API

def load_container_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load container defaults from YAML and apply environment overrides where
    present. A missing file is not an error: built-in defaults are used.
    Returns a dict with canonical keys:
    - postgres: image, user, password, database (and alias dbname), sql_driver, snapshot_name
    - wait: startup_timeout, poll_interval
    - logging: level, log_file, to_console
    """
    path = _resolve_path("configs/pgcontainer.yml", config_path)
    config = _read_yaml(path) if Path(path).exists() else {}

    # Ensure sub-dicts exist
    config.setdefault("postgres", {})
    config.setdefault("wait", {})
    config.setdefault("logging", {})

    pg = config["postgres"]
    pg["image"] = os.getenv("PGCONTAINER_IMAGE", pg.get("image") or DEFAULT_IMAGE)
    pg["user"] = os.getenv("PGCONTAINER_USER", pg.get("user") or DEFAULT_USER)
    pg["password"] = os.getenv("PGCONTAINER_PASSWORD", pg.get("password") or DEFAULT_PASSWORD)
    # The stock image names the database after the user when POSTGRES_DB is unset
    db_env = os.getenv("PGCONTAINER_DB")
    pg["database"] = db_env if db_env is not None else pg.get("database") or pg.get("dbname") or pg["user"]
    pg["dbname"] = pg["database"]
    pg["sql_driver"] = os.getenv("PGCONTAINER_SQL_DRIVER", pg.get("sql_driver") or DEFAULT_SQL_DRIVER)
    pg["snapshot_name"] = os.getenv("PGCONTAINER_SNAPSHOT_NAME", pg.get("snapshot_name") or DEFAULT_SNAPSHOT_NAME)

    wt = config["wait"]
    wt["startup_timeout"] = float(os.getenv("PGCONTAINER_STARTUP_TIMEOUT", wt.get("startup_timeout", DEFAULT_STARTUP_TIMEOUT)))
    wt["poll_interval"] = float(os.getenv("PGCONTAINER_POLL_INTERVAL", wt.get("poll_interval", DEFAULT_POLL_INTERVAL)))
    if wt["startup_timeout"] <= 0:
        raise ValueError("wait.startup_timeout must be positive")
    if wt["poll_interval"] <= 0:
        raise ValueError("wait.poll_interval must be positive")

    lg = config["logging"]
    lg["level"] = os.getenv("PGCONTAINER_LOG_LEVEL", lg.get("level", "INFO"))
    lg["log_file"] = os.getenv("PGCONTAINER_LOG_FILE", lg.get("log_file"))
    lg["to_console"] = _to_bool(os.getenv("PGCONTAINER_LOG_TO_CONSOLE", lg.get("to_console", True)), default=True)

    return config
