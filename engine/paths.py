import os
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _is_container_runtime():
    if os.path.exists("/.dockerenv"):
        return True
    return os.path.isdir("/data")


def _default_root_paths():
    if _is_container_runtime():
        return {
            "data": Path("/data"),
            "logs": Path("/logs"),
        }
    base = PROJECT_ROOT / "data"
    return {
        "data": base,
        "logs": base / "logs",
    }


_DEFAULTS = _default_root_paths()


def resolve_data_dir(environ=None):
    environ = os.environ if environ is None else environ
    return Path(environ.get("JUKEBOX_DATA_DIR", _DEFAULTS["data"])).resolve()


def resolve_log_dir(environ=None):
    environ = os.environ if environ is None else environ
    return Path(environ.get("JUKEBOX_LOG_DIR", _DEFAULTS["logs"])).resolve()


def resolve_db_path(environ=None):
    """Return the job store path.

    ``DB_FILE`` is shared with the web server process; ``JUKEBOX_DB_PATH``
    takes precedence when both are set.
    """
    environ = os.environ if environ is None else environ
    explicit = environ.get("JUKEBOX_DB_PATH") or environ.get("DB_FILE")
    if explicit:
        return Path(explicit).resolve()
    return (resolve_data_dir(environ) / "database" / "jukebox.sqlite3").resolve()


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)
