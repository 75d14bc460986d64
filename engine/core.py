import json
import logging
import os
from dataclasses import dataclass, fields, replace

from config.settings import DEFAULT_HEALTH_PORT
from engine.paths import ensure_dir, resolve_db_path, resolve_log_dir

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_FILE_NAME = "worker.log"

# Environment variable -> WorkerConfig field.
_ENV_FIELDS = {
    "S3_ACCESS_KEY_ID": "s3_access_key_id",
    "S3_SECRET_ACCESS_KEY": "s3_secret_access_key",
    "S3_BUCKET_NAME": "s3_bucket_name",
    "S3_BUCKET_REGION": "s3_region",
    "S3_ENDPOINT": "s3_endpoint",
    "PROXY_HOST": "proxy_host",
    "PROXY_USERNAME": "proxy_username",
    "PROXY_PASSWORD": "proxy_password",
    "PROXY_COUNTRY": "proxy_country",
    "TELEGRAM_BOT_TOKEN": "telegram_bot_token",
    "TELEGRAM_CHAT_ID": "telegram_chat_id",
}


@dataclass(frozen=True)
class WorkerConfig:
    db_path: str
    log_dir: str
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_bucket_name: str | None = None
    s3_region: str | None = None
    s3_endpoint: str | None = None
    proxy_host: str | None = None
    proxy_username: str | None = None
    proxy_password: str | None = None
    proxy_country: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    health_port: int = DEFAULT_HEALTH_PORT


def load_config(path):
    with open(path, "r") as f:
        return json.load(f)


def _parse_port(value):
    if value is None or value == "":
        return DEFAULT_HEALTH_PORT
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


def load_worker_config(environ=None):
    """Build the worker configuration from the environment.

    A JSON file named by ``JUKEBOX_CONFIG`` may override any field; keys are
    the ``WorkerConfig`` field names.
    """
    environ = os.environ if environ is None else environ
    values = {
        "db_path": str(resolve_db_path(environ)),
        "log_dir": str(resolve_log_dir(environ)),
        "health_port": _parse_port(environ.get("JUKEBOX_HEALTH_PORT")),
    }
    for env_key, field_name in _ENV_FIELDS.items():
        raw = environ.get(env_key)
        if raw is not None and raw.strip():
            values[field_name] = raw.strip()
    config = WorkerConfig(**values)

    override_path = environ.get("JUKEBOX_CONFIG")
    if override_path:
        overrides = load_config(override_path)
        if not isinstance(overrides, dict):
            raise ValueError("JUKEBOX_CONFIG must contain a JSON object")
        known = {f.name for f in fields(WorkerConfig)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            logging.warning("Ignoring unknown config fields: %s", ", ".join(unknown))
        updates = {k: v for k, v in overrides.items() if k in known}
        if "health_port" in updates:
            updates["health_port"] = _parse_port(updates["health_port"])
        config = replace(config, **updates)
    return config


def validate_config(config):
    errors = []
    if not isinstance(config, WorkerConfig):
        return ["config must be a WorkerConfig"]
    if not config.s3_access_key_id or not config.s3_secret_access_key:
        errors.append("S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY must be set")
    if not config.s3_bucket_name:
        errors.append("S3_BUCKET_NAME must be set")
    if not (0 <= config.health_port <= 65535):
        errors.append("JUKEBOX_HEALTH_PORT must be an integer between 0 and 65535")
    if config.proxy_username and not config.proxy_host:
        errors.append("PROXY_USERNAME is set but PROXY_HOST is missing")
    return errors


def setup_logging(log_dir, *, level=logging.INFO):
    """Attach the worker log file and a console handler to the root logger.

    Safe to call more than once; existing handlers for the same sink are kept.
    """
    ensure_dir(log_dir)
    root = logging.getLogger("")
    root.setLevel(level)
    log_path = os.path.abspath(os.path.join(log_dir, LOG_FILE_NAME))
    formatter = logging.Formatter(LOG_FORMAT)
    has_file = False
    has_console = False
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == log_path:
                has_file = True
        elif isinstance(handler, logging.StreamHandler):
            has_console = True
    if not has_file:
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(level)
        root.addHandler(file_handler)
    if not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        console.setLevel(level)
        root.addHandler(console)
    return log_path
