from __future__ import annotations

import json
import logging

import pytest

from engine.core import LOG_FILE_NAME, load_worker_config, setup_logging, validate_config
from engine.notifications import LoggingNotifier, TelegramNotifier, build_notifier

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient  # noqa: E402

from api.main import create_app  # noqa: E402
from download.worker import WorkerStatus  # noqa: E402


def _env(tmp_path, **extra):
    env = {
        "JUKEBOX_DATA_DIR": str(tmp_path / "data"),
        "JUKEBOX_LOG_DIR": str(tmp_path / "logs"),
        "S3_ACCESS_KEY_ID": "key",
        "S3_SECRET_ACCESS_KEY": "secret",
        "S3_BUCKET_NAME": "jukebox-audio",
    }
    env.update(extra)
    return env


def test_load_worker_config_reads_environment(tmp_path) -> None:
    config = load_worker_config(
        _env(tmp_path, DB_FILE=str(tmp_path / "dev.sqlite3"), PROXY_HOST="proxy.test:8080", JUKEBOX_HEALTH_PORT="9100")
    )

    assert config.db_path == str((tmp_path / "dev.sqlite3").resolve())
    assert config.s3_bucket_name == "jukebox-audio"
    assert config.proxy_host == "proxy.test:8080"
    assert config.health_port == 9100
    assert validate_config(config) == []


def test_json_config_file_overrides_environment(tmp_path) -> None:
    override = tmp_path / "worker.json"
    override.write_text(json.dumps({"s3_bucket_name": "other-bucket", "health_port": 0, "bogus": 1}))

    config = load_worker_config(_env(tmp_path, JUKEBOX_CONFIG=str(override)))

    assert config.s3_bucket_name == "other-bucket"
    assert config.health_port == 0


def test_validate_config_reports_missing_credentials(tmp_path) -> None:
    config = load_worker_config({"JUKEBOX_DATA_DIR": str(tmp_path), "JUKEBOX_HEALTH_PORT": "nope"})

    errors = validate_config(config)

    assert "S3_ACCESS_KEY_ID and S3_SECRET_ACCESS_KEY must be set" in errors
    assert "S3_BUCKET_NAME must be set" in errors
    assert any("JUKEBOX_HEALTH_PORT" in error for error in errors)


def test_setup_logging_is_idempotent(tmp_path) -> None:
    root = logging.getLogger("")
    before = list(root.handlers)
    try:
        first = setup_logging(tmp_path)
        count = len(root.handlers)
        second = setup_logging(tmp_path)

        assert first == second
        assert first.endswith(LOG_FILE_NAME)
        assert len(root.handlers) == count
    finally:
        for handler in list(root.handlers):
            if handler not in before:
                root.removeHandler(handler)
                handler.close()


def test_build_notifier_prefers_telegram_when_configured(tmp_path) -> None:
    plain = load_worker_config(_env(tmp_path))
    telegram = load_worker_config(_env(tmp_path, TELEGRAM_BOT_TOKEN="t", TELEGRAM_CHAT_ID="c"))

    assert isinstance(build_notifier(plain), LoggingNotifier)
    assert isinstance(build_notifier(telegram), TelegramNotifier)


def test_telegram_notifier_posts_failure_message() -> None:
    posted = []

    class _Resp:
        ok = True
        text = ""

    class _Session:
        def post(self, url, json=None, timeout=None):
            posted.append((url, json, timeout))
            return _Resp()

    notifier = TelegramNotifier("token", "chat", session=_Session())
    notifier.notify_failure("vid-a", "Aborted by start timeout")

    url, payload, timeout = posted[0]
    assert url == "https://api.telegram.org/bottoken/sendMessage"
    assert payload["chat_id"] == "chat"
    assert "vid-a" in payload["text"]
    assert "Aborted by start timeout" in payload["text"]
    assert timeout == 15


def test_health_endpoint_reports_worker_snapshot() -> None:
    status = WorkerStatus()
    status.update(state="processing", last_reference="vid-a")
    status.increment("claimed")
    client = TestClient(create_app(status))

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["worker"]["state"] == "processing"
    assert body["worker"]["claimed"] == 1
    assert body["worker"]["last_reference"] == "vid-a"
    assert "yt_dlp_version" in body["runtime"]
