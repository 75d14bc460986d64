#!/usr/bin/env python3
"""Entry point for one media ingestion worker process."""

import argparse
import logging
import os
import sys

from api.main import start_health_server
from download.object_store import S3ObjectStore, build_s3_client
from download.pipeline import StreamingPipeline
from download.provider import YtDlpProvider, build_proxy_url
from download.worker import IngestionWorker, WorkerStatus
from engine.cancellation import Ticker
from engine.core import load_worker_config, setup_logging, validate_config
from engine.job_queue import JobStore
from engine.lifecycle import LifecycleManager
from engine.notifications import build_notifier
from engine.paths import ensure_dir
from engine.retry_policy import RetryPolicy
from engine.runtime import get_runtime_info

logger = logging.getLogger("ingest_worker")


def build_worker(config, *, status=None):
    store = JobStore(config.db_path)
    store.ensure_schema()
    proxy_url = build_proxy_url(
        config.proxy_host,
        config.proxy_username,
        config.proxy_password,
        config.proxy_country,
    )
    provider = YtDlpProvider(proxy_url=proxy_url)
    client = build_s3_client(
        access_key_id=config.s3_access_key_id,
        secret_access_key=config.s3_secret_access_key,
        region=config.s3_region,
        endpoint_url=config.s3_endpoint,
    )
    object_store = S3ObjectStore(client, config.s3_bucket_name)
    pipeline = StreamingPipeline(provider, object_store, logger=logging.getLogger("download.pipeline"))
    policy = RetryPolicy(store, build_notifier(config), logger=logging.getLogger("engine.retry_policy"))
    worker = IngestionWorker(
        store,
        pipeline,
        policy,
        ticker=Ticker(),
        status=status,
        logger=logging.getLogger("download.worker"),
    )
    return worker, policy


def main(argv=None):
    parser = argparse.ArgumentParser(description="Jukebox media ingestion worker")
    parser.add_argument("--log-level", default="INFO", help="Root log level (DEBUG shows per-chunk progress).")
    parser.add_argument("--no-health", action="store_true", help="Do not start the health endpoint.")
    args = parser.parse_args(argv)

    config = load_worker_config()
    setup_logging(config.log_dir, level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    errors = validate_config(config)
    if errors:
        for error in errors:
            logger.error("Invalid configuration: %s", error)
        return 2

    ensure_dir(os.path.dirname(config.db_path))
    logger.info("Starting ingestion worker db=%s runtime=%s", config.db_path, get_runtime_info())

    status = WorkerStatus()
    worker, policy = build_worker(config, status=status)
    lifecycle = LifecycleManager(policy, on_shutdown=worker.request_stop)
    lifecycle.install()
    lifecycle.install_fatal_hooks()

    if not args.no_health:
        start_health_server(status, port=config.health_port)

    try:
        worker.run_loop()
    except Exception:
        logger.critical("Worker loop error, terminating", exc_info=True)
        logging.shutdown()
        return 1

    lifecycle.reconcile()
    logger.info("Worker stopped")
    logging.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
