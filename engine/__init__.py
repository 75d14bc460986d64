from .core import (
    WorkerConfig,
    load_config,
    load_worker_config,
    setup_logging,
    validate_config,
)
from .job_queue import ClaimContentionError, IngestionJob, JobStore
from .runtime import get_runtime_info

__all__ = [
    "ClaimContentionError",
    "IngestionJob",
    "JobStore",
    "WorkerConfig",
    "get_runtime_info",
    "load_config",
    "load_worker_config",
    "setup_logging",
    "validate_config",
]
