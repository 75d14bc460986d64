"""Application settings constants."""

from __future__ import annotations

# Number of retryable failures allowed before a job is marked failed.
MAX_RETRIES = 3

# Status writes are attempted this many times before giving up.
PERSIST_ATTEMPTS = 5
# SQLite busy timeout applied to each status-write attempt.
PERSIST_ATTEMPT_TIMEOUT_SECONDS = 3.0
PERSIST_BACKOFF_SECONDS = 0.2

# Guard windows for the source stream.
STREAM_START_TIMEOUT_SECONDS = 15.0
STREAM_INACTIVITY_TIMEOUT_SECONDS = 15.0
STREAM_CHUNK_SIZE = 64 * 1024
STREAM_CONNECT_TIMEOUT_SECONDS = 10.0

# Worker loop pacing.
IDLE_POLL_SECONDS = 5.0
PACE_SECONDS = 0.1

# Object store layout.
OBJECT_KEY_PREFIX = "youtube-audio/"
OBJECT_KEY_EXTENSION = ".webm"
AUDIO_CONTENT_TYPE = "audio/webm"
OBJECT_ACL = "public-read"
MULTIPART_CHUNK_SIZE = 8 * 1024 * 1024

# Bounded pipe between the source reader and the uploader.
PIPE_MAX_CHUNKS = 64

DEFAULT_HEALTH_PORT = 8090
