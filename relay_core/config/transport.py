"""Chunked transport configuration constants."""

DEFAULT_CHUNK_SIZE = 100_000  # Characters per chunk
SMALL_PAYLOAD_LIMIT = 50 * 1024  # Below this, send as a single chunk
MEDIUM_PAYLOAD_LIMIT = 1024 * 1024
MEDIUM_CHUNK_SIZE = 50_000
LARGE_CHUNK_SIZE = 100_000

MAX_BYTES_PER_SECOND = 0  # 0 disables pacing
SEND_RETRIES = 3
SEND_RETRY_DELAY = 0.5  # Seconds, doubled per attempt

# Orchestrator polling
POLL_INTERVAL_SECONDS = 0.1
EXPORT_TIMEOUT_SECONDS = 120.0
STORE_TIMEOUT_SECONDS = 10.0
VALIDATION_TIMEOUT_SECONDS = 120.0
MAX_TRANSFER_RECORDS = 100
