"""Batch processing configuration constants."""

# Job scheduling
BATCH_SIZE = 50  # Objects advanced per job per tick
MAX_CONCURRENT_JOBS = 3  # Active jobs allowed at once (per instance)
SYNC_MODE_BATCH_SIZE = 1_000_000  # Effectively "everything in one tick"

# Job retention
KEEP_COMPLETED_JOBS = 25  # Finished jobs retained for status queries
JOB_RESULT_MAX_AGE_TICKS = 36_000  # 10 minutes at 60 UPS

# Import session limits
MAX_IMPORT_SESSIONS = 4
MAX_IMPORT_SESSION_AGE_SECONDS = 60.0
MAX_TOTAL_CHUNKS = 256

# Engine clock
TICKS_PER_SECOND = 60
