"""
Paths and configuration defaults for the task queue.
"""
import os
from pathlib import Path

# Environment variable that overrides the backing file location
DATA_FILE_ENV = "TASKFLOW_DB"
DEFAULT_DATA_FILE = "taskdata.json"
WORKERS_FILE = "workers.json"

DEFAULT_CONFIG = {
    'max_retries': 3,
    'backoff_base': 2,
}

# Keys whose values must be non-negative integers
INTEGER_KEYS = ('max_retries', 'backoff_base')

# Seconds a worker sleeps when nothing is eligible
POLL_INTERVAL = 1.0


def get_data_path() -> Path:
    """Return the backing file path, honouring the TASKFLOW_DB override."""
    override = os.environ.get(DATA_FILE_ENV)
    if override:
        return Path(override)
    return Path.cwd() / DEFAULT_DATA_FILE


def get_workers_path(data_path: Path) -> Path:
    """The worker registry lives next to the backing file."""
    return Path(data_path).parent / WORKERS_FILE


def normalize_key(key: str) -> str:
    """Accept both 'max-retries' and 'max_retries' spellings."""
    return key.strip().replace('-', '_')
