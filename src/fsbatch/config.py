"""Configuration read from FSBATCH_* environment variables."""

import os
from pathlib import Path
from typing import Optional

DEFAULT_QUOTA_BYTES = 4 * 1024 * 1024
DEFAULT_S3_REGION = "us-east-1"
DEFAULT_S3_PREFIX = "fsbatch"
DEFAULT_LOG_LEVEL = "INFO"
STORAGE_TYPES = ("local", "s3")


def _read_positive_int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


def _read_positive_float_env(name: str) -> Optional[float]:
    value = os.environ.get(name)
    if value is None:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    if parsed <= 0:
        return None
    return parsed


def get_default_data_dir() -> Path:
    data_dir = os.environ.get("FSBATCH_DATA_DIR")
    if data_dir:
        return Path(data_dir).expanduser().resolve()
    return Path.home() / ".fsbatch"


def get_quota_bytes() -> int:
    return _read_positive_int_env("FSBATCH_QUOTA_BYTES", DEFAULT_QUOTA_BYTES)


def get_fetch_timeout() -> Optional[float]:
    return _read_positive_float_env("FSBATCH_FETCH_TIMEOUT")


def get_storage_type() -> str:
    return os.environ.get("FSBATCH_STORAGE", "local")


def get_log_level() -> str:
    return os.environ.get("FSBATCH_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()


def get_s3_config() -> dict:
    return {
        "bucket": os.environ.get("FSBATCH_S3_BUCKET"),
        "region": os.environ.get("FSBATCH_S3_REGION", DEFAULT_S3_REGION),
        "prefix": os.environ.get("FSBATCH_S3_PREFIX", DEFAULT_S3_PREFIX),
        "endpoint_url": os.environ.get("FSBATCH_S3_ENDPOINT"),
    }
