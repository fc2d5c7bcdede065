import os
import logging

from .metrics_store import DEFAULT_METRIC_KEYS


def _metric_keys():
    raw = os.getenv("METRIC_KEYS", "")
    keys = [k.strip() for k in raw.split(",") if k.strip()]
    return tuple(keys) if keys else DEFAULT_METRIC_KEYS


class BaseConfig:
    LOG_LEVEL = getattr(logging, os.getenv("LOG_LEVEL", "INFO"))

    # Raw history: capacity = retention / nominal sample interval
    RAW_RETENTION_SECONDS = int(os.getenv("RAW_RETENTION_SECONDS", "3600"))
    RAW_SAMPLE_INTERVAL_MS = int(os.getenv("RAW_SAMPLE_INTERVAL_MS", "5000"))
    # Finalized buckets kept per resolution
    AGGREGATED_CAPACITY = int(os.getenv("AGGREGATED_CAPACITY", "1000"))
    BUCKET_WIDTH_MS = int(os.getenv("BUCKET_WIDTH_MS", "60000"))
    METRIC_KEYS = _metric_keys()

    # Offset applied to "YYYY-MM-DD HH:MM:SS" ingest timestamps
    INGEST_LOCAL_UTC_OFFSET = os.getenv("INGEST_LOCAL_UTC_OFFSET", "+05:30")
    PERCENT_CHANGE_WINDOW_SECONDS = int(os.getenv("PERCENT_CHANGE_WINDOW_SECONDS", "3600"))


class DevConfig(BaseConfig):
    DEBUG = True


class TestConfig(BaseConfig):
    TESTING = True
    DEBUG = False


class ProdConfig(BaseConfig):
    DEBUG = False
