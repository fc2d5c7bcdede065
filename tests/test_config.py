import pytest

from sensordash import create_app, get_store
from sensordash.config import TestConfig


def test_raw_capacity_follows_retention_and_interval():
    app = create_app({"TESTING": True, "RAW_RETENTION_SECONDS": 60, "RAW_SAMPLE_INTERVAL_MS": 5000})
    assert get_store(app).raw_capacity == 12


def test_default_sizing():
    store = get_store(create_app(TestConfig))
    assert store.raw_capacity == 720
    assert store.aggregated_capacity == 1000
    assert store.bucket_width_ms == 60_000
    assert "temp.CH5" in store.keys


def test_custom_metric_keys():
    store = get_store(create_app({"TESTING": True, "METRIC_KEYS": ("a", "b")}))
    assert store.keys == ["a", "b"]


@pytest.mark.parametrize(
    "overrides",
    [
        {"RAW_SAMPLE_INTERVAL_MS": 0},
        {"RAW_RETENTION_SECONDS": 1, "RAW_SAMPLE_INTERVAL_MS": 5000},
        {"AGGREGATED_CAPACITY": 0},
        {"INGEST_LOCAL_UTC_OFFSET": "IST"},
    ],
)
def test_invalid_sizing_fails_startup(overrides):
    with pytest.raises(RuntimeError):
        create_app({"TESTING": True, **overrides})


def test_apps_do_not_share_stores():
    a = create_app({"TESTING": True})
    b = create_app({"TESTING": True})
    get_store(a).write("voltage", 1.0, 0)
    assert get_store(b).latest_snapshot()["voltage"] is None
