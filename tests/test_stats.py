from sensordash.metrics_store import MetricStore
from sensordash.stats import percent_change, trailing_percent_changes

HOUR = 3_600_000


def test_percent_change_rounds_to_one_decimal():
    assert percent_change(110, 100) == 10.0
    assert percent_change(100.25, 100) == 0.3
    assert percent_change(90, 100) == -10.0


def test_percent_change_zero_baseline():
    assert percent_change(50, 0) == 0


def test_trailing_percent_changes():
    store = MetricStore(keys=["voltage", "current_A"], raw_capacity=100)
    now = 10 * HOUR
    store.write("voltage", 200.0, now - HOUR - 60_000)
    store.write("voltage", 220.0, now - 60_000)
    store.write("current_A", 5.0, now - 60_000)

    result = trailing_percent_changes(store, {"voltage": "voltage", "current": "current_A"}, now, HOUR)
    assert result == {"voltage": 10.0, "current": 0}
