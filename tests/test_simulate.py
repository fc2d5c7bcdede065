import datetime
import io
import json
import random

from sensordash import simulate


def test_generate_sample_payload_ranges():
    now = datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc)
    payload = simulate.generate_sample_payload(now=now, rng=random.Random(42))
    assert payload["timestamp"] == "2025-01-01T00:00:00+00:00"
    assert 25 <= payload["temperature"]["CH1"] <= 40
    assert 220 <= payload["energy_meter"]["voltage_V"] <= 240
    assert 50 <= payload["energy_meter"]["frequency_Hz"] <= 52
    assert 2 <= payload["vibrator_meter"]["s4_voltage"] <= 4


def test_generated_payload_is_accepted(client):
    resp = client.post("/api/ingest", json=simulate.generate_sample_payload())
    assert resp.status_code == 200
    assert resp.get_json()["metricsStored"] == 7


class _Resp(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def test_send_payload_posts_json(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout):
        seen["url"] = req.full_url
        seen["body"] = json.loads(req.data)
        return _Resp(b'{"ok": true, "metricsStored": 7}')

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    result = simulate.send_payload("http://sensors.local/", {"timestamp": "x"})
    assert seen["url"] == "http://sensors.local/api/ingest"
    assert seen["body"] == {"timestamp": "x"}
    assert result["metricsStored"] == 7


def test_main_sends_count_payloads(monkeypatch):
    calls = []
    monkeypatch.setattr(simulate, "send_payload", lambda url, payload: calls.append(url) or {})
    assert simulate.main(["--url", "http://x", "--count", "3", "--interval", "0"]) == 0
    assert calls == ["http://x"] * 3
