import time
from typing import Dict

from flask import Blueprint, current_app, jsonify, request

from . import get_store
from .ingest import (
    EXAMPLE_PAYLOAD,
    PayloadError,
    flatten_payload,
    parse_query_time,
    parse_timestamp,
    to_iso,
)
from .metrics_store import Resolution
from .stats import trailing_percent_changes

api_bp = Blueprint("api", __name__, url_prefix="/api")

# Dashboard-facing metric names -> storage keys
METRIC_NAME_MAP: Dict[str, str] = {
    "voltage": "voltage",
    "current": "current_A",
    "temp.CH1": "temp.CH1",
    "temp.CH2": "temp.CH2",
    "temp.CH3": "temp.CH3",
    "temp.CH5": "temp.CH5",
    "vibration": "vibration",
    "frequency_Hz": "frequency_Hz",
    "energy_kWh": "energy_kWh",
}

DEFAULT_QUERY_METRICS = "voltage,current,temp.CH1,temp.CH2,temp.CH3,vibration"


@api_bp.route("/ingest", methods=["POST"])
def ingest():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        current_app.logger.warning("Ingest rejected: body is not a JSON object")
        return jsonify({"error": "Invalid JSON body"}), 400

    if not body.get("timestamp"):
        current_app.logger.warning("Ingest rejected: missing timestamp")
        return jsonify({"error": "Missing timestamp"}), 400

    try:
        timestamp = parse_timestamp(body["timestamp"], current_app.config["INGEST_LOCAL_TZ"])
    except PayloadError as e:
        current_app.logger.warning(f"Ingest rejected: {e} ({body['timestamp']!r})")
        return jsonify({"error": str(e)}), 400

    store = get_store()
    pairs = flatten_payload(body)
    for key, value in pairs:
        store.write(key, value, timestamp)

    current_app.logger.debug(f"Ingested {len(pairs)} metrics at {timestamp}")
    return jsonify({"ok": True, "timestamp": to_iso(timestamp), "metricsStored": len(pairs)})


@api_bp.route("/ingest", methods=["GET"])
def ingest_info():
    return jsonify(
        {
            "message": "IoT Analytics Ingest Endpoint",
            "method": "POST",
            "expectedPayload": EXAMPLE_PAYLOAD,
        }
    )


@api_bp.route("/metrics")
def metrics():
    """Return stored samples for the requested metrics.

    Query params:
      - from, to: ISO-8601 or epoch ms; the range applies only when both are set
      - metrics: comma-separated dashboard metric names
      - agg: raw (default), 1min or 5min
    """
    agg = request.args.get("agg") or "raw"
    try:
        resolution = Resolution.parse(agg)
    except ValueError:
        return jsonify({"error": "Invalid aggregation parameter. Use raw, 1min, or 5min"}), 400

    from_param = request.args.get("from")
    to_param = request.args.get("to")
    from_ts = to_ts = None
    if from_param and to_param:
        try:
            from_ts = parse_query_time(from_param)
            to_ts = parse_query_time(to_param)
        except PayloadError as e:
            return jsonify({"error": str(e)}), 400

    requested = [m.strip() for m in (request.args.get("metrics") or DEFAULT_QUERY_METRICS).split(",")]

    store = get_store()
    samples = {}
    for name in requested:
        key = METRIC_NAME_MAP.get(name)
        if key:
            samples[name] = store.query(key, from_ts, to_ts, resolution)

    latest = store.latest_snapshot()
    latest_by_name = {}
    for name, key in METRIC_NAME_MAP.items():
        value = latest.get(key)
        latest_by_name[name] = value if value is not None else 0

    if from_ts is not None and to_ts is not None:
        range_ = {"from": to_iso(from_ts), "to": to_iso(to_ts)}
    else:
        range_ = {"from": "all", "to": "all"}

    return jsonify(
        {
            "range": range_,
            "samples": samples,
            "latest": latest_by_name,
            "aggregation": resolution.value,
            "sampleCounts": {name: len(points) for name, points in samples.items()},
        }
    )


@api_bp.route("/percentages")
def percentages():
    now_ms = int(time.time() * 1000)
    window_ms = current_app.config["PERCENT_CHANGE_WINDOW_SECONDS"] * 1000
    result = trailing_percent_changes(get_store(), METRIC_NAME_MAP, now_ms, window_ms)
    return jsonify({"percentages": result})


@api_bp.route("/reset", methods=["POST"])
def reset():
    get_store().reset()
    current_app.logger.info("Metric store reset via API")
    return jsonify({"success": True, "message": "All data has been cleared successfully"})


@api_bp.route("/reset", methods=["GET"])
def reset_info():
    return jsonify(
        {
            "message": "IoT Analytics Reset Endpoint",
            "method": "POST",
            "description": "Clears all stored data from the system",
        }
    )
