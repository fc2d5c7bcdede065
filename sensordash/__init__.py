import socket
import logging
import time
from typing import Optional

import psutil
from dotenv import load_dotenv
from flask import Flask, Response, current_app, jsonify, request
from prometheus_client import (
    CollectorRegistry,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)
from werkzeug.exceptions import HTTPException

from .config import BaseConfig
from .ingest import parse_utc_offset
from .metrics_store import MetricStore

load_dotenv()


def _build_store(app: Flask) -> MetricStore:
    """Validate sizing config and construct the store owned by this app."""
    interval_ms = int(app.config["RAW_SAMPLE_INTERVAL_MS"])
    retention_s = int(app.config["RAW_RETENTION_SECONDS"])
    if interval_ms <= 0 or retention_s <= 0:
        raise RuntimeError(
            "RAW_SAMPLE_INTERVAL_MS and RAW_RETENTION_SECONDS must be positive"
        )
    raw_capacity = retention_s * 1000 // interval_ms
    if raw_capacity < 1:
        raise RuntimeError("Raw retention window is shorter than one sample interval")
    if int(app.config["AGGREGATED_CAPACITY"]) < 1 or int(app.config["BUCKET_WIDTH_MS"]) < 1:
        raise RuntimeError("AGGREGATED_CAPACITY and BUCKET_WIDTH_MS must be positive")

    return MetricStore(
        keys=app.config["METRIC_KEYS"],
        raw_capacity=raw_capacity,
        aggregated_capacity=app.config["AGGREGATED_CAPACITY"],
        bucket_width_ms=app.config["BUCKET_WIDTH_MS"],
    )


def create_app(config_object: object | str | None = None) -> Flask:
    app = Flask(__name__)

    # Load default config then override with provided config object
    app.config.from_object(BaseConfig)
    if config_object:
        if isinstance(config_object, str):
            app.config.from_envvar(config_object, silent=True)
        elif isinstance(config_object, dict):
            app.config.from_mapping(config_object)
        else:
            app.config.from_object(config_object)

    # Configure logging
    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        app.config["INGEST_LOCAL_TZ"] = parse_utc_offset(app.config["INGEST_LOCAL_UTC_OFFSET"])
    except ValueError as e:
        raise RuntimeError(f"INGEST_LOCAL_UTC_OFFSET is invalid: {e}") from e

    store = _build_store(app)
    app.extensions["metric_store"] = store
    app.logger.info(
        f"Metric store ready: {len(store.keys)} metrics, raw capacity {store.raw_capacity}, "
        f"bucket width {store.bucket_width_ms} ms"
    )

    from .api import api_bp

    app.register_blueprint(api_bp)

    @app.errorhandler(HTTPException)
    def handle_http_exception(err):
        # JSON errors for API clients, default HTML pages elsewhere
        if not request.path.startswith("/api/"):
            return err
        return jsonify({"error": err.description}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(err):
        app.logger.exception(f"Unhandled error on {request.method} {request.path}")
        return jsonify({"error": "Internal server error"}), 500

    @app.route("/")
    def index():
        return jsonify(
            {
                "service": "sensordash",
                "endpoints": [
                    "/api/ingest",
                    "/api/metrics",
                    "/api/percentages",
                    "/api/reset",
                    "/health",
                    "/metrics",
                ],
            }
        )

    @app.route("/health")
    def health_check():
        return jsonify({"status": "healthy", "service": "sensordash"})

    @app.route("/metrics")
    def prometheus_metrics():
        registry = CollectorRegistry()
        hostname = socket.gethostname()

        raw_g = Gauge(
            "sensordash_raw_samples",
            "Raw samples retained per metric",
            ["hostname", "metric"],
            registry=registry,
        )
        agg_g = Gauge(
            "sensordash_aggregates",
            "Finalized aggregate buckets retained per metric and resolution",
            ["hostname", "metric", "resolution"],
            registry=registry,
        )
        latest_g = Gauge(
            "sensordash_latest_value",
            "Most recently written value per metric",
            ["hostname", "metric"],
            registry=registry,
        )
        mem_rss_g = Gauge(
            "sensordash_memory_rss_bytes",
            "Process RSS memory in bytes",
            ["hostname"],
            registry=registry,
        )
        uptime_g = Gauge(
            "sensordash_process_uptime_seconds",
            "Process uptime in seconds",
            ["hostname"],
            registry=registry,
        )

        for metric, counts in store.describe().items():
            for resolution, count in counts.items():
                if resolution == "raw":
                    raw_g.labels(hostname=hostname, metric=metric).set(count)
                else:
                    agg_g.labels(hostname=hostname, metric=metric, resolution=resolution).set(count)
        for metric, value in store.latest_snapshot().items():
            if value is not None:
                latest_g.labels(hostname=hostname, metric=metric).set(value)

        try:
            p = psutil.Process()
            mem_rss_g.labels(hostname=hostname).set(getattr(p.memory_info(), "rss", 0))
            uptime_g.labels(hostname=hostname).set(time.time() - p.create_time())
        except psutil.Error:
            mem_rss_g.labels(hostname=hostname).set(0)
            uptime_g.labels(hostname=hostname).set(0)

        return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)

    # Security headers
    @app.after_request
    def set_security_headers(response):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        # JSON-only service: nothing should be loaded from responses
        response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
        return response

    return app


def get_store(app: Optional[Flask] = None) -> MetricStore:
    """Return the store owned by `app`, or by the app handling the current request."""
    app = app or current_app
    return app.extensions["metric_store"]


__all__ = ["create_app", "get_store", "MetricStore"]
