"""Post synthetic sensor readings to a running SensorDash instance.

    python -m sensordash.simulate --url http://localhost:5001 --interval 5
"""
import argparse
import datetime
import json
import logging
import random
import sys
import time
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def generate_sample_payload(
    now: Optional[datetime.datetime] = None, rng: Optional[random.Random] = None
) -> Dict[str, Any]:
    rng = rng or random.Random()
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return {
        "temperature": {
            "CH1": 25 + rng.random() * 15,
            "CH3": 24 + rng.random() * 16,
            "CH5": 23 + rng.random() * 17,
        },
        "energy_meter": {
            "energy_kWh": 15 + rng.random() * 10,
            "frequency_Hz": 50 + rng.random() * 2,
            "voltage_V": 220 + rng.random() * 20,
        },
        "vibrator_meter": {
            "s4_voltage": 2 + rng.random() * 2,
        },
        "timestamp": now.isoformat(),
    }


def send_payload(base_url: str, payload: Dict[str, Any], timeout: float = 10.0) -> Dict[str, Any]:
    """POST one payload to ``/api/ingest`` and return the decoded JSON reply."""
    req = urllib.request.Request(
        base_url.rstrip("/") + "/api/ingest",
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        return json.loads(resp.read().decode("utf-8"))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Send synthetic IoT readings to SensorDash.")
    parser.add_argument("--url", default="http://localhost:5001", help="Base URL of the service")
    parser.add_argument("--interval", type=float, default=5.0, help="Seconds between payloads")
    parser.add_argument("--count", type=int, default=0, help="Payloads to send (0 = until interrupted)")
    args = parser.parse_args(argv)

    if args.interval < 0 or args.count < 0:
        parser.error("--interval and --count must not be negative")

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    logger.info(f"Sending data to {args.url}/api/ingest every {args.interval}s")

    sent = 0
    try:
        while args.count == 0 or sent < args.count:
            payload = generate_sample_payload()
            try:
                result = send_payload(args.url, payload)
                logger.info(f"Stored {result.get('metricsStored')} metrics at {result.get('timestamp')}")
            except urllib.error.HTTPError as e:
                logger.error(f"Ingest failed: HTTP {e.code} {e.read().decode('utf-8', 'replace')}")
            except urllib.error.URLError as e:
                logger.error(f"Network error: {e.reason}")
            sent += 1
            if args.count == 0 or sent < args.count:
                time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info(f"Stopped after {sent} payloads")
    return 0


if __name__ == "__main__":
    sys.exit(main())
